from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from staffcombine.config import Settings
from staffcombine.engine import (
    CombineError,
    CombineReport,
    MeasureRange,
    RegionDetection,
    combine_line,
    combine_staves,
    finish_line,
    iter_regions,
    load_merge_task,
    staves_with_secondary_layers,
)
from staffcombine.logging_utils import configure_logging, get_logger
from staffcombine.musicxml import load_musicxml, write_musicxml

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_REJECTED = 1
EXIT_ERROR = 2


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--debug", action="store_true", help="Enable debug logging.")
    parser = argparse.ArgumentParser(
        prog="staffcombine",
        description="Combine the voices of several staves into one staff.",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    combine = commands.add_parser(
        "combine", parents=[common], help="Run a merge task against a MusicXML score."
    )
    combine.add_argument("score", type=Path, help="Input MusicXML file.")
    combine.add_argument("--task", type=Path, required=True, help="Merge task YAML file.")
    combine.add_argument(
        "-o",
        "--output",
        type=Path,
        default=None,
        help="Output MusicXML path (default: <output dir>/<score>.combined.musicxml).",
    )
    combine.add_argument(
        "--confirm-clear",
        action="store_true",
        help="Allow a task with no assignments to clear the destination.",
    )
    combine.add_argument(
        "--line",
        choices=[mode.value for mode in RegionDetection],
        default=None,
        help="Combine region by region to the end of the score, then drop the source staves.",
    )

    regions = commands.add_parser(
        "regions", parents=[common], help="List the regions a line would be combined in."
    )
    regions.add_argument("score", type=Path, help="Input MusicXML file.")
    regions.add_argument("--staves", type=int, nargs="+", required=True, help="Staff ids of the line.")
    regions.add_argument("--start", type=int, default=1, help="First measure to inspect.")
    regions.add_argument(
        "--mode",
        choices=[mode.value for mode in RegionDetection],
        default=None,
        help="Region detection mode (default: STAFFCOMBINE_REGION_MODE).",
    )
    return parser


def run_combine(args: argparse.Namespace, settings: Settings) -> int:
    document = load_musicxml(args.score)
    task = load_merge_task(args.task, auto_clear_default=settings.auto_clear_unassigned_slots)
    staff_ids = task.staff_ids()

    if settings.warn_secondary_layers:
        layered = staves_with_secondary_layers(document, staff_ids, task.measure_range)
        if layered:
            logger.warning("Staves %s hold music outside voice slot 1", layered)

    deleted_with_music: List[int] = []
    if args.line:
        reports = combine_line(
            document,
            task,
            staff_ids,
            RegionDetection(args.line),
            confirm_clear=args.confirm_clear,
        )
        deleted_with_music = finish_line(document, staff_ids, task.destination_staff)
    else:
        reports = [combine_staves(document, task, confirm_clear=args.confirm_clear)]

    output = args.output or settings.output_dir / f"{args.score.stem}.combined.musicxml"
    written = write_musicxml(document, output)
    _print_json(_combine_summary(reports, written, deleted_with_music))
    return EXIT_OK if all(report.ok for report in reports) else EXIT_REJECTED


def run_regions(args: argparse.Namespace, settings: Settings) -> int:
    document = load_musicxml(args.score)
    mode = RegionDetection(args.mode or settings.region_mode)
    found = list(iter_regions(document, args.staves, args.start, mode))
    whole = MeasureRange(args.start, document.measure_numbers()[-1])
    _print_json(
        {
            "mode": mode.value,
            "regions": [[region.start, region.end] for region in found],
            "staves_with_secondary_layers": staves_with_secondary_layers(
                document, args.staves, whole
            ),
        }
    )
    return EXIT_OK


def _combine_summary(
    reports: Sequence[CombineReport], output: Path, deleted_with_music: List[int]
) -> Dict[str, Any]:
    return {
        "output": str(output),
        "ok": all(report.ok for report in reports),
        "reports": [report.to_payload() for report in reports],
        "deleted_staves_with_music": deleted_with_music,
    }


def _print_json(payload: Dict[str, Any]) -> None:
    sys.stdout.write(json.dumps(payload, indent=2) + "\n")
    sys.stdout.flush()


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging()
    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)
    try:
        settings = Settings.from_env()
        if args.command == "combine":
            return run_combine(args, settings)
        return run_regions(args, settings)
    except CombineError as exc:
        logger.error("%s failed: %s", args.command, exc)
        sys.stderr.write(json.dumps(exc.to_payload()) + "\n")
        return EXIT_ERROR
    except (OSError, ValueError) as exc:
        logger.error("%s failed: %s", args.command, exc)
        sys.stderr.write(json.dumps({"error": str(exc)}) + "\n")
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
