"""Region detection and end-of-line handling for combining a line of staves."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Iterator, List, Optional, Sequence, Tuple

from staffcombine.engine.merge_task import MergeTask
from staffcombine.engine.orchestrator import CombineReport, combine_staves
from staffcombine.engine.timeline import VOICE_SLOTS, MeasureRange
from staffcombine.logging_utils import get_logger

if TYPE_CHECKING:
    from staffcombine.document import ScoreDocument

logger = get_logger(__name__)

PRIMARY_SLOT = 1


class RegionDetection(str, Enum):
    BY_MEASURE = "measure"
    AUTO_DETECT_PHRASE = "phrase"


def _has_content(document: "ScoreDocument", staff_id: int, voice_slot: int, measure: int) -> bool:
    timeline = document.load_timeline(staff_id, voice_slot, MeasureRange(measure, measure))
    return not timeline.is_empty


def texture(
    document: "ScoreDocument", staff_ids: Sequence[int], measure: int
) -> Tuple[bool, ...]:
    """Which staves hold primary-slot content in a measure."""
    return tuple(_has_content(document, staff_id, PRIMARY_SLOT, measure) for staff_id in staff_ids)


def detect_next_region(
    document: "ScoreDocument",
    staff_ids: Sequence[int],
    start_measure: int,
    mode: RegionDetection = RegionDetection.BY_MEASURE,
) -> Optional[MeasureRange]:
    """Find the next region to combine at or after start_measure.

    BY_MEASURE returns the first measure with content. AUTO_DETECT_PHRASE
    extends it while the same staves keep playing. None means the line is done.
    """
    last_measure = document.measure_numbers()[-1]
    first: Optional[int] = None
    for measure in range(start_measure, last_measure + 1):
        if any(texture(document, staff_ids, measure)):
            first = measure
            break
    if first is None:
        return None
    if mode is RegionDetection.BY_MEASURE:
        return MeasureRange(first, first)

    phrase_texture = texture(document, staff_ids, first)
    end = first
    for measure in range(first + 1, last_measure + 1):
        if texture(document, staff_ids, measure) != phrase_texture:
            break
        end = measure
    return MeasureRange(first, end)


def iter_regions(
    document: "ScoreDocument",
    staff_ids: Sequence[int],
    start_measure: int,
    mode: RegionDetection = RegionDetection.BY_MEASURE,
) -> Iterator[MeasureRange]:
    measure = start_measure
    while True:
        region = detect_next_region(document, staff_ids, measure, mode)
        if region is None:
            return
        yield region
        measure = region.end + 1


def staves_with_secondary_layers(
    document: "ScoreDocument", staff_ids: Sequence[int], measure_range: MeasureRange
) -> List[int]:
    """Staves holding content in voice slots 2-4 within the range."""
    found = []
    for staff_id in staff_ids:
        for voice_slot in VOICE_SLOTS[1:]:
            if not document.load_timeline(staff_id, voice_slot, measure_range).is_empty:
                found.append(staff_id)
                break
    return found


def combine_line(
    document: "ScoreDocument",
    task_template: MergeTask,
    staff_ids: Sequence[int],
    mode: RegionDetection = RegionDetection.BY_MEASURE,
    *,
    confirm_clear: bool = False,
) -> List[CombineReport]:
    """Combine region by region from the template's start measure to the end of the line."""
    reports = []
    regions = list(iter_regions(document, staff_ids, task_template.measure_range.start, mode))
    for region in regions:
        logger.info("Combining region %s-%s", region.start, region.end)
        reports.append(
            combine_staves(
                document,
                task_template.with_measure_range(region),
                confirm_clear=confirm_clear,
            )
        )
    return reports


def finish_line(
    document: "ScoreDocument", staff_ids: Sequence[int], destination_staff: int
) -> List[int]:
    """Delete every staff but the destination; return deleted staves that still held music."""
    if destination_staff not in staff_ids:
        raise ValueError(f"Destination staff {destination_staff} is not part of the line.")
    whole_score = MeasureRange(document.measure_numbers()[0], document.measure_numbers()[-1])
    still_sounding = []
    for staff_id in reversed(list(staff_ids)):
        if staff_id == destination_staff:
            continue
        if not document.load_timeline(staff_id, PRIMARY_SLOT, whole_score).is_empty:
            still_sounding.append(staff_id)
        document.delete_staff(staff_id)
    if still_sounding:
        logger.warning("Deleted staves that still contained music: %s", sorted(still_sounding))
    return sorted(still_sounding)
