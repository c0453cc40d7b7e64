import json

import pytest

from staffcombine import cli
from staffcombine.engine.orchestrator import CombineReport, SlotResult, SlotState
from staffcombine.musicxml import load_musicxml
from tests.test_musicxml import build_duet


@pytest.fixture(autouse=True)
def _quiet_logging(monkeypatch):
    monkeypatch.setattr(cli, "configure_logging", lambda: None)
    for name in (
        "STAFFCOMBINE_REGION_MODE",
        "STAFFCOMBINE_AUTO_CLEAR",
        "STAFFCOMBINE_OUTPUT_DIR",
        "STAFFCOMBINE_PROJECT_ROOT",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def score_path(tmp_path):
    path = tmp_path / "duet.musicxml"
    build_duet().write("musicxml", fp=str(path))
    return path


def _write_task(tmp_path, assignments):
    lines = ["destination_staff: 1", "measure_range: {start: 1, end: 2}", "assignments:"]
    if not assignments:
        lines[-1] = "assignments: []"
    for staff, slot, dest in assignments:
        lines.append(
            f"  - {{source_staff: {staff}, source_voice_slot: {slot}, destination_voice_slot: {dest}}}"
        )
    path = tmp_path / "task.yaml"
    path.write_text("\n".join(lines) + "\n", encoding="utf8")
    return path


def test_combine_writes_output_and_report(tmp_path, score_path, capsys):
    task = _write_task(tmp_path, [(1, 1, 1), (2, 1, 1)])
    out = tmp_path / "combined.musicxml"

    code = cli.main(["combine", str(score_path), "--task", str(task), "-o", str(out)])

    assert code == cli.EXIT_OK
    summary = json.loads(capsys.readouterr().out)
    assert summary["ok"] is True
    assert summary["reports"][0]["slots"][0]["state"] == "merged"
    combined = load_musicxml(out)
    first = combined.entries_at(1, 1, 1)[0]
    assert set(first.pitches) == {"C5", "C4"}


def test_default_output_lands_under_working_directory(tmp_path, score_path, monkeypatch, capsys):
    task = _write_task(tmp_path, [(1, 1, 1), (2, 1, 1)])
    workdir = tmp_path / "work"
    workdir.mkdir()
    monkeypatch.chdir(workdir)

    code = cli.main(["combine", str(score_path), "--task", str(task)])

    assert code == cli.EXIT_OK
    expected = workdir.resolve() / "output" / "duet.combined.musicxml"
    assert json.loads(capsys.readouterr().out)["output"] == str(expected)
    assert expected.exists()


def test_default_output_honours_project_root(tmp_path, score_path, monkeypatch, capsys):
    task = _write_task(tmp_path, [(1, 1, 1), (2, 1, 1)])
    root = tmp_path / "project"
    monkeypatch.setenv("STAFFCOMBINE_PROJECT_ROOT", str(root))
    monkeypatch.setenv("STAFFCOMBINE_OUTPUT_DIR", "combined")

    code = cli.main(["combine", str(score_path), "--task", str(task)])

    assert code == cli.EXIT_OK
    capsys.readouterr()
    assert (root.resolve() / "combined" / "duet.combined.musicxml").exists()


def test_combine_line_drops_source_staves(tmp_path, score_path, capsys):
    task = _write_task(tmp_path, [(1, 1, 1), (2, 1, 1)])
    out = tmp_path / "line.musicxml"

    code = cli.main(
        ["combine", str(score_path), "--task", str(task), "-o", str(out), "--line", "phrase"]
    )

    assert code == cli.EXIT_OK
    summary = json.loads(capsys.readouterr().out)
    assert summary["deleted_staves_with_music"] == [2]
    assert load_musicxml(out).staff_ids() == [1]


def test_empty_task_without_confirmation_is_an_error(tmp_path, score_path, capsys):
    task = _write_task(tmp_path, [])
    code = cli.main(["combine", str(score_path), "--task", str(task), "-o", str(tmp_path / "x.xml")])

    assert code == cli.EXIT_ERROR
    error = json.loads(capsys.readouterr().err.strip().splitlines()[-1])
    assert error["error_type"] == "EmptyDestinationConfirmationRequired"
    assert not (tmp_path / "x.xml").exists()


def test_rejected_slot_sets_exit_code(tmp_path, score_path, monkeypatch, capsys):
    task = _write_task(tmp_path, [(2, 1, 1)])

    def _rejecting(document, merge_task, *, confirm_clear=False):
        report = CombineReport(merge_task.destination_staff, 1, 2)
        report.slots[1] = SlotResult(1, SlotState.REJECTED, error={"error_type": "MismatchedTuplets"})
        return report

    monkeypatch.setattr(cli, "combine_staves", _rejecting)
    code = cli.main(["combine", str(score_path), "--task", str(task), "-o", str(tmp_path / "r.xml")])

    assert code == cli.EXIT_REJECTED
    assert json.loads(capsys.readouterr().out)["ok"] is False


def test_invalid_task_is_an_error(tmp_path, score_path, capsys):
    task = tmp_path / "bad.yaml"
    task.write_text("destination_staff: one\n", encoding="utf8")
    code = cli.main(["combine", str(score_path), "--task", str(task)])
    assert code == cli.EXIT_ERROR
    assert "InvalidMergeTask" in capsys.readouterr().err


def test_regions_command(score_path, capsys):
    code = cli.main(["regions", str(score_path), "--staves", "1", "2", "--mode", "measure"])

    assert code == cli.EXIT_OK
    payload = json.loads(capsys.readouterr().out)
    assert payload["mode"] == "measure"
    assert payload["regions"] == [[1, 1], [2, 2]]
    assert payload["staves_with_secondary_layers"] == []


def test_missing_subcommand_exits():
    with pytest.raises(SystemExit):
        cli.main([])
