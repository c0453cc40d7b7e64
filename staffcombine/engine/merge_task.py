"""Merge task: which source voice slots feed which destination voice slots."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

import yaml

from staffcombine.engine.errors import InvalidMergeTaskError
from staffcombine.engine.timeline import VOICE_SLOTS, MeasureRange


@dataclass(frozen=True)
class SlotAssignment:
    source_staff: int
    source_voice_slot: int
    destination_voice_slot: int

    @property
    def source_address(self) -> Tuple[int, int]:
        return (self.source_staff, self.source_voice_slot)


@dataclass(frozen=True)
class MergeTask:
    destination_staff: int
    measure_range: MeasureRange
    assignments: Tuple[SlotAssignment, ...] = ()
    auto_clear_unassigned_slots: bool = True
    task_id: Optional[str] = field(default=None, compare=False)

    def __post_init__(self) -> None:
        seen: Dict[Tuple[int, int], int] = {}
        for idx, assignment in enumerate(self.assignments):
            if assignment.source_voice_slot not in VOICE_SLOTS:
                raise InvalidMergeTaskError(
                    f"assignments[{idx}].source_voice_slot must be 1-4, "
                    f"got {assignment.source_voice_slot}",
                    field=f"assignments[{idx}].source_voice_slot",
                )
            if assignment.destination_voice_slot not in VOICE_SLOTS:
                raise InvalidMergeTaskError(
                    f"assignments[{idx}].destination_voice_slot must be 1-4, "
                    f"got {assignment.destination_voice_slot}",
                    field=f"assignments[{idx}].destination_voice_slot",
                )
            if assignment.source_address in seen:
                raise InvalidMergeTaskError(
                    f"Staff {assignment.source_staff} slot {assignment.source_voice_slot} is "
                    f"assigned twice (assignments[{seen[assignment.source_address]}] and "
                    f"assignments[{idx}]).",
                    field=f"assignments[{idx}]",
                )
            seen[assignment.source_address] = idx

    def sources_by_slot(self) -> Dict[int, List[SlotAssignment]]:
        """Destination slot -> its assignments, in assignment order."""
        by_slot: Dict[int, List[SlotAssignment]] = {slot: [] for slot in VOICE_SLOTS}
        for assignment in self.assignments:
            by_slot[assignment.destination_voice_slot].append(assignment)
        return by_slot

    @property
    def has_assignments(self) -> bool:
        return bool(self.assignments)

    def staff_ids(self) -> List[int]:
        staves = [self.destination_staff]
        for assignment in self.assignments:
            if assignment.source_staff not in staves:
                staves.append(assignment.source_staff)
        return staves

    def with_measure_range(self, measure_range: MeasureRange) -> "MergeTask":
        return replace(self, measure_range=measure_range)

    @classmethod
    def from_dict(
        cls, payload: Mapping[str, Any], *, auto_clear_default: bool = True
    ) -> "MergeTask":
        if not isinstance(payload, Mapping):
            raise InvalidMergeTaskError("Merge task must be a mapping.")
        destination_staff = _require_int(payload, "destination_staff")
        raw_range = payload.get("measure_range")
        if not isinstance(raw_range, Mapping):
            raise InvalidMergeTaskError(
                "measure_range must be a mapping with start and end.", field="measure_range"
            )
        start = _require_int(raw_range, "start", prefix="measure_range.")
        end = _require_int(raw_range, "end", prefix="measure_range.")
        try:
            measure_range = MeasureRange(start, end)
        except ValueError as exc:
            raise InvalidMergeTaskError(str(exc), field="measure_range") from exc
        raw_assignments = payload.get("assignments") or []
        if not isinstance(raw_assignments, list):
            raise InvalidMergeTaskError("assignments must be a list.", field="assignments")
        assignments = []
        for idx, raw in enumerate(raw_assignments):
            if not isinstance(raw, Mapping):
                raise InvalidMergeTaskError(
                    f"assignments[{idx}] must be a mapping.", field=f"assignments[{idx}]"
                )
            prefix = f"assignments[{idx}]."
            assignments.append(
                SlotAssignment(
                    source_staff=_require_int(raw, "source_staff", prefix=prefix),
                    source_voice_slot=_require_int(raw, "source_voice_slot", prefix=prefix),
                    destination_voice_slot=_require_int(raw, "destination_voice_slot", prefix=prefix),
                )
            )
        auto_clear = payload.get("auto_clear_unassigned_slots", auto_clear_default)
        if not isinstance(auto_clear, bool):
            raise InvalidMergeTaskError(
                "auto_clear_unassigned_slots must be a boolean.",
                field="auto_clear_unassigned_slots",
            )
        task_id = payload.get("task_id")
        return cls(
            destination_staff=destination_staff,
            measure_range=measure_range,
            assignments=tuple(assignments),
            auto_clear_unassigned_slots=auto_clear,
            task_id=str(task_id) if task_id is not None else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "destination_staff": self.destination_staff,
            "measure_range": {"start": self.measure_range.start, "end": self.measure_range.end},
            "assignments": [
                {
                    "source_staff": a.source_staff,
                    "source_voice_slot": a.source_voice_slot,
                    "destination_voice_slot": a.destination_voice_slot,
                }
                for a in self.assignments
            ],
            "auto_clear_unassigned_slots": self.auto_clear_unassigned_slots,
        }
        if self.task_id is not None:
            payload["task_id"] = self.task_id
        return payload


def load_merge_task(path: str | Path, *, auto_clear_default: bool = True) -> MergeTask:
    """Load a merge task from a YAML (or JSON) file.

    auto_clear_default applies when the file does not set
    auto_clear_unassigned_slots.
    """
    task_path = Path(path)
    try:
        data = yaml.safe_load(task_path.read_text(encoding="utf8"))
    except yaml.YAMLError as exc:
        raise InvalidMergeTaskError(f"{task_path} is not valid YAML: {exc}") from exc
    task = MergeTask.from_dict(data, auto_clear_default=auto_clear_default)
    if task.task_id is None:
        task = replace(task, task_id=task_path.stem)
    return task


def _require_int(payload: Mapping[str, Any], key: str, *, prefix: str = "") -> int:
    value = payload.get(key)
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidMergeTaskError(
            f"{prefix}{key} must be an integer, got {value!r}.", field=f"{prefix}{key}"
        )
    return value
