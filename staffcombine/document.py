"""Document access for the combine engine.

All reads and writes made while combining staves go through a
``ScoreDocument``. ``MemoryDocument`` is the in-process implementation used
by the MusicXML adapter and the tests.
"""

from __future__ import annotations

from copy import deepcopy
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

from staffcombine.engine.errors import DocumentAccessError
from staffcombine.engine.timeline import (
    VOICE_SLOTS,
    Entry,
    Expression,
    MeasureRange,
    Timeline,
)
from staffcombine.logging_utils import get_logger

logger = get_logger(__name__)


class ScoreDocument(Protocol):
    def staff_ids(self) -> List[int]: ...

    def measure_numbers(self) -> List[int]: ...

    def measure_length(self, measure: int) -> int: ...

    def load_timeline(self, staff_id: int, voice_slot: int, measure_range: MeasureRange) -> Timeline: ...

    def save_timeline(self, timeline: Timeline) -> None: ...

    def append_staff(self, name: Optional[str] = None) -> int: ...

    def delete_staff(self, staff_id: int) -> None: ...

    def rebar_measure(self, staff_id: int, measure: int) -> None: ...

    def load_expressions(self, staff_id: int, measure: int) -> List[Expression]: ...

    def add_expression(self, staff_id: int, measure: int, expression: Expression) -> None: ...


@dataclass
class StaffInfo:
    staff_id: int
    name: Optional[str] = None
    part_id: Optional[str] = None


class MemoryDocument:
    """Score held in memory as (staff, voice slot, measure) cells."""

    def __init__(
        self,
        measure_lengths: Mapping[int, int],
        *,
        title: Optional[str] = None,
        time_signatures: Optional[Mapping[int, str]] = None,
    ) -> None:
        if not measure_lengths:
            raise ValueError("A document needs at least one measure.")
        numbers = sorted(measure_lengths)
        if numbers != list(range(numbers[0], numbers[0] + len(numbers))):
            raise ValueError("Measure numbers must be consecutive.")
        self.title = title
        self.time_signatures: Dict[int, str] = dict(time_signatures or {})
        self._measure_lengths: Dict[int, int] = {m: int(measure_lengths[m]) for m in numbers}
        self._staves: Dict[int, StaffInfo] = {}
        self._cells: Dict[Tuple[int, int, int], List[Entry]] = {}
        self._expressions: Dict[Tuple[int, int], List[Expression]] = {}

    @classmethod
    def uniform(cls, measure_count: int, measure_length: int, **kwargs) -> "MemoryDocument":
        return cls({m: measure_length for m in range(1, measure_count + 1)}, **kwargs)

    # Structure

    def staff_ids(self) -> List[int]:
        return list(self._staves)

    def staff_info(self, staff_id: int) -> StaffInfo:
        self._require_staff(staff_id)
        return self._staves[staff_id]

    def measure_numbers(self) -> List[int]:
        return list(self._measure_lengths)

    def measure_length(self, measure: int) -> int:
        try:
            return self._measure_lengths[measure]
        except KeyError:
            raise DocumentAccessError(f"Measure {measure} does not exist.") from None

    def add_staff(
        self, name: Optional[str] = None, *, staff_id: Optional[int] = None, part_id: Optional[str] = None
    ) -> int:
        if staff_id is None:
            staff_id = max(self._staves, default=0) + 1
        if staff_id in self._staves:
            raise DocumentAccessError(f"Staff {staff_id} already exists.")
        self._staves[staff_id] = StaffInfo(staff_id=staff_id, name=name, part_id=part_id)
        return staff_id

    def append_staff(self, name: Optional[str] = None) -> int:
        staff_id = self.add_staff(name)
        logger.debug("Appended staff %s name=%s", staff_id, name)
        return staff_id

    def delete_staff(self, staff_id: int) -> None:
        self._require_staff(staff_id)
        del self._staves[staff_id]
        for key in [key for key in self._cells if key[0] == staff_id]:
            del self._cells[key]
        for key in [key for key in self._expressions if key[0] == staff_id]:
            del self._expressions[key]
        logger.debug("Deleted staff %s", staff_id)

    # Entries

    def set_entries(self, staff_id: int, voice_slot: int, measure: int, entries: Sequence[Entry]) -> None:
        """Replace one cell, keeping entry positions as given."""
        self._require_cell(staff_id, voice_slot, measure)
        key = (staff_id, voice_slot, measure)
        if entries:
            stored = deepcopy(list(entries))
            for entry in stored:
                entry.measure = measure
            self._cells[key] = stored
        else:
            self._cells.pop(key, None)

    def entries_at(self, staff_id: int, voice_slot: int, measure: int) -> List[Entry]:
        self._require_cell(staff_id, voice_slot, measure)
        return deepcopy(self._cells.get((staff_id, voice_slot, measure), []))

    def has_content(self, staff_id: int, voice_slot: int, measure_range: MeasureRange) -> bool:
        self._require_staff(staff_id)
        return any((staff_id, voice_slot, m) in self._cells for m in measure_range)

    def load_timeline(self, staff_id: int, voice_slot: int, measure_range: MeasureRange) -> Timeline:
        for measure in measure_range:
            self._require_cell(staff_id, voice_slot, measure)
        entries: List[Entry] = []
        for measure in measure_range:
            entries.extend(deepcopy(self._cells.get((staff_id, voice_slot, measure), [])))
        lengths = {m: self._measure_lengths[m] for m in measure_range}
        return Timeline(staff_id, voice_slot, measure_range, lengths, entries)

    def save_timeline(self, timeline: Timeline) -> None:
        for measure in timeline.measure_range:
            self._require_cell(timeline.staff_id, timeline.voice_slot, measure)
            if self._measure_lengths[measure] != timeline.measure_lengths[measure]:
                raise DocumentAccessError(
                    f"Timeline measure {measure} length does not match the document."
                )
        by_measure: Dict[int, List[Entry]] = {}
        for entry in timeline.entries:
            if entry.measure not in timeline.measure_range:
                raise DocumentAccessError(
                    f"{entry.describe()} lies outside the saved measure range."
                )
            by_measure.setdefault(entry.measure, []).append(deepcopy(entry))
        for measure in timeline.measure_range:
            key = (timeline.staff_id, timeline.voice_slot, measure)
            if measure in by_measure:
                self._cells[key] = by_measure[measure]
            else:
                self._cells.pop(key, None)

    def rebar_measure(self, staff_id: int, measure: int) -> None:
        """Rebar every voice slot of a staff from ``measure`` to the last measure."""
        self._require_staff(staff_id)
        measure_range = MeasureRange(measure, self.measure_numbers()[-1])
        for voice_slot in VOICE_SLOTS:
            if not self.has_content(staff_id, voice_slot, measure_range):
                continue
            timeline = self.load_timeline(staff_id, voice_slot, measure_range)
            timeline.rebar()
            self.save_timeline(timeline)

    # Expressions

    def load_expressions(self, staff_id: int, measure: int) -> List[Expression]:
        self._require_staff(staff_id)
        self.measure_length(measure)
        return list(self._expressions.get((staff_id, measure), []))

    def add_expression(self, staff_id: int, measure: int, expression: Expression) -> None:
        self._require_staff(staff_id)
        self.measure_length(measure)
        self._expressions.setdefault((staff_id, measure), []).append(expression)

    # Validation

    def _require_staff(self, staff_id: int) -> None:
        if staff_id not in self._staves:
            raise DocumentAccessError(f"Staff {staff_id} does not exist.")

    def _require_cell(self, staff_id: int, voice_slot: int, measure: int) -> None:
        self._require_staff(staff_id)
        if voice_slot not in VOICE_SLOTS:
            raise DocumentAccessError(f"Voice slot {voice_slot} does not exist.")
        self.measure_length(measure)
