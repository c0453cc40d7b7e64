"""Timeline model: the entries of one voice slot of one staff over a measure range."""

from __future__ import annotations

import itertools
from copy import deepcopy
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

from staffcombine.engine.errors import TimelineContinuityError

TICKS_PER_QUARTER = 10080
VOICE_SLOTS = (1, 2, 3, 4)

_entry_ids = itertools.count(1)


@dataclass(frozen=True)
class MeasureRange:
    start: int
    end: int

    def __post_init__(self) -> None:
        if self.start < 1:
            raise ValueError(f"start measure must be >= 1, got {self.start}")
        if self.end < self.start:
            raise ValueError(f"end measure {self.end} precedes start measure {self.start}")

    def __iter__(self) -> Iterator[int]:
        return iter(range(self.start, self.end + 1))

    def __len__(self) -> int:
        return self.end - self.start + 1

    def __contains__(self, measure: object) -> bool:
        return isinstance(measure, int) and self.start <= measure <= self.end

    def shifted_to(self, start: int) -> "MeasureRange":
        return MeasureRange(start, start + len(self) - 1)


@dataclass(frozen=True)
class Tuplet:
    """A tuplet started by an entry, e.g. eighth triplets = Tuplet(3, 2, eighth)."""

    number: int
    reference_number: int
    reference_duration: int

    @property
    def full_reference_duration(self) -> int:
        return self.reference_number * self.reference_duration


@dataclass(frozen=True)
class Articulation:
    definition_id: str
    above: Optional[bool] = None


@dataclass(frozen=True)
class ScalarPayload:
    value: str


@dataclass(frozen=True)
class StructuredPayload:
    items: Tuple[Tuple[str, Any], ...]

    @classmethod
    def from_mapping(cls, fields: Mapping[str, Any]) -> "StructuredPayload":
        return cls(tuple(sorted((str(key), value) for key, value in fields.items())))

    def as_dict(self) -> Dict[str, Any]:
        return dict(self.items)


ExpressionPayload = Union[ScalarPayload, StructuredPayload]


def expression_payload(raw: Any) -> ExpressionPayload:
    """Resolve a raw annotation value into its payload variant."""
    if isinstance(raw, (ScalarPayload, StructuredPayload)):
        return raw
    if isinstance(raw, bool):
        raise ValueError("Expression payload must be text, a number, or a mapping.")
    if isinstance(raw, (str, int, float)):
        return ScalarPayload(str(raw))
    if isinstance(raw, Mapping):
        return StructuredPayload.from_mapping(raw)
    raise ValueError(f"Unsupported expression payload type: {type(raw).__name__}")


@dataclass(frozen=True)
class Expression:
    """A time-localized annotation stored in a (staff, measure) cell."""

    position: int
    payload: ExpressionPayload

    def text(self) -> str:
        if isinstance(self.payload, ScalarPayload):
            return self.payload.value
        fields = self.payload.as_dict()
        return str(fields.get("text") or fields.get("value") or "")

    def moved_to(self, position: int) -> "Expression":
        return Expression(position=position, payload=self.payload)


@dataclass
class Entry:
    measure: int
    position: int
    actual_duration: int
    nominal_duration: Optional[int] = None
    pitches: List[str] = field(default_factory=list)
    tuplets: List[Tuplet] = field(default_factory=list)
    articulations: List[Articulation] = field(default_factory=list)
    notehead_overrides: Dict[str, str] = field(default_factory=dict)
    tie_forward: bool = False
    entry_id: int = field(default_factory=lambda: next(_entry_ids), compare=False)

    def __post_init__(self) -> None:
        if self.actual_duration < 0:
            raise ValueError("Entry duration cannot be negative.")
        if self.nominal_duration is None:
            self.nominal_duration = self.actual_duration
        deduped: List[str] = []
        for pitch in self.pitches:
            if pitch not in deduped:
                deduped.append(pitch)
        self.pitches = deduped

    @classmethod
    def rest(cls, measure: int, position: int, duration: int) -> "Entry":
        return cls(measure=measure, position=position, actual_duration=duration)

    @classmethod
    def note(
        cls, measure: int, position: int, duration: int, pitches: Sequence[str], **kwargs: Any
    ) -> "Entry":
        if not pitches:
            raise ValueError("A note entry needs at least one pitch.")
        return cls(
            measure=measure,
            position=position,
            actual_duration=duration,
            pitches=list(pitches),
            **kwargs,
        )

    @property
    def is_note(self) -> bool:
        return bool(self.pitches)

    @property
    def is_rest(self) -> bool:
        return not self.pitches

    @property
    def is_start_of_tuplet(self) -> bool:
        return bool(self.tuplets)

    @property
    def end(self) -> int:
        return self.position + self.actual_duration

    def add_pitches(self, pitches: Iterable[str]) -> None:
        for pitch in pitches:
            if pitch not in self.pitches:
                self.pitches.append(pitch)

    def make_rest(self) -> None:
        self.pitches = []
        self.notehead_overrides = {}
        self.tie_forward = False

    def clone_structure(self) -> "Entry":
        """Copy pitches, durations, tuplets and ties under a fresh storage id."""
        return Entry(
            measure=self.measure,
            position=self.position,
            actual_duration=self.actual_duration,
            nominal_duration=self.nominal_duration,
            pitches=list(self.pitches),
            tuplets=list(self.tuplets),
            tie_forward=self.tie_forward,
        )

    def describe(self) -> str:
        kind = "+".join(self.pitches) if self.pitches else "rest"
        return f"{kind}@{self.measure}:{self.position}/{self.actual_duration}"


def quarter_ticks(quarters: float | int) -> int:
    """Convert quarter notes to ticks, refusing values that do not land on a tick."""
    ticks = quarters * TICKS_PER_QUARTER
    rounded = round(ticks)
    if abs(ticks - rounded) > 1e-6:
        raise ValueError(f"{quarters} quarter notes is not a whole number of ticks")
    return int(rounded)


class Timeline:
    """Ordered entries for one (staff, voice slot, measure range).

    Entries are contiguous within every occupied measure: each entry starts
    where the previous one ended, and the last ends on the barline. A measure
    with no entries is unoccupied. Mutations may break contiguity temporarily;
    ``rebar`` restores it.
    """

    def __init__(
        self,
        staff_id: int,
        voice_slot: int,
        measure_range: MeasureRange,
        measure_lengths: Mapping[int, int],
        entries: Iterable[Entry] = (),
    ) -> None:
        if voice_slot not in VOICE_SLOTS:
            raise ValueError(f"voice_slot must be one of {VOICE_SLOTS}, got {voice_slot}")
        missing = [m for m in measure_range if m not in measure_lengths]
        if missing:
            raise ValueError(f"Missing measure lengths for measures {missing}")
        self.staff_id = staff_id
        self.voice_slot = voice_slot
        self.measure_range = measure_range
        self.measure_lengths = {m: int(measure_lengths[m]) for m in measure_range}
        self.entries: List[Entry] = list(entries)
        self._offsets: Dict[int, int] = {}
        offset = 0
        for measure in measure_range:
            self._offsets[measure] = offset
            offset += self.measure_lengths[measure]
        self.total_length = offset

    @classmethod
    def empty(
        cls,
        staff_id: int,
        voice_slot: int,
        measure_range: MeasureRange,
        measure_lengths: Mapping[int, int],
    ) -> "Timeline":
        return cls(staff_id, voice_slot, measure_range, measure_lengths)

    def __iter__(self) -> Iterator[Entry]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Timeline):
            return NotImplemented
        return (
            self.address == other.address
            and self.measure_range == other.measure_range
            and self.measure_lengths == other.measure_lengths
            and self.entries == other.entries
        )

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return (
            f"Timeline(staff={self.staff_id}, slot={self.voice_slot}, "
            f"measures={self.measure_range.start}-{self.measure_range.end}, "
            f"entries=[{', '.join(e.describe() for e in self.entries)}])"
        )

    @property
    def address(self) -> Tuple[int, int]:
        return (self.staff_id, self.voice_slot)

    @property
    def is_empty(self) -> bool:
        return not self.entries

    def copy(self) -> "Timeline":
        """Deep copy that keeps storage ids."""
        return Timeline(
            self.staff_id,
            self.voice_slot,
            self.measure_range,
            self.measure_lengths,
            deepcopy(self.entries),
        )

    def clone(
        self,
        staff_id: int,
        voice_slot: int,
        *,
        start_measure: Optional[int] = None,
        measure_lengths: Optional[Mapping[int, int]] = None,
    ) -> "Timeline":
        """Clone entry structure to a new address; modifiers are not copied."""
        start = self.measure_range.start if start_measure is None else start_measure
        measure_range = self.measure_range.shifted_to(start)
        delta = start - self.measure_range.start
        lengths = (
            dict(measure_lengths)
            if measure_lengths is not None
            else {m + delta: length for m, length in self.measure_lengths.items()}
        )
        for measure in self.measure_range:
            if lengths.get(measure + delta) != self.measure_lengths[measure]:
                raise TimelineContinuityError(
                    f"Measure {measure} ({self.measure_lengths[measure]} ticks) does not fit "
                    f"destination measure {measure + delta} ({lengths.get(measure + delta)} ticks)"
                )
        entries = []
        for entry in self.entries:
            clone = entry.clone_structure()
            clone.measure = entry.measure + delta
            entries.append(clone)
        return Timeline(staff_id, voice_slot, measure_range, lengths, entries)

    def cleared(self) -> "Timeline":
        return Timeline.empty(self.staff_id, self.voice_slot, self.measure_range, self.measure_lengths)

    # Positions

    def measure_offset(self, measure: int) -> int:
        try:
            return self._offsets[measure]
        except KeyError:
            raise ValueError(
                f"Measure {measure} is outside {self.measure_range.start}-{self.measure_range.end}"
            ) from None

    def absolute_position(self, entry: Entry) -> int:
        return self.measure_offset(entry.measure) + entry.position

    def measure_at(self, absolute: int) -> Optional[int]:
        """Return the measure containing an absolute position, or None past the range."""
        for measure in self.measure_range:
            start = self._offsets[measure]
            if start <= absolute < start + self.measure_lengths[measure]:
                return measure
        return None

    def entries_in(self, measure: int) -> List[Entry]:
        return [entry for entry in self.entries if entry.measure == measure]

    def is_unoccupied(self, measure: int) -> bool:
        return not any(entry.measure == measure for entry in self.entries)

    def live_entries(self) -> List[Entry]:
        return [entry for entry in self.entries if entry.actual_duration > 0]

    def find_at(self, absolute: int) -> Optional[Entry]:
        for entry in self.entries:
            if entry.actual_duration > 0 and self.absolute_position(entry) == absolute:
                return entry
        return None

    def closest_before(self, absolute: int) -> Optional[Entry]:
        best: Optional[Entry] = None
        best_position = -1
        for entry in self.entries:
            if entry.actual_duration <= 0:
                continue
            position = self.absolute_position(entry)
            if best_position < position < absolute:
                best = entry
                best_position = position
        return best

    def index_of(self, entry: Entry) -> int:
        for idx, candidate in enumerate(self.entries):
            if candidate is entry:
                return idx
        raise ValueError(f"{entry.describe()} is not in this timeline")

    def next_entry(self, entry: Entry) -> Optional[Entry]:
        idx = self.index_of(entry) + 1
        return self.entries[idx] if idx < len(self.entries) else None

    # Mutations

    def insert_after(self, entry: Entry, new_entry: Entry) -> Entry:
        """Insert new_entry right after entry, starting where entry now ends."""
        idx = self.index_of(entry)
        new_entry.measure = entry.measure
        new_entry.position = entry.position + entry.actual_duration
        self.entries.insert(idx + 1, new_entry)
        return new_entry

    def set_duration(self, entry: Entry, duration: int) -> None:
        """Set the sounding duration, keeping the entry's tuplet ratio."""
        if duration < 0:
            raise ValueError("Entry duration cannot be negative.")
        nominal = entry.nominal_duration or 0
        if entry.actual_duration > 0 and nominal != entry.actual_duration:
            entry.nominal_duration = round(duration * nominal / entry.actual_duration)
        else:
            entry.nominal_duration = duration
        entry.actual_duration = duration

    def delete_null_entries(self) -> int:
        before = len(self.entries)
        self.entries = [entry for entry in self.entries if entry.actual_duration > 0]
        return before - len(self.entries)

    def fill_measure_with_rest(self, measure: int) -> Entry:
        """Give an unoccupied measure a single whole-measure rest."""
        if not self.is_unoccupied(measure):
            raise ValueError(f"Measure {measure} already holds entries")
        rest = Entry.rest(measure, 0, self.measure_lengths[measure])
        idx = 0
        for candidate_idx, candidate in enumerate(self.entries):
            if candidate.measure < measure:
                idx = candidate_idx + 1
        self.entries.insert(idx, rest)
        return rest

    def rebar(self) -> None:
        """Redistribute entries across barlines, splitting any that straddle one."""
        rebarred: List[Entry] = []
        cursor: Optional[int] = None
        for entry in self.entries:
            if entry.actual_duration <= 0:
                continue
            start = self.absolute_position(entry)
            if cursor is None or start > cursor:
                cursor = start
            remaining = entry.actual_duration
            tied_onward = entry.tie_forward
            piece = entry
            first = True
            while remaining > 0:
                measure = self.measure_at(cursor)
                if measure is None:
                    raise TimelineContinuityError(
                        f"{entry.describe()} runs past measure {self.measure_range.end}"
                    )
                measure_end = self._offsets[measure] + self.measure_lengths[measure]
                span = min(measure_end - cursor, remaining)
                if not first:
                    piece = Entry(
                        measure=measure,
                        position=0,
                        actual_duration=span,
                        pitches=list(entry.pitches),
                        notehead_overrides=dict(entry.notehead_overrides),
                    )
                elif span != entry.actual_duration:
                    self.set_duration(entry, span)
                piece.measure = measure
                piece.position = cursor - self._offsets[measure]
                remaining -= span
                cursor += span
                if remaining > 0:
                    piece.tie_forward = piece.is_note
                else:
                    piece.tie_forward = tied_onward and piece.is_note
                rebarred.append(piece)
                first = False
        self.entries = rebarred

    # Tuplets

    def tuplet_intervals(self) -> List[Tuple[int, int]]:
        intervals = []
        for entry in self.entries:
            if not entry.is_start_of_tuplet:
                continue
            start = self.absolute_position(entry)
            for tuplet in entry.tuplets:
                intervals.append((start, start + tuplet.full_reference_duration))
        return intervals

    def is_part_of_tuplet(self, entry: Entry) -> bool:
        position = self.absolute_position(entry)
        return any(start <= position < end for start, end in self.tuplet_intervals())

    def tuplet_entries(self) -> List[Entry]:
        intervals = self.tuplet_intervals()
        if not intervals:
            return []
        return [
            entry
            for entry in self.entries
            if any(start <= self.absolute_position(entry) < end for start, end in intervals)
        ]

    def tuplet_entry_count(self) -> int:
        return len(self.tuplet_entries())

    # Invariants

    def check_contiguity(self) -> None:
        last_measure = self.measure_range.start
        for entry in self.entries:
            if entry.measure not in self.measure_range:
                raise TimelineContinuityError(
                    f"{entry.describe()} lies outside measures "
                    f"{self.measure_range.start}-{self.measure_range.end}"
                )
            if entry.measure < last_measure:
                raise TimelineContinuityError(f"{entry.describe()} is out of measure order")
            last_measure = entry.measure
        for measure in self.measure_range:
            entries = self.entries_in(measure)
            if not entries:
                continue
            cursor = 0
            for entry in entries:
                if entry.position != cursor:
                    raise TimelineContinuityError(
                        f"measure {measure}: {entry.describe()} should start at {cursor}"
                    )
                cursor += entry.actual_duration
            if cursor != self.measure_lengths[measure]:
                raise TimelineContinuityError(
                    f"measure {measure}: entries fill {cursor} of {self.measure_lengths[measure]} ticks"
                )

    def is_contiguous(self) -> bool:
        try:
            self.check_contiguity()
        except TimelineContinuityError:
            return False
        return True

    def summary(self) -> Dict[str, Any]:
        return {
            "staff_id": self.staff_id,
            "voice_slot": self.voice_slot,
            "measures": [self.measure_range.start, self.measure_range.end],
            "entry_count": len(self.entries),
            "note_count": sum(1 for entry in self.entries if entry.is_note),
            "tuplet_entry_count": self.tuplet_entry_count(),
        }
