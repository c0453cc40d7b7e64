from __future__ import annotations

from typing import Iterable, List, Optional, Sequence, Tuple, Union

from staffcombine.document import MemoryDocument
from staffcombine.engine.timeline import TICKS_PER_QUARTER, Entry, MeasureRange, Timeline, Tuplet

Q = TICKS_PER_QUARTER
WHOLE = 4 * Q

# (pitches or None for a rest, duration in ticks)
EntrySpec = Tuple[Optional[Union[str, Sequence[str]]], int]


def entries(measure: int, layout: Iterable[EntrySpec]) -> List[Entry]:
    """Build a contiguous run of entries for one measure."""
    built: List[Entry] = []
    position = 0
    for pitches, duration in layout:
        if pitches is None:
            built.append(Entry.rest(measure, position, duration))
        else:
            names = [pitches] if isinstance(pitches, str) else list(pitches)
            built.append(Entry.note(measure, position, duration, names))
        position += duration
    return built


def triplet(measure: int, position: int, pitches: Sequence[str]) -> List[Entry]:
    """Three eighth-note triplets starting at position."""
    third = Q // 3
    run = []
    for idx, pitch in enumerate(pitches):
        run.append(
            Entry(
                measure=measure,
                position=position + idx * third,
                actual_duration=third,
                nominal_duration=Q // 2,
                pitches=[pitch] if pitch else [],
                tuplets=[Tuplet(3, 2, Q // 2)] if idx == 0 else [],
            )
        )
    return run


def make_document(staves: int = 2, measures: int = 1, length: int = WHOLE) -> MemoryDocument:
    document = MemoryDocument.uniform(measures, length)
    for idx in range(staves):
        document.add_staff(f"Staff {idx + 1}")
    return document


def timeline(
    document: MemoryDocument, staff_id: int, voice_slot: int = 1, start: int = 1, end: Optional[int] = None
) -> Timeline:
    measure_range = MeasureRange(start, start if end is None else end)
    return document.load_timeline(staff_id, voice_slot, measure_range)


def shape(entries_: Iterable[Entry]) -> List[Tuple[int, int, int, Tuple[str, ...]]]:
    """(measure, position, duration, pitches) per entry, for compact assertions."""
    return [
        (entry.measure, entry.position, entry.actual_duration, tuple(entry.pitches))
        for entry in entries_
    ]
