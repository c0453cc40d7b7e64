"""Move a timeline to another staff/voice slot, carrying its entry details."""

from __future__ import annotations

from typing import TYPE_CHECKING, List, Optional

from staffcombine.engine.timeline import Articulation, Entry, Timeline
from staffcombine.logging_utils import get_logger

if TYPE_CHECKING:
    from staffcombine.document import ScoreDocument

logger = get_logger(__name__)


def dedupe_articulations(articulations: List[Articulation]) -> List[Articulation]:
    """Keep the first articulation of each definition."""
    seen = set()
    kept = []
    for articulation in articulations:
        if articulation.definition_id in seen:
            continue
        seen.add(articulation.definition_id)
        kept.append(articulation)
    return kept


def transfer_pitches(source_entry: Entry, dest_entry: Entry) -> None:
    """Add the source pitches; a rest receiving a note becomes that note."""
    if dest_entry.is_rest and source_entry.is_note:
        dest_entry.notehead_overrides = {}
        dest_entry.tie_forward = source_entry.tie_forward
    dest_entry.add_pitches(source_entry.pitches)


def transfer_expressions(
    document: "ScoreDocument",
    source: Timeline,
    source_entry: Entry,
    destination: Timeline,
    dest_entry: Entry,
) -> int:
    """Copy the annotations inside source_entry's span to dest_entry's cell."""
    start = source_entry.position
    end = source_entry.position + source_entry.actual_duration
    if end <= start:
        return 0
    shift = dest_entry.position - source_entry.position
    existing = document.load_expressions(destination.staff_id, dest_entry.measure)
    copied = 0
    for expression in document.load_expressions(source.staff_id, source_entry.measure):
        if not start <= expression.position < end:
            continue
        moved = expression.moved_to(expression.position + shift)
        if moved in existing:
            continue
        document.add_expression(destination.staff_id, dest_entry.measure, moved)
        existing.append(moved)
        copied += 1
    return copied


def transfer_entry_details(
    document: "ScoreDocument",
    source: Timeline,
    source_entry: Entry,
    destination: Timeline,
    dest_entry: Entry,
    *,
    include_tuplets: bool = False,
) -> None:
    if include_tuplets:
        dest_entry.tuplets = list(source_entry.tuplets)
    dest_entry.articulations = dedupe_articulations(
        dest_entry.articulations + source_entry.articulations
    )
    for pitch in dest_entry.pitches:
        notehead = source_entry.notehead_overrides.get(pitch)
        if notehead is not None:
            dest_entry.notehead_overrides[pitch] = notehead
    transfer_expressions(document, source, source_entry, destination, dest_entry)


def relocate(
    document: "ScoreDocument",
    source: Timeline,
    staff_id: int,
    voice_slot: int,
    *,
    start_measure: Optional[int] = None,
) -> Timeline:
    """Write a copy of source at (staff_id, voice_slot) and return it.

    Returns source itself when it already lives at that address.
    """
    start = source.measure_range.start if start_measure is None else start_measure
    if source.address == (staff_id, voice_slot) and start == source.measure_range.start:
        return source
    measure_range = source.measure_range.shifted_to(start)
    lengths = {measure: document.measure_length(measure) for measure in measure_range}
    destination = source.clone(
        staff_id, voice_slot, start_measure=start, measure_lengths=lengths
    )
    for source_entry, dest_entry in zip(source.entries, destination.entries):
        transfer_entry_details(
            document, source, source_entry, destination, dest_entry, include_tuplets=True
        )
    document.save_timeline(destination)
    logger.info(
        "Relocated staff=%s slot=%s -> staff=%s slot=%s measures=%s-%s entries=%s",
        source.staff_id,
        source.voice_slot,
        staff_id,
        voice_slot,
        measure_range.start,
        measure_range.end,
        len(destination),
    )
    return destination
