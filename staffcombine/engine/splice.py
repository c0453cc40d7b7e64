"""Match and splice the entries of one timeline into a base timeline."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional, Sequence

from staffcombine.engine.errors import InvalidSpliceAnchorError
from staffcombine.engine.relocate import transfer_entry_details, transfer_pitches
from staffcombine.engine.timeline import Entry, Timeline
from staffcombine.logging_utils import get_logger

if TYPE_CHECKING:
    from staffcombine.document import ScoreDocument

logger = get_logger(__name__)


def merge_entries(document: "ScoreDocument", base: Timeline, other: Timeline) -> Timeline:
    """Fold every entry of other into base without cleaning up.

    Exact position matches are combined; unmatched notes are spliced in by
    splitting the base entry that covers their position; unmatched rests add
    nothing. Zero-length entries may be left behind.
    """
    if other is base:
        return base
    for entry in other.entries:
        if entry.actual_duration <= 0:
            continue
        position = other.absolute_position(entry)
        if entry.is_note:
            _ensure_occupied(base, entry, position)
        match = base.find_at(position)
        if match is not None:
            _combine(document, base, match, other, entry)
        elif entry.is_note:
            _splice(document, base, other, entry, position)
    return base


def merge(document: "ScoreDocument", base: Timeline, other: Timeline) -> Timeline:
    """Merge other into base in memory, then drop null entries and rebar."""
    merge_entries(document, base, other)
    base.delete_null_entries()
    base.rebar()
    return base


def consolidate(
    document: "ScoreDocument", base: Timeline, others: Sequence[Timeline]
) -> Timeline:
    """Merge others into base in order, write it, rebar it and reload it."""
    for other in others:
        merge_entries(document, base, other)
    removed = base.delete_null_entries()
    document.save_timeline(base)
    document.rebar_measure(base.staff_id, base.measure_range.start)
    result = document.load_timeline(base.staff_id, base.voice_slot, base.measure_range)
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(
            "Consolidated %s sources into staff=%s slot=%s null_removed=%s result=%s",
            len(others) + 1,
            base.staff_id,
            base.voice_slot,
            removed,
            result.summary(),
        )
    return result


def _ensure_occupied(base: Timeline, entry: Entry, position: int) -> None:
    measure = base.measure_at(position)
    if measure is None:
        raise InvalidSpliceAnchorError(
            voice_slot=base.voice_slot, measure=entry.measure, position=entry.position
        )
    if base.is_unoccupied(measure):
        base.fill_measure_with_rest(measure)


def _combine(
    document: "ScoreDocument",
    base: Timeline,
    dest_entry: Entry,
    other: Timeline,
    source_entry: Entry,
) -> None:
    rest_remainder = 0
    if (
        source_entry.is_note
        and dest_entry.is_rest
        and source_entry.actual_duration < dest_entry.actual_duration
    ):
        rest_remainder = dest_entry.actual_duration - source_entry.actual_duration
    transfer_pitches(source_entry, dest_entry)
    transfer_entry_details(document, other, source_entry, base, dest_entry)
    if rest_remainder:
        base.set_duration(dest_entry, dest_entry.actual_duration - rest_remainder)
        base.insert_after(dest_entry, Entry.rest(dest_entry.measure, 0, rest_remainder))
    if source_entry.is_note and source_entry.actual_duration > dest_entry.actual_duration:
        unabsorbed = _absorb_following_rests(
            base, dest_entry, source_entry.actual_duration - dest_entry.actual_duration
        )
        if unabsorbed:
            logger.debug(
                "Left %s ticks of %s unabsorbed in staff=%s slot=%s",
                unabsorbed,
                source_entry.describe(),
                base.staff_id,
                base.voice_slot,
            )


def _absorb_following_rests(base: Timeline, entry: Entry, excess: int) -> int:
    """Grow entry over whole following rests; return the excess left over."""
    remaining = excess
    current: Optional[Entry] = base.next_entry(entry)
    while current is not None and not current.is_note and remaining > 0:
        if current.actual_duration > 0:
            if remaining < current.actual_duration:
                break
            base.set_duration(entry, entry.actual_duration + current.actual_duration)
            remaining -= current.actual_duration
            base.set_duration(current, 0)
        current = base.next_entry(current)
    return remaining


def _splice(
    document: "ScoreDocument",
    base: Timeline,
    other: Timeline,
    source_entry: Entry,
    position: int,
) -> None:
    anchor = base.closest_before(position)
    if anchor is None:
        raise InvalidSpliceAnchorError(
            voice_slot=base.voice_slot, measure=source_entry.measure, position=source_entry.position
        )
    anchor_start = base.absolute_position(anchor)
    anchor_end = anchor_start + anchor.actual_duration
    if anchor_end <= position:
        raise InvalidSpliceAnchorError(
            voice_slot=base.voice_slot,
            measure=source_entry.measure,
            position=source_entry.position,
            detail="splice_position_not_covered",
        )
    split_rest = anchor.is_rest
    base.set_duration(anchor, position - anchor_start)
    spliced = Entry(
        measure=anchor.measure,
        position=0,
        actual_duration=anchor_end - position,
        pitches=list(source_entry.pitches),
        tie_forward=anchor.tie_forward,
    )
    anchor.tie_forward = False
    base.insert_after(anchor, spliced)
    transfer_entry_details(document, other, source_entry, base, spliced)
    # A note spliced into a rest keeps its own length; the rest resumes after it.
    if split_rest and source_entry.actual_duration < spliced.actual_duration:
        remainder = spliced.actual_duration - source_entry.actual_duration
        base.set_duration(spliced, source_entry.actual_duration)
        spliced.tie_forward = source_entry.tie_forward
        base.insert_after(spliced, Entry.rest(spliced.measure, 0, remainder))
