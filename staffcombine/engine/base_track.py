"""Choose the rhythmic skeleton for a multi-source voice slot."""

from __future__ import annotations

import logging
from typing import List, Sequence

from staffcombine.engine.errors import MismatchedTupletsError
from staffcombine.engine.intervals import Interval, merge_intervals
from staffcombine.engine.timeline import Timeline
from staffcombine.logging_utils import get_logger

logger = get_logger(__name__)


def tuplet_spans(timelines: Sequence[Timeline]) -> List[Interval]:
    """Disjoint tuplet regions across all timelines feeding one slot."""
    spans: List[Interval] = []
    for timeline in timelines:
        spans.extend(timeline.tuplet_intervals())
    return merge_intervals(spans)


def select_base_track(timelines: Sequence[Timeline], *, voice_slot: int) -> Timeline:
    """Return the timeline with the most tuplet entries, validating the others against it.

    Ties go to the earliest timeline. Raises MismatchedTupletsError when a
    tuplet entry of another timeline has no base entry at its position.
    """
    if not timelines:
        raise ValueError("At least one timeline is required.")
    if len(timelines) == 1:
        return timelines[0]

    counts = [timeline.tuplet_entry_count() for timeline in timelines]
    base = timelines[counts.index(max(counts))]
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(
            "slot=%s base=%s tuplet_counts=%s",
            voice_slot,
            base.address,
            dict(zip((t.address for t in timelines), counts)),
        )
    validate_tuplet_alignment(base, timelines, voice_slot=voice_slot)
    return base


def validate_tuplet_alignment(
    base: Timeline, timelines: Sequence[Timeline], *, voice_slot: int
) -> None:
    base_positions = {base.absolute_position(entry) for entry in base.entries}
    for timeline in timelines:
        if timeline is base:
            continue
        for entry in timeline.tuplet_entries():
            if timeline.absolute_position(entry) not in base_positions:
                raise MismatchedTupletsError(
                    voice_slot=voice_slot,
                    staff_id=timeline.staff_id,
                    measure=entry.measure,
                    position=entry.position,
                )
