"""Combine the voice slots of several staves into one destination staff."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence, Set, Tuple

from staffcombine.engine.base_track import select_base_track, tuplet_spans
from staffcombine.engine.errors import (
    EmptyDestinationConfirmationRequired,
    SlotError,
)
from staffcombine.engine.intervals import Interval
from staffcombine.engine.merge_task import MergeTask, SlotAssignment
from staffcombine.engine.relocate import relocate
from staffcombine.engine.splice import consolidate
from staffcombine.engine.timeline import VOICE_SLOTS, Timeline
from staffcombine.logging_utils import get_logger, set_log_context, summarize_payload

if TYPE_CHECKING:
    from staffcombine.document import ScoreDocument

logger = get_logger(__name__)


class SlotState(str, Enum):
    UNASSIGNED = "unassigned"
    SINGLE_SOURCE = "single_source"
    MULTI_SOURCE = "multi_source"
    VALIDATED = "validated"
    MERGED = "merged"
    REJECTED = "rejected"
    CLEARED = "cleared"


@dataclass(frozen=True)
class SlotResult:
    voice_slot: int
    state: SlotState
    sources: Tuple[Tuple[int, int], ...] = ()
    base: Optional[Tuple[int, int]] = None
    used_scratch: bool = False
    error: Optional[Dict[str, Any]] = None
    history: Tuple[SlotState, ...] = ()
    tuplet_spans: Tuple[Interval, ...] = ()

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "voice_slot": self.voice_slot,
            "state": self.state.value,
            "sources": [list(source) for source in self.sources],
            "used_scratch": self.used_scratch,
            "history": [state.value for state in self.history or (self.state,)],
        }
        if self.tuplet_spans:
            payload["tuplet_spans"] = [list(span) for span in self.tuplet_spans]
        if self.base is not None:
            payload["base"] = list(self.base)
        if self.error is not None:
            payload["error"] = self.error
        return payload


@dataclass
class CombineReport:
    destination_staff: int
    start_measure: int
    end_measure: int
    slots: Dict[int, SlotResult] = field(default_factory=dict)
    scratch_staff: Optional[int] = None

    @property
    def rejected(self) -> List[SlotResult]:
        return [result for result in self.slots.values() if result.state is SlotState.REJECTED]

    @property
    def ok(self) -> bool:
        return not self.rejected

    def to_payload(self) -> Dict[str, Any]:
        return {
            "destination_staff": self.destination_staff,
            "measure_range": [self.start_measure, self.end_measure],
            "ok": self.ok,
            "scratch_staff": self.scratch_staff,
            "slots": [self.slots[slot].to_payload() for slot in sorted(self.slots)],
        }


def processing_order(task: MergeTask) -> List[int]:
    """Slots fed by the destination staff first, then the rest, each ascending."""
    by_slot = task.sources_by_slot()
    first = [
        slot
        for slot in VOICE_SLOTS
        if any(a.source_staff == task.destination_staff for a in by_slot[slot])
    ]
    return first + [slot for slot in VOICE_SLOTS if slot not in first]


def needs_scratch(
    task: MergeTask,
    voice_slot: int,
    assignments: Sequence[SlotAssignment],
    pending_sources: Set[Tuple[int, int]],
) -> bool:
    """True when writing (destination, voice_slot) directly could clobber pending data."""
    from_destination = any(a.source_staff == task.destination_staff for a in assignments)
    if len(assignments) > 1 and from_destination:
        return True
    return (task.destination_staff, voice_slot) in pending_sources


def combine_staves(
    document: "ScoreDocument",
    task: MergeTask,
    *,
    confirm_clear: bool = False,
) -> CombineReport:
    """Run one merge task against the document and report every slot's outcome.

    Slot-scoped failures are recorded as REJECTED results; document failures
    propagate. When nothing is assigned the destination is only cleared if
    confirm_clear is set, otherwise EmptyDestinationConfirmationRequired is
    raised before anything is written.
    """
    set_log_context(task_id=task.task_id, staff_id=task.destination_staff)
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug("combine_staves task=%s", summarize_payload(task.to_dict()))
    report = CombineReport(
        destination_staff=task.destination_staff,
        start_measure=task.measure_range.start,
        end_measure=task.measure_range.end,
    )

    if not task.has_assignments:
        if not confirm_clear:
            raise EmptyDestinationConfirmationRequired(
                staff_id=task.destination_staff,
                start_measure=task.measure_range.start,
                end_measure=task.measure_range.end,
            )
        for voice_slot in VOICE_SLOTS:
            _clear_slot(document, task, voice_slot)
            report.slots[voice_slot] = _cleared(voice_slot)
        logger.info("Cleared staff %s with no assignments", task.destination_staff)
        return report

    by_slot = task.sources_by_slot()
    snapshots: Dict[Tuple[int, int], Timeline] = {
        a.source_address: document.load_timeline(a.source_staff, a.source_voice_slot, task.measure_range)
        for a in task.assignments
    }
    pending_slots = {slot for slot in VOICE_SLOTS if by_slot[slot]}
    scratch_results: Dict[int, Timeline] = {}

    try:
        for voice_slot in processing_order(task):
            assignments = by_slot[voice_slot]
            if not assignments:
                continue
            pending_slots.discard(voice_slot)
            pending_sources = {
                a.source_address for slot in pending_slots for a in by_slot[slot]
            }
            use_scratch = needs_scratch(task, voice_slot, assignments, pending_sources)
            if use_scratch and report.scratch_staff is None:
                report.scratch_staff = document.append_staff("scratch")
            target_staff = report.scratch_staff if use_scratch else task.destination_staff
            result, timeline = _combine_slot(
                document,
                task,
                voice_slot,
                [snapshots[a.source_address] for a in assignments],
                target_staff,
                used_scratch=use_scratch,
            )
            report.slots[voice_slot] = result
            if use_scratch and timeline is not None:
                scratch_results[voice_slot] = timeline

        for voice_slot, timeline in scratch_results.items():
            relocate(document, timeline, task.destination_staff, voice_slot)
    finally:
        if report.scratch_staff is not None:
            document.delete_staff(report.scratch_staff)

    for voice_slot in VOICE_SLOTS:
        if by_slot[voice_slot]:
            continue
        if task.auto_clear_unassigned_slots:
            _clear_slot(document, task, voice_slot)
            report.slots[voice_slot] = _cleared(voice_slot)
        else:
            report.slots[voice_slot] = SlotResult(voice_slot, SlotState.UNASSIGNED)

    logger.info(
        "Combined into staff %s measures %s-%s: %s",
        task.destination_staff,
        task.measure_range.start,
        task.measure_range.end,
        {slot: result.state.value for slot, result in sorted(report.slots.items())},
    )
    return report


def _combine_slot(
    document: "ScoreDocument",
    task: MergeTask,
    voice_slot: int,
    sources: Sequence[Timeline],
    target_staff: int,
    *,
    used_scratch: bool,
) -> Tuple[SlotResult, Optional[Timeline]]:
    addresses = tuple(source.address for source in sources)
    if len(sources) == 1:
        timeline = relocate(document, sources[0], target_staff, voice_slot)
        return (
            SlotResult(
                voice_slot,
                SlotState.MERGED,
                sources=addresses,
                base=addresses[0],
                used_scratch=used_scratch,
                history=(SlotState.SINGLE_SOURCE, SlotState.MERGED),
            ),
            timeline,
        )

    spans = tuple(tuplet_spans(sources))
    history: Tuple[SlotState, ...] = (SlotState.MULTI_SOURCE,)
    try:
        base = select_base_track(sources, voice_slot=voice_slot)
    except SlotError as exc:
        logger.warning("Slot %s rejected: %s", voice_slot, exc)
        return (
            SlotResult(
                voice_slot,
                SlotState.REJECTED,
                sources=addresses,
                used_scratch=used_scratch,
                error=exc.to_payload(),
                history=history + (SlotState.REJECTED,),
                tuplet_spans=spans,
            ),
            None,
        )
    history += (SlotState.VALIDATED,)
    logger.info(
        "Slot %s validated base=%s tuplet_spans=%s", voice_slot, base.address, list(spans)
    )

    previous = document.load_timeline(target_staff, voice_slot, task.measure_range)
    try:
        destination = relocate(document, base, target_staff, voice_slot)
        if destination is base:
            destination = base.copy()
        others = [source for source in sources if source is not base]
        timeline = consolidate(document, destination, others)
    except SlotError as exc:
        document.save_timeline(previous)
        logger.warning("Slot %s rejected, restored staff=%s: %s", voice_slot, target_staff, exc)
        return (
            SlotResult(
                voice_slot,
                SlotState.REJECTED,
                sources=addresses,
                base=base.address,
                used_scratch=used_scratch,
                error=exc.to_payload(),
                history=history + (SlotState.REJECTED,),
                tuplet_spans=spans,
            ),
            None,
        )
    return (
        SlotResult(
            voice_slot,
            SlotState.MERGED,
            sources=addresses,
            base=base.address,
            used_scratch=used_scratch,
            history=history + (SlotState.MERGED,),
            tuplet_spans=spans,
        ),
        timeline,
    )


def _cleared(voice_slot: int) -> SlotResult:
    return SlotResult(
        voice_slot, SlotState.CLEARED, history=(SlotState.UNASSIGNED, SlotState.CLEARED)
    )


def _clear_slot(document: "ScoreDocument", task: MergeTask, voice_slot: int) -> None:
    lengths = {measure: document.measure_length(measure) for measure in task.measure_range}
    document.save_timeline(
        Timeline.empty(task.destination_staff, voice_slot, task.measure_range, lengths)
    )
