"""
Voice consolidation engine.

This module exposes the public APIs for combining staves.
"""

from staffcombine.engine.timeline import (
    TICKS_PER_QUARTER,
    VOICE_SLOTS,
    Articulation,
    Entry,
    Expression,
    MeasureRange,
    ScalarPayload,
    StructuredPayload,
    Timeline,
    Tuplet,
    expression_payload,
)
from staffcombine.engine.errors import (
    CombineError,
    DocumentAccessError,
    EmptyDestinationConfirmationRequired,
    InvalidMergeTaskError,
    InvalidSpliceAnchorError,
    MismatchedTupletsError,
    SlotError,
    TimelineContinuityError,
)
from staffcombine.engine.intervals import merge_intervals
from staffcombine.engine.base_track import select_base_track
from staffcombine.engine.relocate import relocate
from staffcombine.engine.splice import consolidate, merge
from staffcombine.engine.merge_task import MergeTask, SlotAssignment, load_merge_task
from staffcombine.engine.orchestrator import CombineReport, SlotResult, SlotState, combine_staves
from staffcombine.engine.regions import (
    RegionDetection,
    combine_line,
    detect_next_region,
    finish_line,
    iter_regions,
    staves_with_secondary_layers,
)

__all__ = [
    # Model
    "TICKS_PER_QUARTER",
    "VOICE_SLOTS",
    "Articulation",
    "Entry",
    "Expression",
    "MeasureRange",
    "ScalarPayload",
    "StructuredPayload",
    "Timeline",
    "Tuplet",
    "expression_payload",
    # Errors
    "CombineError",
    "DocumentAccessError",
    "EmptyDestinationConfirmationRequired",
    "InvalidMergeTaskError",
    "InvalidSpliceAnchorError",
    "MismatchedTupletsError",
    "SlotError",
    "TimelineContinuityError",
    # Merge steps
    "merge_intervals",
    "select_base_track",
    "relocate",
    "merge",
    "consolidate",
    # Orchestration
    "MergeTask",
    "SlotAssignment",
    "load_merge_task",
    "CombineReport",
    "SlotResult",
    "SlotState",
    "combine_staves",
    # Lines
    "RegionDetection",
    "combine_line",
    "detect_next_region",
    "finish_line",
    "iter_regions",
    "staves_with_secondary_layers",
]
