"""Error types raised while combining staves."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional


class CombineError(Exception):
    """Base class for every error raised by the combine engine."""

    def to_payload(self) -> Dict[str, Any]:
        return {"error_type": type(self).__name__, "detail": str(self)}


class SlotError(CombineError):
    """Aborts the merge of one voice slot; other slots keep processing."""


@dataclass
class MismatchedTupletsError(SlotError):
    """Raised when a non-base tuplet entry has no counterpart in the base track."""

    voice_slot: int
    staff_id: int
    measure: int
    position: int
    detail: str = "mismatched_tuplets"

    def to_payload(self) -> Dict[str, Any]:
        return {
            "error_type": "MismatchedTuplets",
            "voice_slot": int(self.voice_slot),
            "staff_id": int(self.staff_id),
            "measure": int(self.measure),
            "position": int(self.position),
            "detail": self.detail,
        }

    def __str__(self) -> str:
        return (
            f"{self.detail}: slot={self.voice_slot} staff={self.staff_id} "
            f"measure={self.measure} position={self.position} has no matching base entry"
        )


@dataclass
class InvalidSpliceAnchorError(SlotError):
    """Raised when no base entry precedes a note that must be spliced in."""

    voice_slot: int
    measure: int
    position: int
    detail: str = "invalid_splice_anchor"

    def to_payload(self) -> Dict[str, Any]:
        return {
            "error_type": "InvalidSpliceAnchor",
            "voice_slot": int(self.voice_slot),
            "measure": int(self.measure),
            "position": int(self.position),
            "detail": self.detail,
        }

    def __str__(self) -> str:
        return (
            f"{self.detail}: slot={self.voice_slot} measure={self.measure} "
            f"position={self.position}"
        )


@dataclass
class EmptyDestinationConfirmationRequired(CombineError):
    """Raised when nothing is assigned and clearing the destination was not confirmed."""

    staff_id: int
    start_measure: int
    end_measure: int

    def to_payload(self) -> Dict[str, Any]:
        return {
            "error_type": "EmptyDestinationConfirmationRequired",
            "staff_id": int(self.staff_id),
            "start_measure": int(self.start_measure),
            "end_measure": int(self.end_measure),
        }

    def __str__(self) -> str:
        return (
            f"No voice slots assigned. Confirm clearing staff {self.staff_id} "
            f"measures {self.start_measure}-{self.end_measure}."
        )


class DocumentAccessError(CombineError):
    """Raised by the document collaborator when a read or write fails."""


class InvalidMergeTaskError(CombineError, ValueError):
    """Raised when a merge task payload is malformed."""

    def __init__(self, message: str, *, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.field = field

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error_type": "InvalidMergeTask", "detail": str(self)}
        if self.field is not None:
            payload["field"] = self.field
        return payload


class TimelineContinuityError(CombineError, ValueError):
    """Raised when a timeline's entries are not contiguous within a measure."""
