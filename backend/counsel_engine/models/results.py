"""
Counsel Engine - Operation Results

Every dispatch, claim and lifecycle operation returns one of these instead of
raising, so callers can tell a lost race from bad input from an outage.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class ClaimRejection(str, Enum):
    """Why a claim (accept / accept_queued) did not win."""
    ALREADY_CLAIMED = "already_claimed"
    EXPIRED = "expired"
    TERMINAL_STATE = "terminal_state"
    NOT_FOUND = "not_found"
    NOT_ELIGIBLE = "not_eligible"
    AT_CAPACITY = "at_capacity"
    UNAVAILABLE = "unavailable"


class TransitionRejection(str, Enum):
    """Why a dispatch or lifecycle operation did not apply."""
    INVALID_INPUT = "invalid_input"
    NOT_FOUND = "not_found"
    TERMINAL_STATE = "terminal_state"
    EXPIRED = "expired"
    INVALID_TRANSITION = "invalid_transition"
    UNAVAILABLE = "unavailable"


@dataclass
class DispatchResult:
    """Outcome of creating a request (live broadcast or scheduled booking)."""
    success: bool
    request_id: Optional[str] = None
    status: Optional[str] = None
    broadcast_count: int = 0
    eligible_counselors: List[Any] = field(default_factory=list)
    appointment_id: Optional[str] = None
    reason: Optional[TransitionRejection] = None
    detail: Optional[str] = None

    @property
    def has_available_counselors(self) -> bool:
        return self.broadcast_count > 0

    @classmethod
    def rejected(cls, reason: TransitionRejection, detail: str = None) -> "DispatchResult":
        return cls(success=False, reason=reason, detail=detail)


@dataclass
class ClaimResult:
    """Outcome of a claim attempt. Exactly one concurrent attempt gets success."""
    success: bool
    request_id: Optional[str] = None
    appointment_id: Optional[str] = None
    counselor_id: Optional[str] = None
    chat_id: Optional[str] = None
    reason: Optional[ClaimRejection] = None

    @classmethod
    def rejected(cls, reason: ClaimRejection, request_id: str = None, appointment_id: str = None) -> "ClaimResult":
        return cls(success=False, reason=reason, request_id=request_id, appointment_id=appointment_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "request_id": self.request_id,
            "appointment_id": self.appointment_id,
            "counselor_id": self.counselor_id,
            "chat_id": self.chat_id,
            "reason": self.reason.value if self.reason else None,
        }


@dataclass
class TransitionResult:
    """Outcome of complete / cancel."""
    success: bool
    request_id: Optional[str] = None
    status: Optional[str] = None
    released_counselor_id: Optional[str] = None
    reason: Optional[TransitionRejection] = None
    detail: Optional[str] = None

    @classmethod
    def rejected(cls, reason: TransitionRejection, request_id: str = None, detail: str = None) -> "TransitionResult":
        return cls(success=False, reason=reason, request_id=request_id, detail=detail)
