"""
Counsel Request State Machine

Deterministic transition table for counsel requests and their paired
appointments. Terminal states never transition again.

The table only answers "is this move legal". Applying a move is always a
guarded update against the store, done by the component that owns it.
"""
from typing import Any, Dict, List, Optional, Tuple

from ...models.db_models import (
    RequestStatus, AppointmentStatus, CounselRequestDB,
    CLAIMABLE_REQUEST_STATES,
)
from ...models.results import ClaimRejection, TransitionRejection


# =============================================================================
# STATE CONFIGURATION
# =============================================================================
#
# OWNERSHIP MODEL:
# Each state names the component allowed to move a request INTO it:
# - DISPATCHER: creation with a live broadcast (or an empty one)
# - SCHEDULER: creation through the booking queue
# - ARBITER: a winning claim
# - LIFECYCLE: completion and cancellation
# - TIME: expiry, applied lazily at read/claim time (and optionally by the reaper)
#
# =============================================================================

REQUEST_STATE_CONFIG = {
    RequestStatus.BROADCASTING: {
        "description": "Broadcast to eligible counselors, waiting for a claim",
        "allowed_transitions": [
            RequestStatus.ACCEPTED,
            RequestStatus.CANCELLED,
            RequestStatus.EXPIRED,
        ],
        "entry_authority": "DISPATCHER",
    },
    RequestStatus.PENDING: {
        "description": "No counselor was eligible at creation, open to any serving counselor",
        "allowed_transitions": [
            RequestStatus.ACCEPTED,
            RequestStatus.CANCELLED,
            RequestStatus.EXPIRED,
        ],
        "entry_authority": "DISPATCHER",
    },
    RequestStatus.SCHEDULED: {
        "description": "Booked for a later date, offered through the appointment queue",
        "allowed_transitions": [
            RequestStatus.ACCEPTED,
            RequestStatus.CANCELLED,
            RequestStatus.EXPIRED,
        ],
        "entry_authority": "SCHEDULER",
    },
    RequestStatus.ACCEPTED: {
        "description": "Claimed by exactly one counselor",
        "allowed_transitions": [
            RequestStatus.COMPLETED,
            RequestStatus.CANCELLED,
        ],
        "entry_authority": "ARBITER",
    },
    RequestStatus.COMPLETED: {
        "description": "Counsel delivered",
        "allowed_transitions": [],  # Terminal state
        "entry_authority": "LIFECYCLE",
    },
    RequestStatus.CANCELLED: {
        "description": "Withdrawn before or after assignment",
        "allowed_transitions": [],  # Terminal state
        "entry_authority": "LIFECYCLE",
    },
    RequestStatus.EXPIRED: {
        "description": "Deadline passed while unclaimed",
        "allowed_transitions": [],  # Terminal state
        "entry_authority": "TIME",
    },
}

# Appointment status that mirrors each request status, for cascades
PAIRED_APPOINTMENT_STATUS = {
    RequestStatus.ACCEPTED: AppointmentStatus.ACCEPTED,
    RequestStatus.COMPLETED: AppointmentStatus.COMPLETED,
    RequestStatus.CANCELLED: AppointmentStatus.CANCELLED,
    RequestStatus.EXPIRED: AppointmentStatus.CANCELLED,
}


# =============================================================================
# STATE MACHINE
# =============================================================================

class RequestStateMachine:
    """
    Transition rules for counsel requests.

    Stateless: every method takes the state (or the request) to judge.
    """

    def get_state_config(self, state: RequestStatus) -> Dict[str, Any]:
        return REQUEST_STATE_CONFIG.get(state, {})

    def can_transition(
        self,
        from_state: RequestStatus,
        to_state: RequestStatus,
    ) -> Tuple[bool, str]:
        """
        Check if a state transition is allowed.

        Returns (allowed, reason)
        """
        allowed_transitions = self.get_state_config(from_state).get("allowed_transitions", [])
        if to_state in allowed_transitions:
            return True, "Transition allowed"
        return False, f"Cannot transition from {from_state.value} to {to_state.value}"

    def is_terminal_state(self, state: RequestStatus) -> bool:
        return len(self.get_state_config(state).get("allowed_transitions", [])) == 0

    def get_next_states(self, state: RequestStatus) -> List[RequestStatus]:
        return self.get_state_config(state).get("allowed_transitions", [])

    def effective_status(self, request: CounselRequestDB, now) -> RequestStatus:
        """Stored status with lazy expiry applied."""
        if request.is_expired(now):
            return RequestStatus.EXPIRED
        return request.status

    def classify_claim_failure(self, request: Optional[CounselRequestDB], now) -> ClaimRejection:
        """
        Explain why a request cannot be claimed right now.

        Used both before the guarded update (fast rejection) and after it
        matched zero rows (someone else got there first).
        """
        if request is None:
            return ClaimRejection.NOT_FOUND
        # Past the deadline is expired no matter what the stored status says
        if request.status == RequestStatus.EXPIRED or request.expires_at <= now:
            return ClaimRejection.EXPIRED
        if request.status in (RequestStatus.COMPLETED, RequestStatus.CANCELLED):
            return ClaimRejection.TERMINAL_STATE
        if request.counselor_id is not None or request.status == RequestStatus.ACCEPTED:
            return ClaimRejection.ALREADY_CLAIMED
        if request.status not in CLAIMABLE_REQUEST_STATES:
            return ClaimRejection.TERMINAL_STATE
        return ClaimRejection.ALREADY_CLAIMED

    def classify_transition_failure(
        self,
        request: Optional[CounselRequestDB],
        to_state: RequestStatus,
        now,
    ) -> TransitionRejection:
        """Explain why complete/cancel cannot move the request to to_state."""
        if request is None:
            return TransitionRejection.NOT_FOUND
        current = self.effective_status(request, now)
        if current == RequestStatus.EXPIRED:
            return TransitionRejection.EXPIRED
        if self.is_terminal_state(current):
            return TransitionRejection.TERMINAL_STATE
        # Either illegal on paper, or legal but the guarded update lost to a concurrent writer
        return TransitionRejection.INVALID_TRANSITION
