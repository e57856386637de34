"""Counsel Engine - Data Models"""
from .db_models import (
    # Enums
    ApplicationStatus, RequestStatus, AppointmentStatus, ChatSessionStatus,
    CLAIMABLE_REQUEST_STATES, TERMINAL_REQUEST_STATES,
    CLAIMABLE_APPOINTMENT_STATES, TERMINAL_APPOINTMENT_STATES,
    # Tables
    CounselorDB, CounselRequestDB, AppointmentDB, ChatSessionDB,
    utcnow,
)
from .results import (
    ClaimRejection, TransitionRejection,
    DispatchResult, ClaimResult, TransitionResult,
)

__all__ = [
    "ApplicationStatus", "RequestStatus", "AppointmentStatus", "ChatSessionStatus",
    "CLAIMABLE_REQUEST_STATES", "TERMINAL_REQUEST_STATES",
    "CLAIMABLE_APPOINTMENT_STATES", "TERMINAL_APPOINTMENT_STATES",
    "CounselorDB", "CounselRequestDB", "AppointmentDB", "ChatSessionDB",
    "utcnow",
    "ClaimRejection", "TransitionRejection",
    "DispatchResult", "ClaimResult", "TransitionResult",
]
