"""
Counsel Engine - SQLAlchemy ORM Models
Persistent storage for counselors, counsel requests, appointments and chat sessions
"""
from datetime import datetime, timezone
from enum import Enum
from sqlalchemy import Column, String, Integer, Float, DateTime, Text, JSON, ForeignKey, Enum as SQLEnum, Boolean
from ..database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp, the representation stored in every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# =============================================================================
# ENUMS
# =============================================================================

class ApplicationStatus(str, Enum):
    """Admin review status of a counselor application."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class RequestStatus(str, Enum):
    """Lifecycle states of a counsel request."""
    BROADCASTING = "broadcasting"
    PENDING = "pending"
    ACCEPTED = "accepted"
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class AppointmentStatus(str, Enum):
    """Lifecycle states of a queued appointment."""
    QUEUED = "queued"
    SCHEDULED = "scheduled"
    ACCEPTED = "accepted"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


class ChatSessionStatus(str, Enum):
    ACTIVE = "active"
    ENDED = "ended"


# A request may be claimed only from these states
CLAIMABLE_REQUEST_STATES = (
    RequestStatus.BROADCASTING,
    RequestStatus.PENDING,
    RequestStatus.SCHEDULED,
)

TERMINAL_REQUEST_STATES = (
    RequestStatus.COMPLETED,
    RequestStatus.CANCELLED,
    RequestStatus.EXPIRED,
)

CLAIMABLE_APPOINTMENT_STATES = (
    AppointmentStatus.QUEUED,
    AppointmentStatus.SCHEDULED,
)

TERMINAL_APPOINTMENT_STATES = (
    AppointmentStatus.COMPLETED,
    AppointmentStatus.CANCELLED,
    AppointmentStatus.NO_SHOW,
)


# =============================================================================
# DIRECTORY
# =============================================================================

class CounselorDB(Base):
    """Counselor record: registration, availability, coverage and capacity."""
    __tablename__ = "counselors"

    id = Column(String(128), primary_key=True)  # identity-provider user id
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False)
    phone = Column(String(50), nullable=True)

    # ==========================================================================
    # REGISTRATION
    # ==========================================================================
    national_id_number = Column(String(100), nullable=True)
    id_document_url = Column(String(500), nullable=True)
    application_status = Column(SQLEnum(ApplicationStatus), default=ApplicationStatus.PENDING, nullable=False)
    rejection_reason = Column(Text, nullable=True)
    applied_at = Column(DateTime, nullable=True)
    approved_at = Column(DateTime, nullable=True)
    approved_by = Column(String(255), nullable=True)
    is_verified = Column(Boolean, default=False)

    # ==========================================================================
    # OPERATIONAL STATUS
    # ==========================================================================
    is_online = Column(Boolean, default=False, nullable=False)
    is_available = Column(Boolean, nullable=True)  # NULL counts as available
    home_region = Column(String(8), nullable=False, index=True)
    serving_regions = Column(JSON, nullable=False, default=list)
    specializations = Column(JSON, nullable=False, default=list)

    # ==========================================================================
    # CAPACITY AND STATS - written only by the arbiter and lifecycle manager
    # ==========================================================================
    rating = Column(Float, default=0.0, nullable=False)
    total_cases = Column(Integer, default=0, nullable=False)
    completed_cases = Column(Integer, default=0, nullable=False)
    active_requests = Column(Integer, default=0, nullable=False)
    max_active_requests = Column(Integer, default=5, nullable=False)

    last_seen_at = Column(DateTime, default=utcnow)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def serves(self, region: str) -> bool:
        return region == self.home_region or region in (self.serving_regions or [])


# =============================================================================
# DISPATCH
# =============================================================================

class CounselRequestDB(Base):
    """
    A user's request for legal help.

    (status, counselor_id) is the claimed pair. It is only ever written
    through guarded updates, and counselor_id never changes once set.
    """
    __tablename__ = "counsel_requests"

    id = Column(String(36), primary_key=True)  # UUID

    # Requester
    user_id = Column(String(128), nullable=False, index=True)
    user_name = Column(String(255), nullable=False)
    user_email = Column(String(255), nullable=True)
    user_phone = Column(String(50), nullable=True)

    note = Column(Text, nullable=False)
    legal_category = Column(String(50), nullable=False)
    region = Column(String(8), nullable=False, index=True)

    status = Column(SQLEnum(RequestStatus), nullable=False, index=True)

    # Assignment
    counselor_id = Column(String(128), ForeignKey("counselors.id"), nullable=True, index=True)
    counselor_name = Column(String(255), nullable=True)
    counselor_phone = Column(String(50), nullable=True)

    # Scheduling (fallback path)
    preferred_date = Column(String(10), nullable=True)  # YYYY-MM-DD
    preferred_time = Column(String(5), nullable=True)   # HH:MM

    # Broadcast snapshot taken at creation time
    broadcasted_to = Column(JSON, nullable=False, default=list)
    broadcast_count = Column(Integer, default=0, nullable=False)

    expires_at = Column(DateTime, nullable=False, index=True)
    cancel_reason = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow)
    accepted_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)

    def is_expired(self, now: datetime) -> bool:
        """Unclaimed and past its deadline, whatever the stored status says."""
        return (
            self.counselor_id is None
            and self.status in CLAIMABLE_REQUEST_STATES
            and self.expires_at <= now
        )


class AppointmentDB(Base):
    """Dated booking paired one-to-one with a scheduled counsel request."""
    __tablename__ = "appointments"

    id = Column(String(36), primary_key=True)  # UUID
    request_id = Column(String(36), ForeignKey("counsel_requests.id"), nullable=False, unique=True, index=True)

    user_id = Column(String(128), nullable=False, index=True)
    user_name = Column(String(255), nullable=False)
    user_email = Column(String(255), nullable=True)
    user_phone = Column(String(50), nullable=True)
    note = Column(Text, nullable=False)
    region = Column(String(8), nullable=False, index=True)

    scheduled_date = Column(String(10), nullable=False)  # YYYY-MM-DD
    scheduled_time = Column(String(5), nullable=False)   # HH:MM

    status = Column(SQLEnum(AppointmentStatus), nullable=False, index=True)

    counselor_id = Column(String(128), ForeignKey("counselors.id"), nullable=True, index=True)
    counselor_name = Column(String(255), nullable=True)
    counselor_phone = Column(String(50), nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow)


# =============================================================================
# CHAT SESSIONS (opened once a claim succeeds)
# =============================================================================

class ChatSessionDB(Base):
    """Messaging thread between a requester and the counselor who claimed the request."""
    __tablename__ = "chat_sessions"

    id = Column(String(36), primary_key=True)  # UUID
    request_id = Column(String(36), ForeignKey("counsel_requests.id"), nullable=True, unique=True)
    appointment_id = Column(String(36), ForeignKey("appointments.id"), nullable=True)

    user_id = Column(String(128), nullable=False, index=True)
    user_name = Column(String(255), nullable=False)
    counselor_id = Column(String(128), nullable=False, index=True)
    counselor_name = Column(String(255), nullable=False)

    status = Column(SQLEnum(ChatSessionStatus), default=ChatSessionStatus.ACTIVE, nullable=False)
    unread_count_user = Column(Integer, default=0)
    unread_count_counselor = Column(Integer, default=0)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow)
