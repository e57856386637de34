"""
Booking Queue

Fallback path for when nobody is on duty: the user books a date and time,
and the request waits in a pull queue that counselors poll.

scheduleBooking writes the SCHEDULED request and its QUEUED appointment in
one transaction. Claims go through the Arbiter, so a queued claim and a
live claim on the same request race under the same guard.
"""
import logging
import os
from datetime import datetime, timedelta
from typing import List, Optional
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...models.db_models import (
    CounselRequestDB, AppointmentDB, RequestStatus, AppointmentStatus, utcnow,
)
from ...models.results import DispatchResult, ClaimResult, TransitionRejection
from .arbiter import Arbiter
from .dispatcher import validate_request_details

logger = logging.getLogger(__name__)

SCHEDULED_EXPIRY_DAYS = int(os.getenv("COUNSEL_SCHEDULED_EXPIRY_DAYS", "7"))

DATE_FORMAT = "%Y-%m-%d"
TIME_FORMAT = "%H:%M"


def _parses(value: str, fmt: str) -> bool:
    try:
        datetime.strptime(value, fmt)
    except (TypeError, ValueError):
        return False
    return True


class BookingQueue:
    """Scheduled bookings and the appointment queue counselors pull from."""

    def __init__(
        self,
        db_session: Session,
        arbiter: Optional[Arbiter] = None,
        expiry_days: int = SCHEDULED_EXPIRY_DAYS,
    ):
        """Initialize with database session."""
        self.db = db_session
        self.arbiter = arbiter or Arbiter(db_session)
        self.expiry = timedelta(days=expiry_days)

    def schedule_booking(
        self,
        user_id: str,
        user_name: str,
        note: str,
        legal_category: str,
        region: str,
        preferred_date: str,
        preferred_time: str,
        user_email: Optional[str] = None,
        user_phone: Optional[str] = None,
    ) -> DispatchResult:
        """
        Create a scheduled request with its queued appointment.

        Both rows are committed together or not at all.
        """
        problem = validate_request_details(user_id, user_name, note, legal_category, region)
        if problem is None and not _parses(preferred_date, DATE_FORMAT):
            problem = f"Invalid date (expected YYYY-MM-DD): {preferred_date}"
        if problem is None and not _parses(preferred_time, TIME_FORMAT):
            problem = f"Invalid time (expected HH:MM): {preferred_time}"
        if problem:
            return DispatchResult.rejected(TransitionRejection.INVALID_INPUT, problem)

        now = utcnow()
        request_id = str(uuid4())
        appointment_id = str(uuid4())
        try:
            self.db.add(CounselRequestDB(
                id=request_id,
                user_id=user_id,
                user_name=user_name,
                user_email=user_email or "",
                user_phone=user_phone or "",
                note=note.strip(),
                legal_category=legal_category,
                region=region,
                status=RequestStatus.SCHEDULED,
                preferred_date=preferred_date,
                preferred_time=preferred_time,
                broadcasted_to=[],
                broadcast_count=0,
                expires_at=now + self.expiry,
                created_at=now,
                updated_at=now,
            ))
            # Parent row must be flushed first for the foreign key
            self.db.flush()
            self.db.add(AppointmentDB(
                id=appointment_id,
                request_id=request_id,
                user_id=user_id,
                user_name=user_name,
                user_email=user_email or "",
                user_phone=user_phone or "",
                note=note.strip(),
                region=region,
                scheduled_date=preferred_date,
                scheduled_time=preferred_time,
                status=AppointmentStatus.QUEUED,
                created_at=now,
                updated_at=now,
            ))
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to schedule booking for user {user_id}: {e}")
            return DispatchResult.rejected(TransitionRejection.UNAVAILABLE, "Database unavailable")

        logger.info(f"Booking scheduled: request {request_id}, appointment {appointment_id} on {preferred_date} {preferred_time}")
        return DispatchResult(
            success=True,
            request_id=request_id,
            status=RequestStatus.SCHEDULED.value,
            appointment_id=appointment_id,
        )

    def list_queued(self, region: Optional[str] = None) -> List[AppointmentDB]:
        """Queued appointments whose request is still open, earliest slot first."""
        now = utcnow()
        query = self.db.query(AppointmentDB).join(
            CounselRequestDB, AppointmentDB.request_id == CounselRequestDB.id,
        ).filter(
            AppointmentDB.status == AppointmentStatus.QUEUED,
            AppointmentDB.counselor_id.is_(None),
            CounselRequestDB.expires_at > now,
        )
        if region:
            query = query.filter(AppointmentDB.region == region)
        return query.order_by(
            AppointmentDB.scheduled_date.asc(),
            AppointmentDB.scheduled_time.asc(),
        ).all()

    def get_appointment(self, appointment_id: str) -> Optional[AppointmentDB]:
        return self.db.get(AppointmentDB, appointment_id)

    def appointments_for_counselor(self, counselor_id: str) -> List[AppointmentDB]:
        return self.db.query(AppointmentDB).filter(
            AppointmentDB.counselor_id == counselor_id,
        ).order_by(
            AppointmentDB.scheduled_date.asc(),
            AppointmentDB.scheduled_time.asc(),
        ).all()

    def accept_queued(
        self,
        appointment_id: str,
        counselor_id: str,
        counselor_name: Optional[str] = None,
        counselor_phone: Optional[str] = None,
    ) -> ClaimResult:
        return self.arbiter.accept_queued(appointment_id, counselor_id, counselor_name, counselor_phone)
