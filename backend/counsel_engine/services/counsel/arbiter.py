"""
Arbiter

Decides who gets a request when several counselors claim it at once.

A claim is a compare-and-swap on the request's (status, counselor_id) pair,
expressed as one conditional UPDATE:

    UPDATE counsel_requests
       SET status = 'accepted', counselor_id = :claimant, ...
     WHERE id = :id
       AND status IN ('broadcasting', 'pending', 'scheduled')
       AND counselor_id IS NULL
       AND expires_at > :now

rowcount == 1 means this caller won. rowcount == 0 means somebody else
already did (or the deadline passed, or the request was closed), and the
transaction is rolled back without touching anything. There is no read
followed by a separate write anywhere on the claim path; the reads before
the UPDATE only produce fast rejections and better error reasons.

In the same transaction the winner's capacity is reserved with a guarded
increment (active_requests < max_active_requests) and, for scheduled
requests, the paired appointment is claimed too. Any guard failing rolls
the whole claim back.

Chat-session creation runs after commit and is best-effort.

No method raises for expected outcomes; every path returns a ClaimResult.
"""
import logging
from typing import Optional

from sqlalchemy import update, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...models.db_models import (
    CounselorDB, CounselRequestDB, AppointmentDB,
    ApplicationStatus, RequestStatus, AppointmentStatus,
    CLAIMABLE_REQUEST_STATES, CLAIMABLE_APPOINTMENT_STATES, TERMINAL_APPOINTMENT_STATES,
    utcnow,
)
from ...models.results import ClaimResult, ClaimRejection
from .chat_sessions import ChatSessionCreator, ChatSessionService
from .directory import CounselorDirectory
from .state_machine import RequestStateMachine

logger = logging.getLogger(__name__)


def is_claimable(request: CounselRequestDB, now) -> bool:
    """Mirror of the UPDATE guard, evaluated on a snapshot."""
    return (
        request.status in CLAIMABLE_REQUEST_STATES
        and request.counselor_id is None
        and request.expires_at > now
    )


class Arbiter:
    """
    Single point where requests and appointments get assigned.

    Every claim, whether on a live broadcast (accept) or from the booking
    queue (accept_queued), goes through the same guarded update on the
    request row, so the two paths race fairly and only one can win.
    """

    def __init__(
        self,
        db_session: Session,
        directory: Optional[CounselorDirectory] = None,
        chat_sessions: Optional[ChatSessionCreator] = None,
    ):
        """Initialize with database session."""
        self.db = db_session
        self.directory = directory or CounselorDirectory(db_session)
        self.chat_sessions = chat_sessions or ChatSessionService(db_session)
        self.state_machine = RequestStateMachine()

    # =========================================================================
    # LIVE CLAIM
    # =========================================================================

    def accept(
        self,
        request_id: str,
        counselor_id: str,
        counselor_name: Optional[str] = None,
        counselor_phone: Optional[str] = None,
    ) -> ClaimResult:
        """
        Claim a request for a counselor.

        First valid claim wins; every other concurrent claim gets
        already_claimed. Past the deadline the answer is expired.
        """
        now = utcnow()
        try:
            request = self.db.get(CounselRequestDB, request_id, populate_existing=True)
            if request is None or not is_claimable(request, now):
                reason = self.state_machine.classify_claim_failure(request, now)
                return self._reject(reason, request_id=request_id, counselor_id=counselor_id)

            counselor = self.directory.get(counselor_id)
            if not self._may_claim(request, counselor):
                return self._reject(ClaimRejection.NOT_ELIGIBLE, request_id=request_id, counselor_id=counselor_id)

            name = counselor_name or counselor.name
            phone = counselor_phone or counselor.phone
            user_id, user_name = request.user_id, request.user_name

            if not self._swap_request(request_id, counselor_id, name, phone, now):
                self.db.rollback()
                latest = self.db.get(CounselRequestDB, request_id, populate_existing=True)
                reason = self.state_machine.classify_claim_failure(latest, now)
                return self._reject(reason, request_id=request_id, counselor_id=counselor_id)

            # A scheduled request carries its appointment along with it
            appointment_id = self.db.execute(
                select(AppointmentDB.id).where(AppointmentDB.request_id == request_id)
            ).scalar_one_or_none()
            if appointment_id and not self._swap_appointment(appointment_id, counselor_id, name, phone, now):
                self.db.rollback()
                return self._reject(ClaimRejection.ALREADY_CLAIMED, request_id=request_id, counselor_id=counselor_id)

            if not self._reserve_capacity(counselor_id, now):
                self.db.rollback()
                return self._reject(ClaimRejection.AT_CAPACITY, request_id=request_id, counselor_id=counselor_id)

            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Claim on request {request_id} by {counselor_id} failed: {e}")
            return ClaimResult.rejected(ClaimRejection.UNAVAILABLE, request_id=request_id)

        logger.info(f"Counsel request accepted: {request_id} by {counselor_id}")
        chat_id = self._open_chat(request_id, appointment_id, user_id, user_name, counselor_id, name)
        return ClaimResult(
            success=True,
            request_id=request_id,
            appointment_id=appointment_id,
            counselor_id=counselor_id,
            chat_id=chat_id,
        )

    # =========================================================================
    # QUEUED CLAIM
    # =========================================================================

    def accept_queued(
        self,
        appointment_id: str,
        counselor_id: str,
        counselor_name: Optional[str] = None,
        counselor_phone: Optional[str] = None,
    ) -> ClaimResult:
        """
        Claim a queued appointment together with its paired request.

        Both rows flip to accepted in one transaction or neither does.
        """
        now = utcnow()
        try:
            appointment = self.db.get(AppointmentDB, appointment_id, populate_existing=True)
            if appointment is None:
                return self._reject(ClaimRejection.NOT_FOUND, appointment_id=appointment_id, counselor_id=counselor_id)

            request_id = appointment.request_id
            request = self.db.get(CounselRequestDB, request_id, populate_existing=True)
            rejection = self._classify_appointment(appointment, request, now)
            if rejection is not None:
                return self._reject(rejection, request_id=request_id, appointment_id=appointment_id, counselor_id=counselor_id)

            counselor = self.directory.get(counselor_id)
            if counselor is None or counselor.application_status != ApplicationStatus.APPROVED:
                return self._reject(ClaimRejection.NOT_ELIGIBLE, request_id=request_id, appointment_id=appointment_id, counselor_id=counselor_id)

            name = counselor_name or counselor.name
            phone = counselor_phone or counselor.phone
            user_id, user_name = appointment.user_id, appointment.user_name

            # Request row first, then appointment: the same lock order as accept()
            if not self._swap_request(request_id, counselor_id, name, phone, now):
                self.db.rollback()
                rejection = self._reclassify_appointment(appointment_id, request_id, now)
                return self._reject(rejection, request_id=request_id, appointment_id=appointment_id, counselor_id=counselor_id)

            if not self._swap_appointment(appointment_id, counselor_id, name, phone, now):
                self.db.rollback()
                rejection = self._reclassify_appointment(appointment_id, request_id, now)
                return self._reject(rejection, request_id=request_id, appointment_id=appointment_id, counselor_id=counselor_id)

            if not self._reserve_capacity(counselor_id, now):
                self.db.rollback()
                return self._reject(ClaimRejection.AT_CAPACITY, request_id=request_id, appointment_id=appointment_id, counselor_id=counselor_id)

            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Claim on appointment {appointment_id} by {counselor_id} failed: {e}")
            return ClaimResult.rejected(ClaimRejection.UNAVAILABLE, appointment_id=appointment_id)

        logger.info(f"Appointment accepted: {appointment_id} (request {request_id}) by {counselor_id}")
        chat_id = self._open_chat(request_id, appointment_id, user_id, user_name, counselor_id, name)
        return ClaimResult(
            success=True,
            request_id=request_id,
            appointment_id=appointment_id,
            counselor_id=counselor_id,
            chat_id=chat_id,
        )

    # =========================================================================
    # GUARDED WRITES
    # =========================================================================

    def _swap_request(self, request_id: str, counselor_id: str, name: str, phone: Optional[str], now) -> bool:
        result = self.db.execute(
            update(CounselRequestDB)
            .where(
                CounselRequestDB.id == request_id,
                CounselRequestDB.status.in_(CLAIMABLE_REQUEST_STATES),
                CounselRequestDB.counselor_id.is_(None),
                CounselRequestDB.expires_at > now,
            )
            .values(
                status=RequestStatus.ACCEPTED,
                counselor_id=counselor_id,
                counselor_name=name,
                counselor_phone=phone,
                accepted_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def _swap_appointment(self, appointment_id: str, counselor_id: str, name: str, phone: Optional[str], now) -> bool:
        result = self.db.execute(
            update(AppointmentDB)
            .where(
                AppointmentDB.id == appointment_id,
                AppointmentDB.status.in_(CLAIMABLE_APPOINTMENT_STATES),
                AppointmentDB.counselor_id.is_(None),
            )
            .values(
                status=AppointmentStatus.ACCEPTED,
                counselor_id=counselor_id,
                counselor_name=name,
                counselor_phone=phone,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def _reserve_capacity(self, counselor_id: str, now) -> bool:
        """Atomic +1 on active_requests and total_cases, refused at the ceiling."""
        result = self.db.execute(
            update(CounselorDB)
            .where(
                CounselorDB.id == counselor_id,
                CounselorDB.active_requests < CounselorDB.max_active_requests,
            )
            .values(
                active_requests=CounselorDB.active_requests + 1,
                total_cases=CounselorDB.total_cases + 1,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _may_claim(self, request: CounselRequestDB, counselor: Optional[CounselorDB]) -> bool:
        """
        Broadcast requests are claimable only by counselors in the snapshot.
        Requests with an empty snapshot are open to any approved counselor
        serving the region.
        """
        if counselor is None or counselor.application_status != ApplicationStatus.APPROVED:
            return False
        if request.broadcasted_to:
            return counselor.id in request.broadcasted_to
        return counselor.serves(request.region)

    def _classify_appointment(
        self,
        appointment: Optional[AppointmentDB],
        request: Optional[CounselRequestDB],
        now,
    ) -> Optional[ClaimRejection]:
        """None when both rows look claimable, otherwise the reason they are not."""
        if appointment is None or request is None:
            return ClaimRejection.NOT_FOUND
        if appointment.status in TERMINAL_APPOINTMENT_STATES:
            return ClaimRejection.TERMINAL_STATE
        if appointment.status == AppointmentStatus.ACCEPTED or appointment.counselor_id is not None:
            return ClaimRejection.ALREADY_CLAIMED
        if not is_claimable(request, now):
            return self.state_machine.classify_claim_failure(request, now)
        return None

    def _reclassify_appointment(self, appointment_id: str, request_id: str, now) -> ClaimRejection:
        appointment = self.db.get(AppointmentDB, appointment_id, populate_existing=True)
        request = self.db.get(CounselRequestDB, request_id, populate_existing=True)
        return self._classify_appointment(appointment, request, now) or ClaimRejection.ALREADY_CLAIMED

    def _reject(
        self,
        reason: ClaimRejection,
        request_id: str = None,
        appointment_id: str = None,
        counselor_id: str = None,
    ) -> ClaimResult:
        target = request_id or appointment_id
        logger.warning(f"Claim on {target} by {counselor_id} rejected: {reason.value}")
        return ClaimResult.rejected(reason, request_id=request_id, appointment_id=appointment_id)

    def _open_chat(
        self,
        request_id: Optional[str],
        appointment_id: Optional[str],
        user_id: str,
        user_name: str,
        counselor_id: str,
        counselor_name: str,
    ) -> Optional[str]:
        """Best-effort. The claim has already committed and stays accepted."""
        try:
            return self.chat_sessions.create_chat_session(
                request_id, appointment_id, user_id, user_name, counselor_id, counselor_name,
            )
        except Exception as e:
            self.db.rollback()
            logger.warning(f"Chat session creation failed for request {request_id}: {e}")
            return None
