"""
Lifecycle Manager

Closes requests: complete (accepted -> completed) and cancel (any open
state -> cancelled). Each close is a guarded update on the request row plus
the paired appointment cascade and the capacity release, all in one
transaction.

Capacity is released only when a counselor was actually assigned; cancelling
a request nobody claimed never touches a counter.
"""
import logging
import os
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...models.db_models import (
    CounselorDB, CounselRequestDB, AppointmentDB,
    RequestStatus, TERMINAL_APPOINTMENT_STATES, utcnow,
)
from ...models.results import TransitionResult, TransitionRejection
from .state_machine import RequestStateMachine, PAIRED_APPOINTMENT_STATUS

logger = logging.getLogger(__name__)

# Optimistic retries when a concurrent writer moves the request between read and write
CLAIM_RETRIES = int(os.getenv("COUNSEL_CLAIM_RETRIES", "3"))


class LifecycleManager:
    """
    Completion and cancellation.

    Usage:
        lifecycle = LifecycleManager(db)
        result = lifecycle.complete(request_id)
        if not result.success:
            print(result.reason)
    """

    def __init__(self, db_session: Session, max_retries: int = CLAIM_RETRIES):
        """Initialize with database session."""
        self.db = db_session
        self.max_retries = max(1, max_retries)
        self.state_machine = RequestStateMachine()

    # =========================================================================
    # COMPLETE
    # =========================================================================

    def complete(self, request_id: str) -> TransitionResult:
        """
        Mark an accepted request completed.

        Decrements the counselor's active_requests and bumps completed_cases.
        """
        now = utcnow()
        try:
            request = self.db.get(CounselRequestDB, request_id, populate_existing=True)
            if request is None or request.status != RequestStatus.ACCEPTED:
                return self._reject(request, request_id, RequestStatus.COMPLETED, now)

            counselor_id = request.counselor_id
            result = self.db.execute(
                update(CounselRequestDB)
                .where(
                    CounselRequestDB.id == request_id,
                    CounselRequestDB.status == RequestStatus.ACCEPTED,
                    CounselRequestDB.counselor_id == counselor_id,
                )
                .values(status=RequestStatus.COMPLETED, completed_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                self.db.rollback()
                latest = self.db.get(CounselRequestDB, request_id, populate_existing=True)
                return self._reject(latest, request_id, RequestStatus.COMPLETED, now)

            self._cascade_appointment(request_id, RequestStatus.COMPLETED, now)
            self._release_capacity(counselor_id, now, completed=True)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to complete request {request_id}: {e}")
            return TransitionResult.rejected(TransitionRejection.UNAVAILABLE, request_id=request_id)

        logger.info(f"Counsel request completed: {request_id} by {counselor_id}")
        return TransitionResult(
            success=True,
            request_id=request_id,
            status=RequestStatus.COMPLETED.value,
            released_counselor_id=counselor_id,
        )

    # =========================================================================
    # CANCEL
    # =========================================================================

    def cancel(self, request_id: str, reason: Optional[str] = None) -> TransitionResult:
        """
        Cancel a request from any open state.

        The guard pins the (status, counselor_id) pair that was read. If a
        claim lands in between, the next attempt sees the accepted request and
        releases the winner's capacity.
        """
        for attempt in range(self.max_retries):
            now = utcnow()
            try:
                request = self.db.get(CounselRequestDB, request_id, populate_existing=True)
                if request is None or request.is_expired(now):
                    return self._reject(request, request_id, RequestStatus.CANCELLED, now)

                allowed, _ = self.state_machine.can_transition(request.status, RequestStatus.CANCELLED)
                if not allowed:
                    return self._reject(request, request_id, RequestStatus.CANCELLED, now)

                status, counselor_id = request.status, request.counselor_id
                conditions = [
                    CounselRequestDB.id == request_id,
                    CounselRequestDB.status == status,
                ]
                if counselor_id is None:
                    conditions += [
                        CounselRequestDB.counselor_id.is_(None),
                        CounselRequestDB.expires_at > now,
                    ]
                else:
                    conditions.append(CounselRequestDB.counselor_id == counselor_id)

                result = self.db.execute(
                    update(CounselRequestDB)
                    .where(*conditions)
                    .values(
                        status=RequestStatus.CANCELLED,
                        cancel_reason=reason,
                        cancelled_at=now,
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    self.db.rollback()
                    logger.debug(f"Cancel of {request_id} lost a race (attempt {attempt + 1})")
                    continue

                self._cascade_appointment(request_id, RequestStatus.CANCELLED, now)
                if counselor_id is not None:
                    self._release_capacity(counselor_id, now, completed=False)
                self.db.commit()
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.error(f"Failed to cancel request {request_id}: {e}")
                return TransitionResult.rejected(TransitionRejection.UNAVAILABLE, request_id=request_id)

            logger.info(f"Counsel request cancelled: {request_id} (was {status.value}) - {reason or 'no reason'}")
            return TransitionResult(
                success=True,
                request_id=request_id,
                status=RequestStatus.CANCELLED.value,
                released_counselor_id=counselor_id,
            )

        latest = self.db.get(CounselRequestDB, request_id, populate_existing=True)
        return self._reject(latest, request_id, RequestStatus.CANCELLED, utcnow())

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _cascade_appointment(self, request_id: str, request_status: RequestStatus, now) -> int:
        """Move a paired, still-open appointment along with its request."""
        result = self.db.execute(
            update(AppointmentDB)
            .where(
                AppointmentDB.request_id == request_id,
                AppointmentDB.status.notin_(TERMINAL_APPOINTMENT_STATES),
            )
            .values(status=PAIRED_APPOINTMENT_STATUS[request_status], updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def _release_capacity(self, counselor_id: str, now, completed: bool):
        values = {"updated_at": now}
        if completed:
            values["completed_cases"] = CounselorDB.completed_cases + 1
        self.db.execute(
            update(CounselorDB)
            .where(CounselorDB.id == counselor_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        released = self.db.execute(
            update(CounselorDB)
            .where(CounselorDB.id == counselor_id, CounselorDB.active_requests > 0)
            .values(active_requests=CounselorDB.active_requests - 1)
            .execution_options(synchronize_session=False)
        )
        if released.rowcount != 1:
            logger.warning(f"Counselor {counselor_id} had no active requests to release")

    def _reject(
        self,
        request: Optional[CounselRequestDB],
        request_id: str,
        to_state: RequestStatus,
        now,
    ) -> TransitionResult:
        reason = self.state_machine.classify_transition_failure(request, to_state, now)
        current = request.status.value if request is not None else None
        logger.warning(f"Cannot move request {request_id} to {to_state.value}: {reason.value} (stored {current})")
        return TransitionResult.rejected(
            reason,
            request_id=request_id,
            detail=f"Request is {current}" if current else "Request not found",
        )
