"""
Expiry Reaper

Optional bookkeeping job. Expiry is already enforced lazily by every read
path and by the Arbiter at claim time; this only flips records that are
unreachable anyway so that stored status matches reality for reporting.

Every flip is the same guarded update the Arbiter races against
(unclaimed, claimable, past the deadline), so a sweep can never override a
claim and running it twice changes nothing the second time.
"""
import logging
from datetime import timedelta
from typing import Any, Dict, List

from sqlalchemy import update, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...models.db_models import (
    CounselRequestDB, AppointmentDB, RequestStatus, AppointmentStatus,
    CLAIMABLE_REQUEST_STATES, CLAIMABLE_APPOINTMENT_STATES, utcnow,
)

logger = logging.getLogger(__name__)


class ExpiryReaper:
    """
    Sweeps stale unclaimed requests to EXPIRED.

    AUTHORITY: SYSTEM - Called via the internal scheduler endpoint.
    """

    def __init__(self, db_session: Session):
        """Initialize with database session."""
        self.db = db_session

    def stale_request_ids(self, now) -> List[str]:
        return list(self.db.execute(
            select(CounselRequestDB.id).where(
                CounselRequestDB.status.in_(CLAIMABLE_REQUEST_STATES),
                CounselRequestDB.counselor_id.is_(None),
                CounselRequestDB.expires_at <= now,
            )
        ).scalars())

    def run_expiry_sweep(self, now=None) -> Dict[str, Any]:
        """
        Flip every stale request to EXPIRED and cancel its queued appointment.

        Returns a summary of what was found and changed.
        """
        now = now or utcnow()
        candidates: List[str] = []
        expired: List[str] = []
        appointments_cancelled = 0

        try:
            candidates = self.stale_request_ids(now)
            for request_id in candidates:
                result = self.db.execute(
                    update(CounselRequestDB)
                    .where(
                        CounselRequestDB.id == request_id,
                        CounselRequestDB.status.in_(CLAIMABLE_REQUEST_STATES),
                        CounselRequestDB.counselor_id.is_(None),
                        CounselRequestDB.expires_at <= now,
                    )
                    .values(status=RequestStatus.EXPIRED, updated_at=now)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    # Claimed or cancelled since the scan
                    continue
                expired.append(request_id)

                cascade = self.db.execute(
                    update(AppointmentDB)
                    .where(
                        AppointmentDB.request_id == request_id,
                        AppointmentDB.status.in_(CLAIMABLE_APPOINTMENT_STATES),
                        AppointmentDB.counselor_id.is_(None),
                    )
                    .values(status=AppointmentStatus.CANCELLED, updated_at=now)
                    .execution_options(synchronize_session=False)
                )
                appointments_cancelled += cascade.rowcount

            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Expiry sweep failed: {e}")
            return {
                "task": "expiry_sweep",
                "run_date": now.isoformat(),
                "candidates": len(candidates),
                "expired": 0,
                "appointments_cancelled": 0,
                "error": str(e),
            }

        logger.info(
            f"Expiry sweep: {len(expired)} of {len(candidates)} stale requests expired, "
            f"{appointments_cancelled} appointments cancelled"
        )
        return {
            "task": "expiry_sweep",
            "run_date": now.isoformat(),
            "candidates": len(candidates),
            "expired": len(expired),
            "expired_request_ids": expired,
            "appointments_cancelled": appointments_cancelled,
        }

    def upcoming_expirations(self, minutes_ahead: int = 5) -> List[Dict[str, Any]]:
        """Open requests whose deadline falls within the next few minutes."""
        now = utcnow()
        horizon = now + timedelta(minutes=minutes_ahead)
        requests = self.db.query(CounselRequestDB).filter(
            CounselRequestDB.status.in_(CLAIMABLE_REQUEST_STATES),
            CounselRequestDB.counselor_id.is_(None),
            CounselRequestDB.expires_at > now,
            CounselRequestDB.expires_at <= horizon,
        ).order_by(CounselRequestDB.expires_at.asc()).all()

        return [
            {
                "request_id": r.id,
                "status": r.status.value,
                "region": r.region,
                "expires_at": r.expires_at.isoformat(),
                "seconds_remaining": int((r.expires_at - now).total_seconds()),
            }
            for r in requests
        ]
