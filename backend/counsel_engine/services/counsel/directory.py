"""
Counselor Directory

Counselor records: registration, availability, region coverage and the
eligibility filter the dispatcher broadcasts against.

Capacity fields (active_requests, total_cases, completed_cases) are never
written here. Only the arbiter and the lifecycle manager move them.
"""
import logging
import os
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...models.db_models import CounselorDB, ApplicationStatus, utcnow
from ...models.reference import is_valid_region

logger = logging.getLogger(__name__)

DEFAULT_MAX_ACTIVE_REQUESTS = int(os.getenv("COUNSEL_DEFAULT_MAX_ACTIVE", "5"))


def eligibility_sort_key(counselor: CounselorDB, region: str):
    """Home region first, then higher rating, then fewer live claims."""
    return (
        0 if counselor.home_region == region else 1,
        -(counselor.rating or 0.0),
        counselor.active_requests or 0,
    )


def has_capacity(counselor: CounselorDB) -> bool:
    # Same comparison as the guarded increment in the arbiter
    return (counselor.active_requests or 0) < counselor.max_active_requests


class CounselorDirectory:
    """
    Read/write access to counselor records.

    Eligibility (find_eligible) is read-only and advisory: it decides who
    is snapshotted into a broadcast, never who wins a claim.
    """

    def __init__(self, db_session: Session):
        """Initialize with database session."""
        self.db = db_session

    # =========================================================================
    # ELIGIBILITY
    # =========================================================================

    def is_eligible(self, counselor: CounselorDB, region: str) -> bool:
        """Approved, online, available, under capacity and serving the region."""
        return (
            counselor.application_status == ApplicationStatus.APPROVED
            and counselor.is_online is True
            and counselor.is_available is not False
            and has_capacity(counselor)
            and counselor.serves(region)
        )

    def find_eligible(self, region: str) -> List[CounselorDB]:
        """
        Counselors a request in `region` should be broadcast to, best first.
        """
        candidates = self.db.query(CounselorDB).filter(
            CounselorDB.application_status == ApplicationStatus.APPROVED,
            CounselorDB.is_online.is_(True),
        ).all()

        eligible = [c for c in candidates if self.is_eligible(c, region)]
        eligible.sort(key=lambda c: eligibility_sort_key(c, region))

        logger.debug(f"{len(eligible)} of {len(candidates)} online counselors eligible for {region}")
        return eligible

    # =========================================================================
    # LOOKUPS
    # =========================================================================

    def get(self, counselor_id: str) -> Optional[CounselorDB]:
        return self.db.get(CounselorDB, counselor_id)

    def is_approved(self, counselor_id: str) -> bool:
        counselor = self.get(counselor_id)
        return counselor is not None and counselor.application_status == ApplicationStatus.APPROVED

    def application_status(self, user_id: str) -> Dict[str, Any]:
        counselor = self.get(user_id)
        if counselor is None:
            return {"exists": False}
        return {
            "exists": True,
            "status": counselor.application_status.value,
            "rejection_reason": counselor.rejection_reason,
        }

    def pending_applications(self) -> List[CounselorDB]:
        """Applications awaiting review, oldest first."""
        return self.db.query(CounselorDB).filter(
            CounselorDB.application_status == ApplicationStatus.PENDING,
        ).order_by(CounselorDB.applied_at.asc()).all()

    def all_counselors(self) -> List[CounselorDB]:
        return self.db.query(CounselorDB).order_by(CounselorDB.created_at.desc()).all()

    def online_counselors(self) -> List[CounselorDB]:
        return self.db.query(CounselorDB).filter(CounselorDB.is_online.is_(True)).all()

    def stats(self) -> Dict[str, Any]:
        counselors = self.db.query(CounselorDB).all()
        by_region: Dict[str, int] = {}
        online = 0
        for c in counselors:
            if c.is_online:
                online += 1
            by_region[c.home_region] = by_region.get(c.home_region, 0) + 1
        return {"total": len(counselors), "online": online, "by_region": by_region}

    # =========================================================================
    # REGISTRATION
    # =========================================================================

    def apply(
        self,
        user_id: str,
        name: str,
        email: str,
        phone: str,
        national_id_number: str,
        home_region: str,
        serving_regions: Optional[List[str]] = None,
        specializations: Optional[List[str]] = None,
        id_document_url: Optional[str] = None,
    ) -> Tuple[bool, str]:
        """
        Submit (or resubmit after rejection) a counselor application.

        Returns (success, message)
        """
        if not is_valid_region(home_region):
            return False, f"Unknown region code: {home_region}"
        serving = list(serving_regions or [home_region])
        unknown = [r for r in serving if not is_valid_region(r)]
        if unknown:
            return False, f"Unknown region code(s): {', '.join(unknown)}"

        existing = self.get(user_id)
        if existing is not None:
            if existing.application_status == ApplicationStatus.APPROVED:
                return False, "You are already an approved counselor"
            if existing.application_status == ApplicationStatus.PENDING:
                return False, "Your application is already pending review"
            # Rejected applicants may reapply. Counters carry over untouched.
            counselor = existing
        else:
            counselor = CounselorDB(
                id=user_id,
                rating=0.0,
                total_cases=0,
                completed_cases=0,
                active_requests=0,
                max_active_requests=DEFAULT_MAX_ACTIVE_REQUESTS,
                created_at=utcnow(),
            )
            self.db.add(counselor)

        now = utcnow()
        counselor.name = name
        counselor.email = email
        counselor.phone = phone
        counselor.national_id_number = national_id_number
        counselor.id_document_url = id_document_url or ""
        counselor.application_status = ApplicationStatus.PENDING
        counselor.rejection_reason = None
        counselor.applied_at = now
        counselor.is_online = False
        counselor.is_verified = False
        counselor.is_available = False
        counselor.home_region = home_region
        counselor.serving_regions = serving
        counselor.specializations = list(specializations or [])
        counselor.last_seen_at = now
        counselor.updated_at = now

        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to store counselor application for {user_id}: {e}")
            return False, "Failed to submit application"

        logger.info(f"Counselor application submitted: {name} ({user_id})")
        return True, "Application submitted successfully. Please wait for admin approval."

    def approve(self, counselor_id: str, approved_by: str) -> bool:
        counselor = self.get(counselor_id)
        if counselor is None:
            logger.warning(f"Cannot approve unknown counselor {counselor_id}")
            return False

        now = utcnow()
        counselor.application_status = ApplicationStatus.APPROVED
        counselor.is_verified = True
        counselor.approved_at = now
        counselor.approved_by = approved_by
        counselor.updated_at = now
        return self._commit(f"Counselor approved: {counselor_id} by {approved_by}")

    def reject(self, counselor_id: str, rejected_by: str, reason: str) -> bool:
        counselor = self.get(counselor_id)
        if counselor is None:
            logger.warning(f"Cannot reject unknown counselor {counselor_id}")
            return False

        counselor.application_status = ApplicationStatus.REJECTED
        counselor.rejection_reason = reason
        counselor.is_verified = False
        counselor.is_online = False
        counselor.is_available = False
        counselor.updated_at = utcnow()
        return self._commit(f"Counselor rejected: {counselor_id} by {rejected_by} - {reason}")

    # =========================================================================
    # PRESENCE
    # =========================================================================

    def set_online(
        self,
        user_id: str,
        is_online: bool,
        phone: Optional[str] = None,
        home_region: Optional[str] = None,
    ) -> bool:
        """Go on or off duty. Availability follows the online flag."""
        counselor = self.get(user_id)
        if counselor is None:
            logger.warning(f"Online toggle for unregistered counselor {user_id}")
            return False
        if home_region and not is_valid_region(home_region):
            return False

        now = utcnow()
        counselor.is_online = is_online
        counselor.is_available = is_online
        counselor.last_seen_at = now
        counselor.updated_at = now
        if phone:
            counselor.phone = phone
        if home_region:
            counselor.home_region = home_region
            if home_region not in (counselor.serving_regions or []):
                counselor.serving_regions = list(counselor.serving_regions or []) + [home_region]

        return self._commit(f"Counselor {user_id} online status set to: {is_online}")

    def _commit(self, message: str) -> bool:
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Directory write failed: {e}")
            return False
        logger.info(message)
        return True
