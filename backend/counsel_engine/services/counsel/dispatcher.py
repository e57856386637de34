"""
Dispatcher

Creates counsel requests and snapshots the broadcast list.

A request with at least one eligible counselor starts in BROADCASTING and
lists every eligible counselor in broadcasted_to (fan-out notify, not a
single offer). With none it starts in PENDING with an empty list. Either
way it carries an absolute expires_at and is written in a single commit.

Also serves the read paths counselors and users poll. Every "claimable"
listing filters on expires_at > now; expiry is never waited on.
"""
import logging
import os
from datetime import timedelta
from typing import List, Optional
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...models.db_models import CounselRequestDB, RequestStatus, utcnow
from ...models.reference import is_valid_region, is_valid_category
from ...models.results import DispatchResult, TransitionRejection
from .directory import CounselorDirectory

logger = logging.getLogger(__name__)

# Unclaimed live requests stop being claimable after this window
BROADCAST_WINDOW_MINUTES = int(os.getenv("COUNSEL_BROADCAST_WINDOW_MINUTES", "5"))

USER_HISTORY_LIMIT = 20


def validate_request_details(
    user_id: str,
    user_name: str,
    note: str,
    legal_category: str,
    region: str,
) -> Optional[str]:
    """Return a description of the first problem, or None if the details are usable."""
    missing = [
        label for label, value in (
            ("user_id", user_id),
            ("user_name", user_name),
            ("note", (note or "").strip()),
            ("legal_category", legal_category),
            ("region", region),
        ) if not value
    ]
    if missing:
        return f"Missing required fields: {', '.join(missing)}"
    if not is_valid_region(region):
        return f"Invalid region code: {region}"
    if not is_valid_category(legal_category):
        return f"Invalid legal category: {legal_category}"
    return None


class Dispatcher:
    """
    Request creation and request read paths.

    Usage:
        dispatcher = Dispatcher(db)
        result = dispatcher.create_request(user_id, user_name, note, "land", "CES")
    """

    def __init__(
        self,
        db_session: Session,
        directory: Optional[CounselorDirectory] = None,
        window_minutes: int = BROADCAST_WINDOW_MINUTES,
    ):
        """Initialize with database session."""
        self.db = db_session
        self.directory = directory or CounselorDirectory(db_session)
        self.window = timedelta(minutes=window_minutes)

    # =========================================================================
    # CREATION
    # =========================================================================

    def create_request(
        self,
        user_id: str,
        user_name: str,
        note: str,
        legal_category: str,
        region: str,
        user_email: Optional[str] = None,
        user_phone: Optional[str] = None,
    ) -> DispatchResult:
        """
        Create a request and broadcast it to every eligible counselor.

        Nothing is written if validation fails or the store is unavailable.
        The caller notifies result.eligible_counselors out of band.
        """
        problem = validate_request_details(user_id, user_name, note, legal_category, region)
        if problem:
            return DispatchResult.rejected(TransitionRejection.INVALID_INPUT, problem)

        try:
            eligible = self.directory.find_eligible(region)
            now = utcnow()
            request_id = str(uuid4())
            status = RequestStatus.BROADCASTING if eligible else RequestStatus.PENDING

            request = CounselRequestDB(
                id=request_id,
                user_id=user_id,
                user_name=user_name,
                user_email=user_email or "",
                user_phone=user_phone or "",
                note=note.strip(),
                legal_category=legal_category,
                region=region,
                status=status,
                broadcasted_to=[c.id for c in eligible],
                broadcast_count=len(eligible),
                expires_at=now + self.window,
                created_at=now,
                updated_at=now,
            )
            self.db.add(request)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Failed to create counsel request for user {user_id}: {e}")
            return DispatchResult.rejected(TransitionRejection.UNAVAILABLE, "Database unavailable")

        logger.info(f"Counsel request created: {request_id}, broadcast to {len(eligible)} counselors")
        return DispatchResult(
            success=True,
            request_id=request_id,
            status=status.value,
            broadcast_count=len(eligible),
            eligible_counselors=eligible,
        )

    # =========================================================================
    # READ PATHS
    # =========================================================================

    def get_request(self, request_id: str) -> Optional[CounselRequestDB]:
        return self.db.get(CounselRequestDB, request_id)

    def pending_requests(self) -> List[CounselRequestDB]:
        """Open live requests still inside their window, soonest expiry first."""
        now = utcnow()
        return self.db.query(CounselRequestDB).filter(
            CounselRequestDB.status.in_([RequestStatus.BROADCASTING, RequestStatus.PENDING]),
            CounselRequestDB.counselor_id.is_(None),
            CounselRequestDB.expires_at > now,
        ).order_by(
            CounselRequestDB.expires_at.asc(),
            CounselRequestDB.created_at.desc(),
        ).all()

    def requests_for_counselor(self, counselor_id: str) -> List[CounselRequestDB]:
        """Unexpired, unclaimed requests this counselor was notified about, newest first."""
        now = utcnow()
        candidates = self.db.query(CounselRequestDB).filter(
            CounselRequestDB.status.in_([
                RequestStatus.BROADCASTING,
                RequestStatus.PENDING,
                RequestStatus.SCHEDULED,
            ]),
            CounselRequestDB.counselor_id.is_(None),
            CounselRequestDB.expires_at > now,
        ).order_by(CounselRequestDB.created_at.desc()).all()

        # broadcasted_to is a JSON list; membership is checked here to stay portable
        return [r for r in candidates if counselor_id in (r.broadcasted_to or [])]

    def requests_for_user(self, user_id: str, limit: int = USER_HISTORY_LIMIT) -> List[CounselRequestDB]:
        return self.db.query(CounselRequestDB).filter(
            CounselRequestDB.user_id == user_id,
        ).order_by(CounselRequestDB.created_at.desc()).limit(limit).all()

    def assigned_requests(self, counselor_id: str) -> List[CounselRequestDB]:
        """Requests currently held by a counselor (counted against capacity)."""
        return self.db.query(CounselRequestDB).filter(
            CounselRequestDB.counselor_id == counselor_id,
            CounselRequestDB.status == RequestStatus.ACCEPTED,
        ).order_by(CounselRequestDB.accepted_at.desc()).all()
