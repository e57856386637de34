"""
Capacity Reconciler

Checks the central consistency invariant: every counselor's active_requests
equals the number of accepted requests assigned to them. An accepted
appointment always shares its request, so requests alone are counted.

Read-only unless repair=True, in which case drifted counters are rewritten
with a guarded update that only applies if the counter has not moved since
it was read.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List
import logging

from sqlalchemy import update, select, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...models.db_models import CounselorDB, CounselRequestDB, RequestStatus, utcnow


logger = logging.getLogger(__name__)


class CapacityReconciler:
    """
    Usage:
        reconciler = CapacityReconciler(db)
        report = reconciler.scan()
        if report["drifted"]:
            reconciler.scan(repair=True)
    """

    def __init__(self, db: Session):
        self.db = db

    def assigned_counts(self) -> Dict[str, int]:
        rows = self.db.execute(
            select(CounselRequestDB.counselor_id, func.count(CounselRequestDB.id))
            .where(
                CounselRequestDB.status == RequestStatus.ACCEPTED,
                CounselRequestDB.counselor_id.is_not(None),
            )
            .group_by(CounselRequestDB.counselor_id)
        ).all()
        return {counselor_id: count for counselor_id, count in rows}

    def scan(self, repair: bool = False) -> Dict[str, Any]:
        """
        Compare every counselor's counter with the live assignment count.

        Returns the list of drifted counselors and, when repairing, how many
        counters were rewritten.
        """
        counts = self.assigned_counts()
        counselors = self.db.execute(
            select(CounselorDB.id, CounselorDB.active_requests)
        ).all()

        drift: List[Dict[str, Any]] = []
        for counselor_id, recorded in counselors:
            expected = counts.get(counselor_id, 0)
            if (recorded or 0) != expected:
                drift.append({
                    "counselor_id": counselor_id,
                    "recorded": recorded,
                    "expected": expected,
                })

        repaired = 0
        if repair and drift:
            now = utcnow()
            try:
                for entry in drift:
                    result = self.db.execute(
                        update(CounselorDB)
                        .where(
                            CounselorDB.id == entry["counselor_id"],
                            CounselorDB.active_requests == entry["recorded"],
                        )
                        .values(active_requests=entry["expected"], updated_at=now)
                        .execution_options(synchronize_session=False)
                    )
                    repaired += result.rowcount
                self.db.commit()
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.error(f"Capacity repair failed: {e}")
                repaired = 0

        if drift:
            logger.warning(f"Capacity drift on {len(drift)} counselors, repaired {repaired}")
        else:
            logger.info(f"Capacity reconciled: {len(counselors)} counselors consistent")

        return {
            "task": "capacity_reconcile",
            "run_date": datetime.now(timezone.utc).isoformat(),
            "counselors_checked": len(counselors),
            "drifted": drift,
            "repaired": repaired,
        }
