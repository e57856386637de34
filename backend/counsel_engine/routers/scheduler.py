"""
Scheduler API Routes

Internal endpoints for system-automatic tasks.
Expiry sweep and capacity reconciliation.

Neither job is needed for correct claims; both only tidy stored state.
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..database import get_db
from ..auth import verify_internal_key
from ..services.counsel import ExpiryReaper, CapacityReconciler


router = APIRouter(prefix="/internal", tags=["scheduler"])


# =============================================================================
# SCHEDULER ENDPOINTS (SYSTEM-ONLY)
# =============================================================================

@router.post("/expiry-sweep", response_model=dict)
async def run_expiry_sweep(
    db: Session = Depends(get_db),
    _: bool = Depends(verify_internal_key),
):
    """
    Flip stale unclaimed requests to EXPIRED.

    System-automatic - safe to run at any frequency.
    """
    return ExpiryReaper(db).run_expiry_sweep()


@router.post("/capacity-reconcile", response_model=dict)
async def run_capacity_reconcile(
    repair: bool = Query(False, description="Rewrite drifted counters"),
    db: Session = Depends(get_db),
    _: bool = Depends(verify_internal_key),
):
    """
    Compare active_requests with live assignments.

    Read-only unless repair=true.
    """
    return CapacityReconciler(db).scan(repair=repair)


# =============================================================================
# SCHEDULER STATUS ENDPOINTS (READ-ONLY)
# =============================================================================

@router.get("/expiring", response_model=dict)
async def get_upcoming_expirations(
    minutes_ahead: int = Query(5, ge=1, le=60 * 24 * 7),
    db: Session = Depends(get_db),
    _: bool = Depends(verify_internal_key),
):
    """Open requests about to pass their deadline, for monitoring."""
    upcoming = ExpiryReaper(db).upcoming_expirations(minutes_ahead)
    return {
        "minutes_ahead": minutes_ahead,
        "count": len(upcoming),
        "requests": upcoming,
    }
