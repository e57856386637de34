"""
Counsel API Routes

Request creation, claims, closes and the appointment queue.

Claim outcomes are typed: the reason in a rejected result becomes the HTTP
status (409 lost race, 410 expired, 503 store unavailable) so counselor
clients can tell "someone else took it" from "try again".
"""
from typing import Optional, List

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..database import get_db
from ..auth import Principal, get_current_principal, require_self_or_admin
from ..models.db_models import CounselRequestDB, AppointmentDB, utcnow
from ..models.reference import REGIONS, LEGAL_CATEGORIES, region_name
from ..models.results import ClaimResult, TransitionResult
from ..services.counsel import (
    Dispatcher, Arbiter, BookingQueue, LifecycleManager, RequestStateMachine,
)


router = APIRouter(prefix="/counsel", tags=["counsel"])


# =============================================================================
# REQUEST/RESPONSE MODELS
# =============================================================================

class CreateCounselRequest(BaseModel):
    """Request for legal help, broadcast to on-duty counselors."""
    user_name: str = Field(..., description="Display name of the requester")
    note: str = Field(..., description="What the user needs help with")
    legal_category: str = Field(..., description="Category id, see /counsel/config")
    region: str = Field(..., description="Region code, see /counsel/config")
    user_email: Optional[str] = Field(None, description="Contact email")
    user_phone: Optional[str] = Field(None, description="Contact phone")


class ScheduleBookingRequest(CreateCounselRequest):
    """Booking for a later slot when nobody is on duty."""
    preferred_date: str = Field(..., description="YYYY-MM-DD")
    preferred_time: str = Field(..., description="HH:MM")


class ClaimRequest(BaseModel):
    """Counselor claim on a request or queued appointment."""
    counselor_id: Optional[str] = Field(None, description="Defaults to the caller")
    counselor_name: Optional[str] = Field(None, description="Overrides the directory name")
    counselor_phone: Optional[str] = Field(None, description="Overrides the directory phone")


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(None, description="Why the request is withdrawn")


# =============================================================================
# RESULT MAPPING
# =============================================================================

REASON_STATUS_CODES = {
    "not_found": 404,
    "invalid_input": 400,
    "already_claimed": 409,
    "terminal_state": 409,
    "invalid_transition": 409,
    "at_capacity": 409,
    "not_eligible": 409,
    "expired": 410,
    "unavailable": 503,
}

REASON_MESSAGES = {
    "not_found": "Request not found",
    "already_claimed": "This request has already been accepted by another counselor",
    "expired": "This request has expired",
    "terminal_state": "This request is already closed",
    "not_eligible": "You are not eligible to accept this request",
    "at_capacity": "You have reached your maximum number of active requests",
    "invalid_transition": "This request cannot be moved to that state",
    "unavailable": "Service temporarily unavailable, please retry",
}


def raise_for_reason(reason, detail: Optional[str] = None):
    code = REASON_STATUS_CODES.get(reason.value, 400)
    raise HTTPException(
        status_code=code,
        detail={"reason": reason.value, "message": detail or REASON_MESSAGES.get(reason.value, reason.value)},
    )


def request_to_dict(request: CounselRequestDB, now=None) -> dict:
    now = now or utcnow()
    return {
        "id": request.id,
        "user_id": request.user_id,
        "user_name": request.user_name,
        "note": request.note,
        "legal_category": request.legal_category,
        "region": request.region,
        "region_name": region_name(request.region),
        "status": RequestStateMachine().effective_status(request, now).value,
        "counselor_id": request.counselor_id,
        "counselor_name": request.counselor_name,
        "preferred_date": request.preferred_date,
        "preferred_time": request.preferred_time,
        "broadcast_count": request.broadcast_count,
        "expires_at": request.expires_at.isoformat() if request.expires_at else None,
        "created_at": request.created_at.isoformat() if request.created_at else None,
        "accepted_at": request.accepted_at.isoformat() if request.accepted_at else None,
        "completed_at": request.completed_at.isoformat() if request.completed_at else None,
        "cancel_reason": request.cancel_reason,
    }


def appointment_to_dict(appointment: AppointmentDB) -> dict:
    return {
        "id": appointment.id,
        "request_id": appointment.request_id,
        "user_id": appointment.user_id,
        "user_name": appointment.user_name,
        "note": appointment.note,
        "region": appointment.region,
        "scheduled_date": appointment.scheduled_date,
        "scheduled_time": appointment.scheduled_time,
        "status": appointment.status.value,
        "counselor_id": appointment.counselor_id,
        "counselor_name": appointment.counselor_name,
    }


def _claim_response(result: ClaimResult) -> dict:
    if not result.success:
        raise_for_reason(result.reason)
    return result.to_dict()


def _transition_response(result: TransitionResult) -> dict:
    if not result.success:
        raise_for_reason(result.reason, result.detail)
    return {
        "success": True,
        "request_id": result.request_id,
        "status": result.status,
    }


# =============================================================================
# REFERENCE DATA
# =============================================================================

@router.get("/config", response_model=dict)
async def get_config():
    """Regions and legal categories accepted by request creation."""
    return {"regions": REGIONS, "legal_categories": LEGAL_CATEGORIES}


# =============================================================================
# USER ENDPOINTS
# =============================================================================

@router.post("/requests", response_model=dict)
async def create_request(
    request: CreateCounselRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """
    Create a counsel request and broadcast it to eligible counselors.

    If nobody is eligible the request is created PENDING and the client
    should offer the scheduled booking flow.
    """
    result = Dispatcher(db).create_request(
        user_id=principal.user_id,
        user_name=request.user_name,
        note=request.note,
        legal_category=request.legal_category,
        region=request.region,
        user_email=request.user_email or principal.email,
        user_phone=request.user_phone,
    )
    if not result.success:
        raise_for_reason(result.reason, result.detail)

    return {
        "success": True,
        "request_id": result.request_id,
        "status": result.status,
        "broadcast_count": result.broadcast_count,
        "has_available_counselors": result.has_available_counselors,
        "eligible_counselors": [c.id for c in result.eligible_counselors],
    }


@router.post("/requests/schedule", response_model=dict)
async def schedule_booking(
    request: ScheduleBookingRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """Book a dated appointment; it waits in the queue until a counselor claims it."""
    result = BookingQueue(db).schedule_booking(
        user_id=principal.user_id,
        user_name=request.user_name,
        note=request.note,
        legal_category=request.legal_category,
        region=request.region,
        preferred_date=request.preferred_date,
        preferred_time=request.preferred_time,
        user_email=request.user_email or principal.email,
        user_phone=request.user_phone,
    )
    if not result.success:
        raise_for_reason(result.reason, result.detail)

    return {
        "success": True,
        "request_id": result.request_id,
        "appointment_id": result.appointment_id,
        "status": result.status,
    }


@router.get("/requests/user/{user_id}", response_model=List[dict])
async def get_user_requests(
    user_id: str,
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """A user's own requests, newest first."""
    require_self_or_admin(principal, user_id)
    now = utcnow()
    return [request_to_dict(r, now) for r in Dispatcher(db).requests_for_user(user_id, limit=limit)]


# =============================================================================
# COUNSELOR ENDPOINTS
# =============================================================================

@router.get("/requests/pending", response_model=List[dict])
async def get_pending_requests(
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """Open live requests that have not expired, soonest deadline first."""
    now = utcnow()
    return [request_to_dict(r, now) for r in Dispatcher(db).pending_requests()]


@router.get("/requests/counselor/{counselor_id}", response_model=List[dict])
async def get_counselor_requests(
    counselor_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """Requests this counselor was notified about and can still claim."""
    require_self_or_admin(principal, counselor_id)
    now = utcnow()
    return [request_to_dict(r, now) for r in Dispatcher(db).requests_for_counselor(counselor_id)]


@router.get("/requests/assigned/{counselor_id}", response_model=List[dict])
async def get_assigned_requests(
    counselor_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """Requests the counselor currently holds."""
    require_self_or_admin(principal, counselor_id)
    now = utcnow()
    return [request_to_dict(r, now) for r in Dispatcher(db).assigned_requests(counselor_id)]


@router.get("/requests/{request_id}", response_model=dict)
async def get_request(
    request_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    request = Dispatcher(db).get_request(request_id)
    if request is None:
        raise HTTPException(status_code=404, detail="Request not found")

    involved = {request.user_id, request.counselor_id, *(request.broadcasted_to or [])}
    if not principal.is_admin and principal.user_id not in involved:
        raise HTTPException(status_code=403, detail="Not allowed to view this request")
    return request_to_dict(request)


@router.post("/requests/{request_id}/accept", response_model=dict)
async def accept_request(
    request_id: str,
    claim: ClaimRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """
    Claim a request.

    Exactly one concurrent claim wins; the others get 409 already_claimed.
    """
    counselor_id = claim.counselor_id or principal.user_id
    require_self_or_admin(principal, counselor_id)

    result = Arbiter(db).accept(
        request_id,
        counselor_id,
        counselor_name=claim.counselor_name,
        counselor_phone=claim.counselor_phone,
    )
    return _claim_response(result)


@router.post("/requests/{request_id}/complete", response_model=dict)
async def complete_request(
    request_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """Close an accepted request as delivered. Only the assigned counselor or an admin."""
    request = Dispatcher(db).get_request(request_id)
    if request is None:
        raise HTTPException(status_code=404, detail="Request not found")
    if not principal.is_admin and principal.user_id != request.counselor_id:
        raise HTTPException(status_code=403, detail="Only the assigned counselor can complete this request")

    return _transition_response(LifecycleManager(db).complete(request_id))


@router.post("/requests/{request_id}/cancel", response_model=dict)
async def cancel_request(
    request_id: str,
    body: CancelRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """Withdraw a request. The requester, the assigned counselor or an admin."""
    request = Dispatcher(db).get_request(request_id)
    if request is None:
        raise HTTPException(status_code=404, detail="Request not found")
    if not principal.is_admin and principal.user_id not in (request.user_id, request.counselor_id):
        raise HTTPException(status_code=403, detail="Not allowed to cancel this request")

    return _transition_response(LifecycleManager(db).cancel(request_id, body.reason))


# =============================================================================
# APPOINTMENT QUEUE
# =============================================================================

@router.get("/appointments/queued", response_model=List[dict])
async def get_queued_appointments(
    region: Optional[str] = Query(None, description="Region code filter"),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """Open appointments waiting for a counselor, earliest slot first."""
    return [appointment_to_dict(a) for a in BookingQueue(db).list_queued(region)]


@router.post("/appointments/{appointment_id}/accept", response_model=dict)
async def accept_appointment(
    appointment_id: str,
    claim: ClaimRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """Claim a queued appointment and its request together."""
    counselor_id = claim.counselor_id or principal.user_id
    require_self_or_admin(principal, counselor_id)

    result = BookingQueue(db).accept_queued(
        appointment_id,
        counselor_id,
        counselor_name=claim.counselor_name,
        counselor_phone=claim.counselor_phone,
    )
    return _claim_response(result)
