"""
Counselor Directory API Routes

Counselor applications, admin review, and on-duty status.
"""
from typing import Optional, List

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..database import get_db
from ..auth import Principal, get_current_principal, require_admin
from ..models.db_models import CounselorDB
from ..models.reference import is_valid_region
from ..services.counsel import CounselorDirectory


router = APIRouter(prefix="/counselors", tags=["counselors"])


# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class CounselorApplication(BaseModel):
    """Application to join as a counselor."""
    name: str
    email: str
    phone: str
    national_id_number: str
    home_region: str = Field(..., description="Region code")
    serving_regions: Optional[List[str]] = Field(None, description="Defaults to the home region")
    specializations: Optional[List[str]] = None
    id_document_url: Optional[str] = None


class RejectApplication(BaseModel):
    reason: str = Field(..., min_length=1)


class OnlineStatus(BaseModel):
    is_online: bool
    phone: Optional[str] = None
    home_region: Optional[str] = None


def counselor_to_dict(counselor: CounselorDB) -> dict:
    return {
        "id": counselor.id,
        "name": counselor.name,
        "email": counselor.email,
        "phone": counselor.phone,
        "application_status": counselor.application_status.value,
        "is_online": counselor.is_online,
        "is_available": counselor.is_available,
        "home_region": counselor.home_region,
        "serving_regions": counselor.serving_regions or [],
        "specializations": counselor.specializations or [],
        "rating": counselor.rating,
        "total_cases": counselor.total_cases,
        "completed_cases": counselor.completed_cases,
        "active_requests": counselor.active_requests,
        "max_active_requests": counselor.max_active_requests,
        "last_seen_at": counselor.last_seen_at.isoformat() if counselor.last_seen_at else None,
    }


# =============================================================================
# APPLICATION
# =============================================================================

@router.post("/apply", response_model=dict)
async def apply(
    application: CounselorApplication,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """Submit an application; an admin approves or rejects it."""
    success, message = CounselorDirectory(db).apply(
        user_id=principal.user_id,
        name=application.name,
        email=application.email,
        phone=application.phone,
        national_id_number=application.national_id_number,
        home_region=application.home_region,
        serving_regions=application.serving_regions,
        specializations=application.specializations,
        id_document_url=application.id_document_url,
    )
    if not success:
        raise HTTPException(status_code=400, detail=message)
    return {"success": True, "message": message}


@router.get("/me/application", response_model=dict)
async def get_application_status(
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    return CounselorDirectory(db).application_status(principal.user_id)


@router.get("/me/approved", response_model=dict)
async def is_approved(
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    return {"approved": CounselorDirectory(db).is_approved(principal.user_id)}


@router.post("/me/online", response_model=dict)
async def set_online(
    body: OnlineStatus,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """Go on or off duty."""
    if body.home_region and not is_valid_region(body.home_region):
        raise HTTPException(status_code=400, detail=f"Invalid region code: {body.home_region}")

    directory = CounselorDirectory(db)
    if directory.get(principal.user_id) is None:
        raise HTTPException(status_code=404, detail="Counselor not registered")
    if not directory.set_online(principal.user_id, body.is_online, body.phone, body.home_region):
        raise HTTPException(status_code=503, detail="Could not update online status")
    return {"success": True, "is_online": body.is_online}


# =============================================================================
# DIRECTORY READS
# =============================================================================

@router.get("/online", response_model=List[dict])
async def get_online_counselors(
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    return [counselor_to_dict(c) for c in CounselorDirectory(db).online_counselors()]


@router.get("/available/{region}", response_model=List[dict])
async def get_available_counselors(
    region: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """Counselors a request in this region would be broadcast to, best first."""
    if not is_valid_region(region):
        raise HTTPException(status_code=400, detail=f"Invalid region code: {region}")
    return [counselor_to_dict(c) for c in CounselorDirectory(db).find_eligible(region)]


@router.get("/stats", response_model=dict)
async def get_stats(
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_admin),
):
    return CounselorDirectory(db).stats()


# =============================================================================
# ADMIN REVIEW
# =============================================================================

@router.get("/applications/pending", response_model=List[dict])
async def get_pending_applications(
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_admin),
):
    """Applications awaiting review, oldest first."""
    return [counselor_to_dict(c) for c in CounselorDirectory(db).pending_applications()]


@router.get("/all", response_model=List[dict])
async def get_all_counselors(
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_admin),
):
    return [counselor_to_dict(c) for c in CounselorDirectory(db).all_counselors()]


@router.post("/{counselor_id}/approve", response_model=dict)
async def approve_counselor(
    counselor_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_admin),
):
    if not CounselorDirectory(db).approve(counselor_id, approved_by=principal.user_id):
        raise HTTPException(status_code=404, detail="Counselor not found")
    return {"success": True, "counselor_id": counselor_id, "application_status": "approved"}


@router.post("/{counselor_id}/reject", response_model=dict)
async def reject_counselor(
    counselor_id: str,
    body: RejectApplication,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_admin),
):
    if not CounselorDirectory(db).reject(counselor_id, rejected_by=principal.user_id, reason=body.reason):
        raise HTTPException(status_code=404, detail="Counselor not found")
    return {"success": True, "counselor_id": counselor_id, "application_status": "rejected"}


@router.get("/{counselor_id}", response_model=dict)
async def get_counselor(
    counselor_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    counselor = CounselorDirectory(db).get(counselor_id)
    if counselor is None:
        raise HTTPException(status_code=404, detail="Counselor not found")
    return counselor_to_dict(counselor)
