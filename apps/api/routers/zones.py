"""
Zones Router

Power-based zone classification and FTP history:
- Classify arbitrary power numbers (no persistence)
- Record / read FTP
- Classify a user's whole ride history
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List
from uuid import UUID

from core.auth import get_current_user_id
from core.clock import get_clock
from core.database import get_db
from core.exceptions import NoFTPError
from schemas import (
    ClassifyAllResponse,
    ClassifyRequest,
    ClassifyResponse,
    FTPCreate,
    FTPResponse,
)
from services.ftp_history import get_current_ftp, get_ftp_history, record_ftp
from services.training_zones import ZONE_LABELS
from services.zone_classifier import RideClassifier, classify_zone, estimate_rpe, intensity_factor

router = APIRouter(prefix="/v1/zones", tags=["Zones"])


@router.post("/classify", response_model=ClassifyResponse)
def classify(request: ClassifyRequest):
    """Zone, IF and estimated RPE for the given power numbers."""
    zone = classify_zone(request.average_watts, request.normalized_power, request.ftp, request.duration_seconds)
    intensity = intensity_factor(request.average_watts, request.normalized_power, request.ftp)
    return ClassifyResponse(
        zone=zone.value if zone else None,
        zone_label=ZONE_LABELS[zone] if zone else None,
        intensity_factor=round(intensity, 3) if intensity is not None else None,
        estimated_rpe=estimate_rpe(
            request.average_watts,
            request.normalized_power,
            request.ftp,
            request.duration_seconds,
            request.tss,
        ),
    )


@router.post("/ftp", response_model=FTPResponse, status_code=201)
def set_ftp(
    request: FTPCreate,
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
):
    """Append a new FTP entry. Older entries are kept."""
    return record_ftp(
        db,
        user_id,
        request.ftp_watts,
        effective_date=request.effective_date or clock().date(),
        lthr_bpm=request.lthr_bpm,
        test_type=request.test_type,
        ride_id=request.ride_id,
        notes=request.notes,
    )


@router.get("/ftp", response_model=FTPResponse)
def get_ftp(
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
):
    """FTP currently in effect."""
    entry = get_current_ftp(db, user_id, as_of=clock().date())
    if entry is None:
        raise NoFTPError(user_id)
    return entry


@router.get("/ftp/history", response_model=List[FTPResponse])
def list_ftp_history(
    limit: int = 20,
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return get_ftp_history(db, user_id, limit=min(max(limit, 1), 100))


@router.post("/rides/classify-all", response_model=ClassifyAllResponse)
def classify_all_rides(
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
):
    """Classify every ride with power data against the FTP in effect at the time."""
    summary = RideClassifier(db, clock=clock).classify_all_rides(user_id)
    return ClassifyAllResponse(
        total_rides=summary.total_rides,
        classified=summary.classified,
        skipped=summary.skipped,
        zone_breakdown=summary.zone_breakdown,
    )
