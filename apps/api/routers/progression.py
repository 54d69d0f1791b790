"""
Progression Router

Per-zone fitness levels (1.0-10.0):
- Current levels for all seven zones
- Level change history
- Manual adjustments, workout results and seeding
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import List, Optional
from uuid import UUID

from core.auth import get_current_user_id
from core.clock import get_clock
from core.database import get_db
from core.exceptions import ValidationError
from models import ProgressionLevel
from schemas import (
    LevelChangeResponse,
    ProgressionAdjustRequest,
    ProgressionHistoryResponse,
    ProgressionLevelResponse,
    SeedRequest,
    SeedResponse,
    WorkoutResultRequest,
)
from services.adaptive_training import AdaptiveTrainingService
from services.progression_levels import LevelChange, LevelChangeReason, ProgressionStore, level_info
from services.training_zones import ZONE_LABELS, TrainingZone, parse_zone
from services.zone_classifier import seed_progression_from_rides

router = APIRouter(prefix="/v1/progression", tags=["Progression"])


def level_response(row: ProgressionLevel) -> ProgressionLevelResponse:
    info = level_info(row.level)
    return ProgressionLevelResponse(
        zone=row.zone,
        zone_label=ZONE_LABELS[TrainingZone(row.zone)],
        level=row.level,
        level_label=info.label,
        level_description=info.description,
        workouts_completed=row.workouts_completed or 0,
        last_workout_date=row.last_workout_date,
        last_level_change=row.last_level_change,
        last_level_change_at=row.last_level_change_at,
    )


def change_response(change: LevelChange) -> LevelChangeResponse:
    return LevelChangeResponse(
        zone=change.zone.value,
        old_level=change.old_level,
        new_level=change.new_level,
        level_change=change.level_change,
        reason=change.reason,
    )


@router.get("", response_model=List[ProgressionLevelResponse])
def get_progression_levels(
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
):
    """All seven zones, easiest first. Zones never seen before start at 3.0."""
    store = ProgressionStore(db, clock=clock)
    return [level_response(row) for row in store.get_all(user_id)]


@router.get("/history", response_model=List[ProgressionHistoryResponse])
def get_progression_history(
    zone: Optional[str] = None,
    days: int = Query(90, ge=1, le=730),
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
):
    """Level changes, newest first, optionally for one zone."""
    store = ProgressionStore(db, clock=clock)
    return store.get_history(user_id, zone=zone, days_back=days)


@router.post("/{zone}/adjust", response_model=LevelChangeResponse)
def adjust_progression_level(
    zone: str,
    request: ProgressionAdjustRequest,
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
):
    """
    Manually adjust a zone.

    Send either `delta` (added, then clamped into 1-10) or `level`
    (absolute, must already be within 1-10).
    """
    if (request.delta is None) == (request.level is None):
        raise ValidationError("Provide exactly one of delta or level")

    zone = parse_zone(zone)
    store = ProgressionStore(db, clock=clock)
    if request.delta is not None:
        change = store.update(
            user_id, zone, request.delta,
            reason=LevelChangeReason.MANUAL_ADJUSTMENT,
            notes=request.notes,
        )
    else:
        change = store.set_level(
            user_id, zone, request.level,
            reason=LevelChangeReason.MANUAL_ADJUSTMENT,
            notes=request.notes,
        )
    return change_response(change)


@router.post("/workout-result", response_model=Optional[LevelChangeResponse])
def record_workout_result(
    request: WorkoutResultRequest,
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
):
    """
    Record completion and RPE for a planned workout and update the zone's level.

    Returns null when the workout has no target zone or level.
    """
    service = AdaptiveTrainingService(db, clock=clock)
    change = service.record_workout_outcome(
        user_id,
        request.planned_workout_id,
        request.completion_percentage,
        request.perceived_exertion,
        ride_id=request.ride_id,
        notes=request.notes,
    )
    return change_response(change) if change else None


@router.post("/seed", response_model=SeedResponse)
def seed_progression(
    request: SeedRequest,
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
):
    """
    Seed initial levels from history.

    - rpe: average post-workout RPE per zone
    - rides: average estimated RPE of classified rides per zone
    """
    store = ProgressionStore(db, clock=clock)
    if request.source == "rides":
        seeded = seed_progression_from_rides(db, user_id, clock=clock)
    else:
        seeded = store.seed_from_rpe(user_id)

    return SeedResponse(
        source=request.source,
        zones_seeded=seeded,
        levels=[level_response(row) for row in store.get_all(user_id)],
    )
