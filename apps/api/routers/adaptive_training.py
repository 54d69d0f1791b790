"""
Adaptive Training Router

Settings, on-demand evaluation, batch runs and the approval flow for
workout adaptations.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import List
from uuid import UUID

from core.auth import get_current_user_id
from core.clock import get_clock
from core.database import get_db
from schemas import (
    AdaptationDecisionResponse,
    AdaptationHistoryResponse,
    AdaptationOutcomeResponse,
    AdaptationRespondRequest,
    AdaptationSettingsResponse,
    AdaptationSettingsUpdate,
    RunAdaptationResponse,
)
from services.adaptation_engine import AdaptationDecision, adaptation_type_label, confidence_label
from services.adaptive_training import AdaptiveTrainingService

router = APIRouter(prefix="/v1/adaptive-training", tags=["Adaptive Training"])


def decision_response(decision: AdaptationDecision) -> AdaptationDecisionResponse:
    return AdaptationDecisionResponse(
        should_adapt=decision.should_adapt,
        adaptation_type=decision.adaptation_type.value,
        adaptation_label=adaptation_type_label(decision.adaptation_type),
        new_level=decision.new_level,
        delta=decision.delta,
        reason=decision.reason,
        confidence=decision.confidence,
        confidence_label=confidence_label(decision.confidence),
    )


@router.get("/settings", response_model=AdaptationSettingsResponse)
def get_settings(
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
):
    return AdaptiveTrainingService(db, clock=clock).get_settings(user_id)


@router.put("/settings", response_model=AdaptationSettingsResponse)
def update_settings(
    request: AdaptationSettingsUpdate,
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
):
    """Partial update; omitted fields keep their current value."""
    service = AdaptiveTrainingService(db, clock=clock)
    return service.update_settings(user_id, **request.model_dump(exclude_none=True))


@router.get("/workouts/{workout_id}/evaluation", response_model=AdaptationDecisionResponse)
def evaluate_workout(
    workout_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
):
    """Preview the adaptation decision for one workout. Nothing is recorded."""
    decision = AdaptiveTrainingService(db, clock=clock).evaluate_workout(user_id, workout_id)
    return decision_response(decision)


@router.post("/run", response_model=RunAdaptationResponse)
def run_adaptive_training(
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
):
    """Evaluate the next two weeks of workouts and record any adaptations."""
    outcomes = AdaptiveTrainingService(db, clock=clock).run_batch(user_id)
    return RunAdaptationResponse(
        adaptations=[
            AdaptationOutcomeResponse(
                workout_id=o.workout_id,
                workout_date=o.workout_date,
                current_level=o.current_level,
                recommended_level=o.decision.new_level,
                adaptation_type=o.decision.adaptation_type.value,
                reason=o.decision.reason,
                confidence=o.decision.confidence,
                adaptation_id=o.adaptation_id,
                applied=o.applied,
            )
            for o in outcomes
        ],
        count=len(outcomes),
    )


@router.get("/history", response_model=List[AdaptationHistoryResponse])
def get_adaptation_history(
    limit: int = Query(20, ge=1, le=200),
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
):
    return AdaptiveTrainingService(db, clock=clock).get_adaptation_history(user_id, limit=limit)


@router.get("/pending", response_model=List[AdaptationHistoryResponse])
def get_pending_adaptations(
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
):
    return AdaptiveTrainingService(db, clock=clock).get_pending_adaptations(user_id)


@router.post("/{adaptation_id}/respond", response_model=AdaptationHistoryResponse)
def respond_to_adaptation(
    adaptation_id: UUID,
    request: AdaptationRespondRequest,
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
):
    """Accept (apply to the workout) or reject a pending adaptation."""
    service = AdaptiveTrainingService(db, clock=clock)
    return service.respond(user_id, adaptation_id, request.accept, feedback=request.feedback)
