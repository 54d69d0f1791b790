"""
Training Load Router

Exposes training load metrics:
- Current CTL/ATL/TSB
- Load history for charting
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import List, Optional
from uuid import UUID
from pydantic import BaseModel

from core.auth import get_current_user_id
from core.clock import get_clock
from core.database import get_db
from services.training_load import TrainingLoadCalculator, TrainingLoadSnapshot

router = APIRouter(prefix="/v1/training-load", tags=["Training Load"])


# ============ Response Models ============

class LoadSnapshotResponse(BaseModel):
    date: str
    has_data: bool
    ctl: Optional[float] = None
    atl: Optional[float] = None
    tsb: Optional[float] = None
    sample_count: int = 0
    reason: Optional[str] = None  # "insufficient_data" when has_data is False


class LoadHistoryResponse(BaseModel):
    history: List[LoadSnapshotResponse]


def _to_response(result) -> LoadSnapshotResponse:
    if isinstance(result, TrainingLoadSnapshot):
        return LoadSnapshotResponse(
            date=result.as_of.isoformat(),
            has_data=True,
            ctl=round(result.ctl, 1),
            atl=round(result.atl, 1),
            tsb=round(result.tsb, 1),
            sample_count=result.sample_count,
        )
    return LoadSnapshotResponse(
        date=result.as_of.isoformat(),
        has_data=False,
        reason=result.reason,
    )


# ============ Endpoints ============

@router.get("/current", response_model=LoadSnapshotResponse)
def get_current_load(
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
):
    """
    Get current training load.

    - CTL: Chronic Training Load (fitness, 42-day)
    - ATL: Acute Training Load (fatigue, 7-day)
    - TSB: Training Stress Balance (form = CTL - ATL)

    With no rides in the lookback window the response carries
    has_data=false instead of zeros.
    """
    calculator = TrainingLoadCalculator(db)
    return _to_response(calculator.get_snapshot(user_id, as_of=clock().date()))


@router.get("/history", response_model=LoadHistoryResponse)
def get_load_history(
    days: int = Query(42, ge=7, le=365),
    user_id: UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
):
    """Daily training load history for charting, oldest first."""
    calculator = TrainingLoadCalculator(db)
    history = calculator.get_load_history(user_id, days=days, as_of=clock().date())
    return LoadHistoryResponse(history=[_to_response(item) for item in history])
