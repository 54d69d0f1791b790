from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime, date
from uuid import UUID
from typing import Optional, List, Dict


# ============ Progression ============

class ProgressionLevelResponse(BaseModel):
    zone: str
    zone_label: str
    level: float
    level_label: str
    level_description: str
    workouts_completed: int
    last_workout_date: Optional[date] = None
    last_level_change: Optional[float] = None
    last_level_change_at: Optional[datetime] = None


class ProgressionHistoryResponse(BaseModel):
    id: UUID
    zone: str
    old_level: Optional[float]
    new_level: float
    level_change: float
    reason: str
    ride_id: Optional[UUID] = None
    planned_workout_id: Optional[UUID] = None
    notes: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class LevelChangeResponse(BaseModel):
    zone: str
    old_level: float
    new_level: float
    level_change: float
    reason: str


class ProgressionAdjustRequest(BaseModel):
    """Manual adjustment: either a delta or an absolute level."""
    delta: Optional[float] = Field(None, allow_inf_nan=False)
    level: Optional[float] = Field(None, allow_inf_nan=False)
    notes: Optional[str] = None


class WorkoutResultRequest(BaseModel):
    planned_workout_id: UUID
    completion_percentage: float = Field(..., ge=0, le=100, allow_inf_nan=False)
    perceived_exertion: int = Field(..., ge=1, le=10)
    ride_id: Optional[UUID] = None
    notes: Optional[str] = None


class SeedRequest(BaseModel):
    source: str = Field("rpe", pattern="^(rpe|rides)$")


class SeedResponse(BaseModel):
    source: str
    zones_seeded: int
    levels: List[ProgressionLevelResponse]


# ============ Zones / FTP ============

class ClassifyRequest(BaseModel):
    average_watts: Optional[float] = None
    normalized_power: Optional[float] = None
    ftp: Optional[float] = None
    duration_seconds: Optional[int] = None
    tss: Optional[float] = None


class ClassifyResponse(BaseModel):
    zone: Optional[str]
    zone_label: Optional[str]
    intensity_factor: Optional[float]
    estimated_rpe: int


class FTPCreate(BaseModel):
    ftp_watts: int = Field(..., gt=0)
    lthr_bpm: Optional[int] = Field(None, gt=0, lt=220)
    effective_date: Optional[date] = None
    test_type: str = "manual"
    ride_id: Optional[UUID] = None
    notes: Optional[str] = None


class FTPResponse(BaseModel):
    id: UUID
    ftp_watts: int
    lthr_bpm: Optional[int] = None
    effective_date: date
    test_type: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ClassifyAllResponse(BaseModel):
    total_rides: int
    classified: int
    skipped: int
    zone_breakdown: Dict[str, int]


# ============ Adaptive training ============

class AdaptationSettingsResponse(BaseModel):
    adaptive_enabled: bool
    auto_apply: bool
    adaptation_sensitivity: str
    min_days_before_workout: int
    tsb_fatigued_threshold: float
    tsb_fresh_threshold: float
    notify_on_adaptation: bool

    model_config = ConfigDict(from_attributes=True)


class AdaptationSettingsUpdate(BaseModel):
    adaptive_enabled: Optional[bool] = None
    auto_apply: Optional[bool] = None
    adaptation_sensitivity: Optional[str] = Field(None, pattern="^(conservative|moderate|aggressive)$")
    min_days_before_workout: Optional[int] = Field(None, ge=0)
    tsb_fatigued_threshold: Optional[float] = None
    tsb_fresh_threshold: Optional[float] = None
    notify_on_adaptation: Optional[bool] = None


class AdaptationDecisionResponse(BaseModel):
    should_adapt: bool
    adaptation_type: str
    adaptation_label: str
    new_level: Optional[float]
    delta: float
    reason: str
    confidence: float
    confidence_label: str


class AdaptationHistoryResponse(BaseModel):
    id: UUID
    planned_workout_id: Optional[UUID] = None
    old_workout_level: Optional[float] = None
    new_workout_level: Optional[float] = None
    level_change: Optional[float] = None
    adaptation_type: str
    reason: Optional[str] = None
    confidence: Optional[float] = None
    tsb_value: Optional[float] = None
    recent_completion_rate: Optional[float] = None
    zone_progression_level: Optional[float] = None
    recent_avg_rpe: Optional[float] = None
    was_accepted: Optional[bool] = None
    user_feedback: Optional[str] = None
    created_at: datetime
    accepted_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class AdaptationOutcomeResponse(BaseModel):
    workout_id: UUID
    workout_date: date
    current_level: Optional[float]
    recommended_level: Optional[float]
    adaptation_type: str
    reason: str
    confidence: float
    adaptation_id: UUID
    applied: bool


class RunAdaptationResponse(BaseModel):
    adaptations: List[AdaptationOutcomeResponse]
    count: int


class AdaptationRespondRequest(BaseModel):
    accept: bool
    feedback: Optional[str] = None
