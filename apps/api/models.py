from sqlalchemy import Column, Integer, Boolean, CheckConstraint, Float, Date, DateTime, ForeignKey, Text, Index, UniqueConstraint, Uuid
from sqlalchemy.sql import func
from core.database import Base
from services.training_zones import ZONE_NAMES
import uuid

_ZONE_CHECK = "zone IN (" + ", ".join(f"'{z}'" for z in ZONE_NAMES) + ")"
_TARGET_ZONE_CHECK = "target_zone IS NULL OR target_zone IN (" + ", ".join(f"'{z}'" for z in ZONE_NAMES) + ")"

ADAPTATION_TYPES = ("increase", "decrease", "substitute", "skip", "reschedule", "no_change")
SENSITIVITIES = ("conservative", "moderate", "aggressive")


# =========================================================================
# Ride / workout history (external collaborator, mirrored locally)
# =========================================================================

class Ride(Base):
    """
    A recorded ride. Source of the TSS time series and of the power data
    used to classify unlabeled history into zones.
    """
    __tablename__ = "ride"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), nullable=False)
    name = Column(Text, nullable=True)
    recorded_at = Column(DateTime(timezone=True), nullable=False)
    duration_seconds = Column(Integer, nullable=True)
    average_watts = Column(Float, nullable=True)
    normalized_power = Column(Float, nullable=True)
    tss = Column(Float, nullable=True)  # Training Stress Score, None when the provider didn't compute one
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("ix_ride_user_recorded", "user_id", "recorded_at"),
    )


class PlannedWorkout(Base):
    """
    A scheduled workout. The adaptation engine reads zone/level/date and the
    applier writes back workout_level, was_adapted and adaptation_reason.
    """
    __tablename__ = "planned_workout"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), nullable=False)

    workout_date = Column(Date, nullable=False)
    workout_type = Column(Text, nullable=False)  # 'endurance', 'intervals', 'rest', ...
    title = Column(Text, nullable=True)

    target_zone = Column(Text, nullable=True)
    workout_level = Column(Float, nullable=True)  # 1.0-10.0 difficulty
    target_tss = Column(Float, nullable=True)
    target_duration_minutes = Column(Integer, nullable=True)

    # Execution tracking
    completed = Column(Boolean, default=False, nullable=False)
    completion_percentage = Column(Float, nullable=True)  # 0-100
    completed_ride_id = Column(Uuid(as_uuid=True), ForeignKey("ride.id", ondelete="SET NULL"), nullable=True)

    # Adaptation state
    was_adapted = Column(Boolean, default=False, nullable=False)
    adaptation_reason = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        Index("ix_planned_workout_user_date", "user_id", "workout_date"),
        CheckConstraint(_TARGET_ZONE_CHECK, name="ck_planned_workout_target_zone"),
        CheckConstraint(
            "workout_level IS NULL OR (workout_level >= 1.0 AND workout_level <= 10.0)",
            name="ck_planned_workout_level_range",
        ),
    )


class WorkoutFeedback(Base):
    """Post-workout survey answer (one per planned workout)."""
    __tablename__ = "workout_feedback"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), nullable=False)
    planned_workout_id = Column(Uuid(as_uuid=True), ForeignKey("planned_workout.id", ondelete="CASCADE"), nullable=False)
    perceived_exertion = Column(Integer, nullable=True)  # RPE 1-10
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("planned_workout_id", name="uq_workout_feedback_workout"),
        CheckConstraint(
            "perceived_exertion IS NULL OR (perceived_exertion >= 1 AND perceived_exertion <= 10)",
            name="ck_workout_feedback_rpe_range",
        ),
    )


class FTPHistory(Base):
    """
    Append-only FTP history. The current FTP is the row with the latest
    effective_date on or before the date asked about; there is no mutable
    "is_current" flag to race on.
    """
    __tablename__ = "ftp_history"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), nullable=False)
    ftp_watts = Column(Integer, nullable=False)
    lthr_bpm = Column(Integer, nullable=True)  # Lactate threshold heart rate
    effective_date = Column(Date, nullable=False)
    test_type = Column(Text, nullable=True)  # 'ramp', '20min', '8min', 'auto_detected', 'manual'
    ride_id = Column(Uuid(as_uuid=True), ForeignKey("ride.id", ondelete="SET NULL"), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("ix_ftp_history_user_effective", "user_id", "effective_date"),
        CheckConstraint("ftp_watts > 0", name="ck_ftp_history_watts_positive"),
        CheckConstraint("lthr_bpm IS NULL OR (lthr_bpm > 0 AND lthr_bpm < 220)", name="ck_ftp_history_lthr_range"),
    )


class RideClassification(Base):
    """Zone + estimated RPE for a ride, derived from power vs FTP."""
    __tablename__ = "ride_classification"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    ride_id = Column(Uuid(as_uuid=True), ForeignKey("ride.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Uuid(as_uuid=True), nullable=False)

    zone = Column(Text, nullable=False)
    estimated_rpe = Column(Float, nullable=True)
    intensity_factor = Column(Float, nullable=True)
    used_ftp = Column(Integer, nullable=True)
    classification_method = Column(Text, nullable=False, default="power")
    confidence = Column(Float, nullable=False, default=0.85)

    classified_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("ride_id", name="uq_ride_classification_ride"),
        Index("ix_ride_classification_user_zone", "user_id", "zone"),
        CheckConstraint(_ZONE_CHECK, name="ck_ride_classification_zone"),
    )


# =========================================================================
# Progression levels
# =========================================================================

class ProgressionLevel(Base):
    """
    Current fitness level (1.0-10.0) per (user, zone).

    Projection over progression_level_history; mutated only through
    ProgressionStore. `version` drives optimistic concurrency: a concurrent
    writer makes the second UPDATE match zero rows and raise StaleDataError.
    """
    __tablename__ = "progression_level"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), nullable=False)
    zone = Column(Text, nullable=False)
    level = Column(Float, nullable=False, default=3.0)
    workouts_completed = Column(Integer, nullable=False, default=0)
    last_workout_date = Column(Date, nullable=True)
    last_level_change = Column(Float, nullable=True)
    last_level_change_at = Column(DateTime(timezone=True), nullable=True)
    version = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        UniqueConstraint("user_id", "zone", name="uq_progression_level_user_zone"),
        CheckConstraint(_ZONE_CHECK, name="ck_progression_level_zone"),
        CheckConstraint("level >= 1.0 AND level <= 10.0", name="ck_progression_level_range"),
    )


class ProgressionLevelHistory(Base):
    """Append-only audit log, written in the same transaction as every level change."""
    __tablename__ = "progression_level_history"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), nullable=False)
    zone = Column(Text, nullable=False)
    old_level = Column(Float, nullable=True)
    new_level = Column(Float, nullable=False)
    level_change = Column(Float, nullable=False)
    reason = Column(Text, nullable=False)  # 'workout_success', 'workout_struggle', 'workout_failure', 'manual_adjustment', ...
    ride_id = Column(Uuid(as_uuid=True), ForeignKey("ride.id", ondelete="SET NULL"), nullable=True)
    planned_workout_id = Column(Uuid(as_uuid=True), ForeignKey("planned_workout.id", ondelete="SET NULL"), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("ix_progression_history_user_zone_created", "user_id", "zone", "created_at"),
    )


# =========================================================================
# Adaptive training
# =========================================================================

class AdaptationSettings(Base):
    """Per-user preferences for adaptive training (created with defaults on first read)."""
    __tablename__ = "adaptation_settings"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), nullable=False, unique=True)

    adaptive_enabled = Column(Boolean, nullable=False, default=True)
    auto_apply = Column(Boolean, nullable=False, default=False)  # False = adaptations wait for approval
    adaptation_sensitivity = Column(Text, nullable=False, default="moderate")
    min_days_before_workout = Column(Integer, nullable=False, default=2)
    tsb_fatigued_threshold = Column(Float, nullable=False, default=-30.0)
    tsb_fresh_threshold = Column(Float, nullable=False, default=5.0)
    notify_on_adaptation = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint(
            "adaptation_sensitivity IN (" + ", ".join(f"'{s}'" for s in SENSITIVITIES) + ")",
            name="ck_adaptation_settings_sensitivity",
        ),
        CheckConstraint("min_days_before_workout >= 0", name="ck_adaptation_settings_min_days"),
    )


class AdaptationHistory(Base):
    """
    Audit log of adaptation decisions and the athlete's response.

    was_accepted: None = pending, True = accepted, False = rejected.
    The tsb/completion/progression/rpe columns snapshot the inputs the
    decision was made from.
    """
    __tablename__ = "adaptation_history"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), nullable=False)
    planned_workout_id = Column(Uuid(as_uuid=True), ForeignKey("planned_workout.id", ondelete="SET NULL"), nullable=True)

    # What changed
    old_workout_level = Column(Float, nullable=True)
    new_workout_level = Column(Float, nullable=True)
    level_change = Column(Float, nullable=True)

    # Why
    adaptation_type = Column(Text, nullable=False)
    reason = Column(Text, nullable=True)
    confidence = Column(Float, nullable=True)

    # Inputs at decision time
    tsb_value = Column(Float, nullable=True)
    recent_completion_rate = Column(Float, nullable=True)
    zone_progression_level = Column(Float, nullable=True)
    recent_avg_rpe = Column(Float, nullable=True)

    # Response
    was_accepted = Column(Boolean, nullable=True)
    user_feedback = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    accepted_at = Column(DateTime(timezone=True), nullable=True)
    rejected_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_adaptation_history_user_created", "user_id", "created_at"),
        Index("ix_adaptation_history_workout", "planned_workout_id"),
        CheckConstraint(
            "adaptation_type IN (" + ", ".join(f"'{t}'" for t in ADAPTATION_TYPES) + ")",
            name="ck_adaptation_history_type",
        ),
    )
