"""
Adaptive Training Service

Gathers the inputs the decision engine needs, records its decisions in
adaptation_history and applies them to planned workouts.

- With auto_apply on, a decision is accepted and applied as soon as it is
  recorded. Otherwise it stays pending until the athlete responds.
- A batch run walks the next two weeks of workouts oldest first and
  applies each decision before evaluating the next one.
- The engine itself never writes; everything persisted goes through here.
"""

from datetime import date, datetime, timedelta
from typing import Callable, List, Optional
from uuid import UUID
from dataclasses import dataclass
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
import logging

from core.clock import utc_now
from core.config import settings as app_settings
from core.exceptions import (
    AdaptationAlreadyResolved,
    AdaptationNotFound,
    InvariantViolation,
    WorkoutNotFound,
)
from models import AdaptationHistory, AdaptationSettings, PlannedWorkout, WorkoutFeedback
from services.adaptation_engine import (
    AdaptationDecision,
    AdaptationSettingsSnapshot,
    AdaptationType,
    RecentTrainingMetrics,
    Sensitivity,
    WorkoutTarget,
    evaluate_adaptation,
)
from services.progression_levels import LevelChange, ProgressionStore
from services.training_load import LoadResult, TrainingLoadCalculator, TrainingLoadSnapshot
from services.training_zones import parse_zone

logger = logging.getLogger(__name__)

REST_WORKOUT_TYPE = "rest"

SETTINGS_FIELDS = (
    "adaptive_enabled",
    "auto_apply",
    "adaptation_sensitivity",
    "min_days_before_workout",
    "tsb_fatigued_threshold",
    "tsb_fresh_threshold",
    "notify_on_adaptation",
)


@dataclass(frozen=True)
class AdaptationInputs:
    """Everything a decision was made from, kept for the history snapshot."""
    settings: AdaptationSettingsSnapshot
    load: LoadResult
    metrics: RecentTrainingMetrics
    progression_level: Optional[float]

    @property
    def tsb(self) -> Optional[float]:
        if isinstance(self.load, TrainingLoadSnapshot):
            return self.load.tsb
        return None


@dataclass(frozen=True)
class AdaptationOutcome:
    """One batch-run result: a recorded decision for one workout."""
    workout_id: UUID
    workout_date: date
    current_level: Optional[float]
    decision: AdaptationDecision
    adaptation_id: UUID
    applied: bool


def settings_snapshot(row: AdaptationSettings) -> AdaptationSettingsSnapshot:
    return AdaptationSettingsSnapshot(
        adaptive_enabled=row.adaptive_enabled,
        auto_apply=row.auto_apply,
        sensitivity=Sensitivity(row.adaptation_sensitivity),
        min_days_before_workout=row.min_days_before_workout,
        tsb_fatigued_threshold=row.tsb_fatigued_threshold,
        tsb_fresh_threshold=row.tsb_fresh_threshold,
        notify_on_adaptation=row.notify_on_adaptation,
    )


def workout_target(workout: PlannedWorkout) -> Optional[WorkoutTarget]:
    """Engine view of a planned workout, or None if it has no zone or level to adapt."""
    if workout.target_zone is None or workout.workout_level is None:
        return None
    return WorkoutTarget(
        id=workout.id,
        workout_date=workout.workout_date,
        zone=parse_zone(workout.target_zone),
        level=workout.workout_level,
        was_adapted=bool(workout.was_adapted),
        adaptation_reason=workout.adaptation_reason,
    )


class AdaptiveTrainingService:
    """Applier: persists and applies adaptation decisions."""

    def __init__(self, db: Session, clock: Callable[[], datetime] = utc_now):
        self.db = db
        self.clock = clock
        self.progression = ProgressionStore(db, clock=clock)
        self.load_calculator = TrainingLoadCalculator(db)

    def today(self) -> date:
        return self.clock().date()

    # =========================================================================
    # SETTINGS
    # =========================================================================

    def get_settings(self, user_id: UUID) -> AdaptationSettings:
        """User's adaptation settings, created with defaults on first access."""
        row = self.db.query(AdaptationSettings).filter(AdaptationSettings.user_id == user_id).first()
        if row is not None:
            return row

        row = AdaptationSettings(
            user_id=user_id,
            adaptive_enabled=True,
            auto_apply=False,
            adaptation_sensitivity=Sensitivity.MODERATE.value,
            min_days_before_workout=2,
            tsb_fatigued_threshold=-30.0,
            tsb_fresh_threshold=5.0,
            notify_on_adaptation=True,
        )
        self.db.add(row)
        try:
            self.db.commit()
        except IntegrityError:
            # Created concurrently by another request
            self.db.rollback()
            row = self.db.query(AdaptationSettings).filter(AdaptationSettings.user_id == user_id).one()
        return row

    def update_settings(self, user_id: UUID, **changes) -> AdaptationSettings:
        unknown = set(changes) - set(SETTINGS_FIELDS)
        if unknown:
            raise InvariantViolation(f"Unknown adaptation settings: {sorted(unknown)}")

        changes = {key: value for key, value in changes.items() if value is not None}
        if "adaptation_sensitivity" in changes:
            try:
                changes["adaptation_sensitivity"] = Sensitivity(changes["adaptation_sensitivity"]).value
            except ValueError:
                raise InvariantViolation(f"Unknown adaptation sensitivity: {changes['adaptation_sensitivity']!r}")
        if changes.get("min_days_before_workout", 0) < 0:
            raise InvariantViolation("min_days_before_workout must be >= 0")

        row = self.get_settings(user_id)
        fatigued = changes.get("tsb_fatigued_threshold", row.tsb_fatigued_threshold)
        fresh = changes.get("tsb_fresh_threshold", row.tsb_fresh_threshold)
        if fatigued >= fresh:
            raise InvariantViolation("tsb_fatigued_threshold must be below tsb_fresh_threshold")

        for key, value in changes.items():
            setattr(row, key, value)
        row.updated_at = self.clock()
        self.db.commit()
        logger.info(f"Updated adaptation settings for user {user_id}: {sorted(changes)}")
        return row

    # =========================================================================
    # INPUTS
    # =========================================================================

    def get_recent_training_metrics(
        self,
        user_id: UUID,
        days_back: Optional[int] = None,
        today: Optional[date] = None,
    ) -> RecentTrainingMetrics:
        """Completion and RPE over non-rest workouts dated in [today - days_back, today)."""
        if days_back is None:
            days_back = app_settings.RECENT_METRICS_DAYS
        if today is None:
            today = self.today()

        rows = (
            self.db.query(
                PlannedWorkout.completed,
                PlannedWorkout.completion_percentage,
                WorkoutFeedback.perceived_exertion,
            )
            .outerjoin(WorkoutFeedback, WorkoutFeedback.planned_workout_id == PlannedWorkout.id)
            .filter(
                PlannedWorkout.user_id == user_id,
                PlannedWorkout.workout_date >= today - timedelta(days=days_back),
                PlannedWorkout.workout_date < today,
                PlannedWorkout.workout_type != REST_WORKOUT_TYPE,
            )
            .all()
        )

        if not rows:
            return RecentTrainingMetrics()

        completed = sum(1 for done, _, _ in rows if done)
        missed = len(rows) - completed
        rpes = [rpe for _, _, rpe in rows if rpe is not None]
        pcts = [pct for _, pct, _ in rows if pct is not None]

        return RecentTrainingMetrics(
            completion_rate=completed / len(rows) * 100,
            avg_rpe=sum(rpes) / len(rpes) if rpes else None,
            completed=completed,
            missed=missed,
            avg_completion_pct=sum(pcts) / len(pcts) if pcts else None,
        )

    def gather_inputs(self, user_id: UUID, zone: Optional[str], today: Optional[date] = None) -> AdaptationInputs:
        """
        Pre-fetch engine inputs. A zone with no progression row counts as
        never practiced and yields no level (the engine reports insufficient data).
        """
        if today is None:
            today = self.today()

        progression_level = None
        if zone is not None:
            record = self.progression.find(user_id, zone)
            if record is not None:
                progression_level = record.level

        return AdaptationInputs(
            settings=settings_snapshot(self.get_settings(user_id)),
            load=self.load_calculator.get_snapshot(user_id, as_of=today),
            metrics=self.get_recent_training_metrics(user_id, today=today),
            progression_level=progression_level,
        )

    def _get_workout(self, user_id: UUID, workout_id: UUID) -> PlannedWorkout:
        workout = self.db.query(PlannedWorkout).filter(
            PlannedWorkout.id == workout_id,
            PlannedWorkout.user_id == user_id,
        ).first()
        if not workout:
            raise WorkoutNotFound(workout_id)
        return workout

    # =========================================================================
    # EVALUATE / APPLY
    # =========================================================================

    def evaluate_workout(self, user_id: UUID, workout_id: UUID) -> AdaptationDecision:
        """Decision for one workout without recording or applying it."""
        workout = self._get_workout(user_id, workout_id)
        decision, _ = self._evaluate(user_id, workout, self.today())
        return decision

    def _evaluate(self, user_id: UUID, workout: PlannedWorkout, today: date):
        inputs = self.gather_inputs(user_id, workout.target_zone, today)
        target = workout_target(workout)
        if target is None:
            decision = AdaptationDecision(
                should_adapt=False,
                adaptation_type=AdaptationType.NO_CHANGE,
                new_level=workout.workout_level,
                delta=0.0,
                reason="insufficient_data",
                confidence=0.0,
            )
        else:
            decision = evaluate_adaptation(
                target,
                inputs.settings,
                inputs.load,
                inputs.metrics,
                inputs.progression_level,
                today,
            )
        return decision, inputs

    def _apply_to_workout(self, workout: PlannedWorkout, adaptation_type: str, new_level: Optional[float], reason: str):
        if adaptation_type != AdaptationType.SKIP.value and new_level is not None:
            workout.workout_level = new_level
        workout.was_adapted = True
        workout.adaptation_reason = reason
        workout.updated_at = self.clock()

    def apply_decision(
        self,
        user_id: UUID,
        workout: PlannedWorkout,
        decision: AdaptationDecision,
        inputs: AdaptationInputs,
    ) -> Optional[AdaptationHistory]:
        """
        Record a decision. Decisions that don't call for adaptation are not
        recorded. With auto_apply the workout is changed immediately.
        """
        if not decision.should_adapt:
            return None

        now = self.clock()
        old_level = workout.workout_level
        auto_apply = inputs.settings.auto_apply

        entry = AdaptationHistory(
            user_id=user_id,
            planned_workout_id=workout.id,
            old_workout_level=old_level,
            new_workout_level=decision.new_level,
            level_change=decision.delta,
            adaptation_type=decision.adaptation_type.value,
            reason=decision.reason,
            confidence=decision.confidence,
            tsb_value=inputs.tsb,
            recent_completion_rate=inputs.metrics.completion_rate,
            zone_progression_level=inputs.progression_level,
            recent_avg_rpe=inputs.metrics.avg_rpe,
            was_accepted=True if auto_apply else None,
            created_at=now,
            accepted_at=now if auto_apply else None,
        )
        self.db.add(entry)

        if auto_apply:
            self._apply_to_workout(workout, entry.adaptation_type, decision.new_level, decision.reason)

        self.db.commit()
        logger.info(
            f"Adaptation {decision.adaptation_type.value} for workout {workout.id} "
            f"({old_level} -> {decision.new_level}, confidence {decision.confidence:.2f}, "
            f"{'applied' if auto_apply else 'pending'}): {decision.reason}"
        )
        return entry

    def respond(
        self,
        user_id: UUID,
        adaptation_id: UUID,
        accept: bool,
        feedback: Optional[str] = None,
    ) -> AdaptationHistory:
        """Accept (apply) or reject a pending adaptation."""
        entry = self.db.query(AdaptationHistory).filter(
            AdaptationHistory.id == adaptation_id,
            AdaptationHistory.user_id == user_id,
        ).with_for_update().first()
        if not entry:
            raise AdaptationNotFound(adaptation_id)
        if entry.was_accepted is not None:
            raise AdaptationAlreadyResolved(adaptation_id, entry.was_accepted)

        now = self.clock()
        if accept:
            if entry.planned_workout_id is not None:
                workout = self.db.query(PlannedWorkout).filter(
                    PlannedWorkout.id == entry.planned_workout_id
                ).first()
                if workout is not None:
                    self._apply_to_workout(workout, entry.adaptation_type, entry.new_workout_level, entry.reason)
            entry.was_accepted = True
            entry.accepted_at = now
        else:
            entry.was_accepted = False
            entry.rejected_at = now
        entry.user_feedback = feedback

        self.db.commit()
        logger.info(f"Adaptation {adaptation_id} {'accepted' if accept else 'rejected'} by user {user_id}")
        return entry

    def run_batch(self, user_id: UUID, today: Optional[date] = None) -> List[AdaptationOutcome]:
        """
        Evaluate and record adaptations for upcoming workouts, oldest first.

        Returns one outcome per workout that got an adaptation. Empty when
        adaptive training is disabled.
        """
        if today is None:
            today = self.today()

        if not self.get_settings(user_id).adaptive_enabled:
            logger.info(f"Adaptive training disabled for user {user_id}, skipping batch")
            return []

        workouts = (
            self.db.query(PlannedWorkout)
            .filter(
                PlannedWorkout.user_id == user_id,
                PlannedWorkout.workout_date >= today,
                PlannedWorkout.workout_date <= today + timedelta(days=app_settings.ADAPTATION_LOOKAHEAD_DAYS),
                PlannedWorkout.workout_type != REST_WORKOUT_TYPE,
                PlannedWorkout.was_adapted.is_(False),
            )
            .order_by(PlannedWorkout.workout_date, PlannedWorkout.created_at)
            .all()
        )

        outcomes: List[AdaptationOutcome] = []
        for workout in workouts:
            if workout_target(workout) is None:
                logger.debug(f"Workout {workout.id} has no zone/level, not evaluated")
                continue

            current_level = workout.workout_level
            decision, inputs = self._evaluate(user_id, workout, today)
            entry = self.apply_decision(user_id, workout, decision, inputs)
            if entry is None:
                continue

            outcomes.append(AdaptationOutcome(
                workout_id=workout.id,
                workout_date=workout.workout_date,
                current_level=current_level,
                decision=decision,
                adaptation_id=entry.id,
                applied=bool(entry.was_accepted),
            ))

        logger.info(
            f"Adaptive training batch for user {user_id}: "
            f"{len(workouts)} workouts evaluated, {len(outcomes)} adaptations"
        )
        return outcomes

    # =========================================================================
    # HISTORY
    # =========================================================================

    def get_adaptation_history(self, user_id: UUID, limit: int = 20) -> List[AdaptationHistory]:
        return (
            self.db.query(AdaptationHistory)
            .filter(AdaptationHistory.user_id == user_id)
            .order_by(AdaptationHistory.created_at.desc())
            .limit(limit)
            .all()
        )

    def get_pending_adaptations(self, user_id: UUID) -> List[AdaptationHistory]:
        return (
            self.db.query(AdaptationHistory)
            .filter(
                AdaptationHistory.user_id == user_id,
                AdaptationHistory.was_accepted.is_(None),
            )
            .order_by(AdaptationHistory.created_at.desc())
            .all()
        )

    # =========================================================================
    # WORKOUT OUTCOMES
    # =========================================================================

    def record_workout_outcome(
        self,
        user_id: UUID,
        workout_id: UUID,
        completion_pct: float,
        rpe: int,
        ride_id: Optional[UUID] = None,
        notes: Optional[str] = None,
    ) -> Optional[LevelChange]:
        """
        Mark a planned workout completed, store the athlete's RPE and fold
        the result into their progression level for the workout's zone.

        Returns None when the workout has no zone or level to progress.
        """
        if not (0 <= completion_pct <= 100):
            raise InvariantViolation(f"completion_pct {completion_pct!r} outside [0, 100]")
        if not (1 <= rpe <= 10):
            raise InvariantViolation(f"RPE {rpe!r} outside [1, 10]")

        workout = self._get_workout(user_id, workout_id)
        workout.completed = True
        workout.completion_percentage = completion_pct
        if ride_id is not None:
            workout.completed_ride_id = ride_id
        workout.updated_at = self.clock()

        feedback = self.db.query(WorkoutFeedback).filter(
            WorkoutFeedback.planned_workout_id == workout.id
        ).first()
        if feedback is None:
            feedback = WorkoutFeedback(user_id=user_id, planned_workout_id=workout.id, created_at=self.clock())
            self.db.add(feedback)
        feedback.perceived_exertion = rpe
        feedback.notes = notes

        # Workout state is committed first; the level update runs in its own
        # retried transaction.
        self.db.commit()

        if workout.target_zone is None or workout.workout_level is None:
            logger.info(f"Workout {workout.id} has no zone/level, progression unchanged")
            return None

        return self.progression.apply_workout_result(
            user_id,
            workout.target_zone,
            workout.workout_level,
            completion_pct,
            rpe,
            ride_id=ride_id,
            planned_workout_id=workout.id,
            workout_date=workout.workout_date,
        )
