"""
Progression Levels

Tracks a continuous 1.0-10.0 fitness level per (user, zone).

- Rows are created lazily at 3.0 the first time a zone is read.
- Every level mutation writes a progression_level_history row in the
  same transaction, so the current level can always be explained.
- Read-modify-write runs under SELECT ... FOR UPDATE plus a version
  counter; a conflicting writer causes a rollback and a retry rather than
  a lost update.

Store methods own their transaction (each successful call commits), so
callers should commit their own unrelated changes before calling in;
a conflict retry rolls the session back.
"""

from datetime import date, datetime, timedelta
from typing import Callable, Dict, List, Optional, Union
from uuid import UUID
from dataclasses import dataclass
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.exc import IntegrityError
from sqlalchemy import func
import logging

from core.clock import utc_now
from core.config import settings
from core.exceptions import ProgressionConflictError
from models import ProgressionLevel, ProgressionLevelHistory, PlannedWorkout, WorkoutFeedback
from services.training_zones import (
    TrainingZone,
    ZONE_ORDER,
    DEFAULT_LEVEL,
    parse_zone,
    clamp_level,
    check_level,
    check_finite,
)

logger = logging.getLogger(__name__)


class LevelChangeReason:
    WORKOUT_SUCCESS = "workout_success"
    WORKOUT_STRUGGLE = "workout_struggle"
    WORKOUT_FAILURE = "workout_failure"
    NO_CHANGE = "no_change"
    MANUAL_ADJUSTMENT = "manual_adjustment"
    SEEDED_FROM_RPE = "seeded_from_rpe"
    SEEDED_FROM_RIDES = "seeded_from_rides"


@dataclass(frozen=True)
class LevelChange:
    """Result of one audited level mutation."""
    zone: TrainingZone
    old_level: float
    new_level: float
    level_change: float
    reason: str


@dataclass(frozen=True)
class LevelInfo:
    label: str
    description: str


# =========================================================================
# Pure helpers
# =========================================================================

def calculate_level_adjustment(
    completion_pct: float,
    rpe: int,
    workout_level: float,
    current_level: float,
) -> float:
    """
    Level delta for a completed workout.

    | completion | rpe     | delta |
    |------------|---------|-------|
    | >= 90      | <= 7    | +0.3  |
    | >= 90      | <= 9    | +0.2  |
    | >= 90      | 10      | +0.1  |
    | 70-89      | <= 8    | +0.1  |
    | 70-89      | > 8     |  0.0  |
    | 50-69      | >= 9    | -0.3  |
    | 50-69      | < 9     | -0.1  |
    | < 50       | any     | -0.5  |

    Dampening: a penalty is halved when the workout sat more than 2 levels
    above the athlete, and a reward is halved when it sat more than 2 below.
    """
    level_diff = workout_level - current_level

    if completion_pct >= 90:
        if rpe <= 7:
            adjustment = 0.3
        elif rpe <= 9:
            adjustment = 0.2
        else:
            adjustment = 0.1
    elif completion_pct >= 70:
        adjustment = 0.1 if rpe <= 8 else 0.0
    elif completion_pct >= 50:
        adjustment = -0.3 if rpe >= 9 else -0.1
    else:
        adjustment = -0.5

    if level_diff > 2.0 and adjustment < 0:
        adjustment /= 2.0
    if level_diff < -2.0 and adjustment > 0:
        adjustment /= 2.0

    return adjustment


def reason_for_adjustment(adjustment: float, completion_pct: float) -> str:
    if adjustment > 0:
        return LevelChangeReason.WORKOUT_SUCCESS
    if adjustment < 0:
        if completion_pct < 50:
            return LevelChangeReason.WORKOUT_FAILURE
        return LevelChangeReason.WORKOUT_STRUGGLE
    return LevelChangeReason.NO_CHANGE


def level_from_average_rpe(avg_rpe: float) -> float:
    """Initial level for a zone from how hard its workouts felt (lower RPE = fitter)."""
    if avg_rpe <= 5:
        return 7.0
    if avg_rpe <= 6:
        return 6.0
    if avg_rpe <= 7:
        return 5.0
    if avg_rpe <= 8:
        return 4.0
    if avg_rpe <= 9:
        return 3.0
    return 2.0


def level_info(level: float) -> LevelInfo:
    if level < 2:
        return LevelInfo("Beginner", "Just starting zone training")
    if level < 3:
        return LevelInfo("Novice", "Building foundational fitness")
    if level < 5:
        return LevelInfo("Intermediate", "Building zone-specific fitness")
    if level < 6:
        return LevelInfo("Trained", "Solid fitness in this zone")
    if level < 8:
        return LevelInfo("Advanced", "Strong fitness in this zone")
    if level < 9:
        return LevelInfo("Expert", "Very high fitness level")
    return LevelInfo("Elite", "Peak zone performance")


# =========================================================================
# Store
# =========================================================================

class ProgressionStore:
    """Owns progression_level rows and their history."""

    def __init__(self, db: Session, clock: Callable[[], datetime] = utc_now):
        self.db = db
        self.clock = clock
        self.max_attempts = settings.PROGRESSION_UPDATE_MAX_ATTEMPTS

    # ----- internals -----

    def _load_row(self, user_id: UUID, zone: TrainingZone, for_update: bool = False) -> ProgressionLevel:
        query = self.db.query(ProgressionLevel).filter(
            ProgressionLevel.user_id == user_id,
            ProgressionLevel.zone == zone.value,
        )
        if for_update:
            query = query.with_for_update()
        row = query.first()

        if row is None:
            row = ProgressionLevel(
                user_id=user_id,
                zone=zone.value,
                level=DEFAULT_LEVEL,
                workouts_completed=0,
            )
            self.db.add(row)
            self.db.flush()  # IntegrityError here means another writer created it first
            logger.info(f"Initialized {zone.value} progression for user {user_id} at {DEFAULT_LEVEL}")
        else:
            check_level(row.level, f"Stored {zone.value} level")
        return row

    def _run_locked(self, user_id: UUID, zone: TrainingZone, mutate: Callable[[ProgressionLevel], object], what: str):
        """Run `mutate` on the locked row and commit, retrying on write conflicts."""
        for attempt in range(1, self.max_attempts + 1):
            try:
                row = self._load_row(user_id, zone, for_update=True)
                result = mutate(row)
                self.db.commit()
                return result
            except (StaleDataError, IntegrityError) as e:
                self.db.rollback()
                logger.warning(
                    f"Progression {what} conflict for user {user_id} zone {zone.value} "
                    f"(attempt {attempt}/{self.max_attempts}): {e}"
                )
        logger.error(f"Giving up on progression {what} for user {user_id} zone {zone.value}")
        raise ProgressionConflictError(user_id, zone.value, self.max_attempts)

    def _record_change(
        self,
        row: ProgressionLevel,
        new_level: float,
        reason: str,
        ride_id: Optional[UUID] = None,
        planned_workout_id: Optional[UUID] = None,
        notes: Optional[str] = None,
    ) -> LevelChange:
        now = self.clock()
        old_level = row.level
        applied = round(new_level - old_level, 2)

        row.level = new_level
        row.last_level_change = applied
        row.last_level_change_at = now
        row.updated_at = now

        self.db.add(ProgressionLevelHistory(
            user_id=row.user_id,
            zone=row.zone,
            old_level=old_level,
            new_level=new_level,
            level_change=applied,
            reason=reason,
            ride_id=ride_id,
            planned_workout_id=planned_workout_id,
            notes=notes,
            created_at=now,
        ))
        self.db.flush()

        logger.info(
            f"Progression {row.zone} for user {row.user_id}: {old_level:.2f} -> {new_level:.2f} ({reason})"
        )
        return LevelChange(
            zone=TrainingZone(row.zone),
            old_level=old_level,
            new_level=new_level,
            level_change=applied,
            reason=reason,
        )

    # ----- reads -----

    def get(self, user_id: UUID, zone: Union[str, TrainingZone]) -> float:
        """Current level for a zone; creates the row at 3.0 if it doesn't exist yet."""
        return self.get_record(user_id, zone).level

    def get_record(self, user_id: UUID, zone: Union[str, TrainingZone]) -> ProgressionLevel:
        zone = parse_zone(zone)
        row = self.find(user_id, zone)
        if row is not None:
            return row
        return self._run_locked(user_id, zone, lambda r: r, "create")

    def find(self, user_id: UUID, zone: Union[str, TrainingZone]) -> Optional[ProgressionLevel]:
        """Existing row for a zone, or None. Never creates."""
        zone = parse_zone(zone)
        row = self.db.query(ProgressionLevel).filter(
            ProgressionLevel.user_id == user_id,
            ProgressionLevel.zone == zone.value,
        ).first()
        if row is not None:
            check_level(row.level, f"Stored {zone.value} level")
        return row

    def get_all(self, user_id: UUID) -> List[ProgressionLevel]:
        """All seven zones, easiest first. Missing zones are initialized."""
        self.initialize(user_id)
        rows = self.db.query(ProgressionLevel).filter(ProgressionLevel.user_id == user_id).all()
        by_zone = {row.zone: row for row in rows}
        return [by_zone[zone.value] for zone in ZONE_ORDER]

    def get_history(
        self,
        user_id: UUID,
        zone: Optional[Union[str, TrainingZone]] = None,
        days_back: int = 90,
    ) -> List[ProgressionLevelHistory]:
        """Level changes in the last `days_back` days, newest first."""
        since = self.clock() - timedelta(days=days_back)
        query = self.db.query(ProgressionLevelHistory).filter(
            ProgressionLevelHistory.user_id == user_id,
            ProgressionLevelHistory.created_at >= since,
        )
        if zone is not None:
            query = query.filter(ProgressionLevelHistory.zone == parse_zone(zone).value)
        return query.order_by(ProgressionLevelHistory.created_at.desc()).all()

    # ----- writes -----

    def initialize(self, user_id: UUID) -> int:
        """Create every missing zone at 3.0. Returns how many rows were created."""
        for attempt in range(1, self.max_attempts + 1):
            try:
                existing = {
                    zone for (zone,) in self.db.query(ProgressionLevel.zone).filter(
                        ProgressionLevel.user_id == user_id
                    )
                }
                created = 0
                for zone in ZONE_ORDER:
                    if zone.value not in existing:
                        self.db.add(ProgressionLevel(
                            user_id=user_id,
                            zone=zone.value,
                            level=DEFAULT_LEVEL,
                            workouts_completed=0,
                        ))
                        created += 1
                self.db.commit()
                if created:
                    logger.info(f"Initialized {created} progression zones for user {user_id}")
                return created
            except IntegrityError as e:
                self.db.rollback()
                logger.warning(
                    f"Progression initialize conflict for user {user_id} "
                    f"(attempt {attempt}/{self.max_attempts}): {e}"
                )
        raise ProgressionConflictError(user_id, "*", self.max_attempts)

    def update(
        self,
        user_id: UUID,
        zone: Union[str, TrainingZone],
        delta: float,
        reason: str = LevelChangeReason.MANUAL_ADJUSTMENT,
        ride_id: Optional[UUID] = None,
        planned_workout_id: Optional[UUID] = None,
        notes: Optional[str] = None,
    ) -> LevelChange:
        """Apply `delta` (clamped into [1, 10]) and write the history row atomically."""
        zone = parse_zone(zone)
        check_finite(delta, "Level delta")

        def mutate(row: ProgressionLevel) -> LevelChange:
            return self._record_change(
                row,
                clamp_level(row.level + delta),
                reason,
                ride_id=ride_id,
                planned_workout_id=planned_workout_id,
                notes=notes,
            )

        return self._run_locked(user_id, zone, mutate, "update")

    def set_level(
        self,
        user_id: UUID,
        zone: Union[str, TrainingZone],
        level: float,
        reason: str = LevelChangeReason.MANUAL_ADJUSTMENT,
        workouts_completed: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> LevelChange:
        """Absolute assignment (seeding). Out-of-range levels are rejected, not clamped."""
        zone = parse_zone(zone)
        check_level(level, f"New {zone.value} level")

        def mutate(row: ProgressionLevel) -> LevelChange:
            if workouts_completed is not None:
                row.workouts_completed = workouts_completed
            return self._record_change(row, round(level, 2), reason, notes=notes)

        return self._run_locked(user_id, zone, mutate, "set")

    def increment_workout_count(
        self,
        user_id: UUID,
        zone: Union[str, TrainingZone],
        workout_date: Optional[date] = None,
    ) -> int:
        zone = parse_zone(zone)
        if workout_date is None:
            workout_date = self.clock().date()

        def mutate(row: ProgressionLevel) -> int:
            row.workouts_completed = (row.workouts_completed or 0) + 1
            row.last_workout_date = workout_date
            row.updated_at = self.clock()
            self.db.flush()
            return row.workouts_completed

        return self._run_locked(user_id, zone, mutate, "workout count")

    def apply_workout_result(
        self,
        user_id: UUID,
        zone: Union[str, TrainingZone],
        workout_level: float,
        completion_pct: float,
        rpe: int,
        ride_id: Optional[UUID] = None,
        planned_workout_id: Optional[UUID] = None,
        workout_date: Optional[date] = None,
    ) -> LevelChange:
        """
        Fold a completed workout into the zone's level.

        The adjustment is computed against the locked current level, so two
        concurrent completions each see the other's result.
        """
        zone = parse_zone(zone)
        check_level(workout_level, "Workout level")
        check_finite(completion_pct, "Completion percentage")

        def mutate(row: ProgressionLevel) -> LevelChange:
            adjustment = calculate_level_adjustment(completion_pct, rpe, workout_level, row.level)
            reason = reason_for_adjustment(adjustment, completion_pct)
            return self._record_change(
                row,
                clamp_level(row.level + adjustment),
                reason,
                ride_id=ride_id,
                planned_workout_id=planned_workout_id,
            )

        change = self._run_locked(user_id, zone, mutate, "workout result")
        self.increment_workout_count(user_id, zone, workout_date)
        return change

    def seed_from_rpe(self, user_id: UUID) -> int:
        """
        Seed levels from post-workout surveys: average RPE of completed
        workouts per target zone, mapped through level_from_average_rpe.
        Remaining zones are initialized at 3.0. Returns zones seeded.
        """
        rows = (
            self.db.query(
                PlannedWorkout.target_zone,
                func.avg(WorkoutFeedback.perceived_exertion),
                func.count(WorkoutFeedback.id),
            )
            .join(WorkoutFeedback, WorkoutFeedback.planned_workout_id == PlannedWorkout.id)
            .filter(
                PlannedWorkout.user_id == user_id,
                PlannedWorkout.completed.is_(True),
                PlannedWorkout.target_zone.isnot(None),
                WorkoutFeedback.perceived_exertion.isnot(None),
            )
            .group_by(PlannedWorkout.target_zone)
            .all()
        )

        seeded = self.seed_levels(
            user_id,
            {zone: (float(avg_rpe), int(count)) for zone, avg_rpe, count in rows},
            LevelChangeReason.SEEDED_FROM_RPE,
        )
        self.initialize(user_id)
        return seeded

    def seed_levels(self, user_id: UUID, rpe_by_zone: Dict[str, tuple], reason: str) -> int:
        """Set each zone from its (average RPE, workout count). Returns zones seeded."""
        seeded = 0
        for zone_name, (avg_rpe, count) in rpe_by_zone.items():
            if count <= 0:
                continue
            level = level_from_average_rpe(avg_rpe)
            self.set_level(
                user_id,
                zone_name,
                level,
                reason=reason,
                workouts_completed=count,
                notes=f"Average RPE {avg_rpe:.1f} over {count} workouts",
            )
            seeded += 1
        logger.info(f"Seeded {seeded} progression zones for user {user_id} ({reason})")
        return seeded
