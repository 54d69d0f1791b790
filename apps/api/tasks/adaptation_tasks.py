"""
Adaptive Training Tasks

Celery Beat runs `run_adaptive_training_all` once a day. It finds users
with upcoming, not-yet-adapted workouts and enqueues one
`run_adaptive_training_for_user` task per user.

Design:
    - Per-user runs are sequential inside the task (workout order matters).
    - Users are independent, so their tasks run in parallel across workers.
    - One user's failure does NOT block others.
"""

from datetime import date, timedelta
from typing import Dict, List, Optional
from uuid import UUID

from celery import Task
from sqlalchemy.orm import Session

from tasks import celery_app
from core.clock import utc_today
from core.config import settings
from core.database import get_db_sync
from models import PlannedWorkout
from services.adaptive_training import AdaptiveTrainingService, REST_WORKOUT_TYPE
import logging

logger = logging.getLogger(__name__)


def users_with_upcoming_workouts(db: Session, today: date) -> List[UUID]:
    """Users with at least one adaptable workout in the lookahead window."""
    rows = (
        db.query(PlannedWorkout.user_id)
        .filter(
            PlannedWorkout.workout_date >= today,
            PlannedWorkout.workout_date <= today + timedelta(days=settings.ADAPTATION_LOOKAHEAD_DAYS),
            PlannedWorkout.workout_type != REST_WORKOUT_TYPE,
            PlannedWorkout.was_adapted.is_(False),
        )
        .distinct()
        .all()
    )
    return [user_id for (user_id,) in rows]


@celery_app.task(
    name="tasks.run_adaptive_training_for_user",
    bind=True,
    max_retries=1,
    soft_time_limit=120,
    time_limit=180,
)
def run_adaptive_training_for_user(self: Task, user_id: str, target_date: Optional[str] = None) -> Dict:
    """
    Run the adaptation batch for one user.

    Args:
        user_id: UUID string
        target_date: ISO date string (defaults to today UTC)
    """
    db: Session = get_db_sync()

    try:
        uid = UUID(user_id)
        today = date.fromisoformat(target_date) if target_date else utc_today()

        outcomes = AdaptiveTrainingService(db).run_batch(uid, today=today)
        applied = sum(1 for o in outcomes if o.applied)
        logger.info(
            f"Adaptive training for {user_id} on {today}: "
            f"{len(outcomes)} adaptations ({applied} auto-applied)"
        )
        return {
            "status": "ok",
            "user_id": user_id,
            "date": today.isoformat(),
            "adaptations": len(outcomes),
            "applied": applied,
            "pending": len(outcomes) - applied,
        }

    except Exception as e:
        db.rollback()
        logger.error(f"Adaptive training task failed for {user_id}: {e}", exc_info=True)
        return {"status": "error", "user_id": user_id, "message": str(e)}
    finally:
        db.close()


@celery_app.task(
    name="tasks.run_adaptive_training_all",
    bind=True,
    max_retries=0,      # Don't retry the fan-out; per-user tasks are isolated
    soft_time_limit=300,
    time_limit=360,
)
def run_adaptive_training_all(self: Task, target_date: Optional[str] = None) -> Dict:
    """Enqueue one adaptation run per user with upcoming workouts."""
    today = date.fromisoformat(target_date) if target_date else utc_today()

    db: Session = get_db_sync()
    try:
        user_ids = users_with_upcoming_workouts(db, today)
    finally:
        db.close()

    queued = 0
    errors = []
    for uid in user_ids:
        try:
            run_adaptive_training_for_user.delay(str(uid), today.isoformat())
            queued += 1
        except Exception as e:
            logger.error(f"Failed to enqueue adaptive training for {uid}: {e}")
            errors.append({"user_id": str(uid), "error": str(e)})

    logger.info(f"Adaptive training fan-out for {today}: {queued}/{len(user_ids)} users queued")
    return {
        "status": "ok" if not errors else "partial",
        "date": today.isoformat(),
        "users": len(user_ids),
        "queued": queued,
        "errors": errors,
    }
