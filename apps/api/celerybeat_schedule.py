"""
Periodic work for the adaptation worker.

The nightly run fans out one task per athlete with workouts in the
upcoming window. It fires before athletes look at the day's plan.
"""

from celery.schedules import crontab

from core.config import settings

NIGHTLY_ADAPTATION = 'run-adaptive-training'

beat_schedule = {
    NIGHTLY_ADAPTATION: {
        'task': 'tasks.run_adaptive_training_all',
        'schedule': crontab(hour=settings.ADAPTIVE_TRAINING_SCHEDULE_HOUR, minute=0),
        'options': {'queue': 'adaptation', 'expires': 6 * 60 * 60},
    },
}
