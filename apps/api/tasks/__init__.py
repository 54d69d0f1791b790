"""
Celery app for adaptive training background work.

The API imports this package to enqueue; the worker (apps/worker) imports
it to execute. Adaptation runs are routed to the "adaptation" queue.
"""
from celery import Celery
from core.config import settings
from celerybeat_schedule import beat_schedule

ADAPTATION_QUEUE = "adaptation"

celery_app = Celery(
    "adaptive_training",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=10 * 60,
    task_soft_time_limit=8 * 60,
    task_acks_late=True,  # A per-user run lost with its worker is redelivered
    worker_prefetch_multiplier=1,
    result_expires=24 * 60 * 60,
    task_routes={
        "tasks.run_adaptive_training_*": {"queue": ADAPTATION_QUEUE},
    },
    beat_schedule=beat_schedule,
)

# Register task modules
from . import adaptation_tasks  # noqa: E402

__all__ = ["celery_app", "ADAPTATION_QUEUE"]
