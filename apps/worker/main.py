"""
Celery worker entry point.

Runs the adaptive training tasks defined in the API package. Start with:

    celery -A main worker -Q celery,adaptation --loglevel=info
    celery -A main beat --loglevel=info
"""
import sys
import os

# The API package provides the models, services and task definitions
sys.path.insert(0, os.environ.get("API_PATH", "/api"))

from celery.signals import worker_ready  # noqa: E402

from core.config import settings  # noqa: E402
from core.database import check_db_connection  # noqa: E402
from core.logging import setup_logging  # noqa: E402
from tasks import celery_app  # noqa: E402
import logging  # noqa: E402

setup_logging()
logger = logging.getLogger(__name__)

ADAPTATION_TASKS = (
    "tasks.run_adaptive_training_for_user",
    "tasks.run_adaptive_training_all",
)


@worker_ready.connect
def log_registered_tasks(sender=None, **kwargs):
    missing = [name for name in ADAPTATION_TASKS if name not in celery_app.tasks]
    if missing:
        logger.error(f"Adaptive training tasks not registered: {missing}")
    else:
        logger.info(f"Worker ready, adaptive training fan-out scheduled daily at {settings.ADAPTIVE_TRAINING_SCHEDULE_HOUR:02d}:00 UTC")


@celery_app.task(name="worker.health_check")
def health_check():
    """Worker liveness plus database reachability."""
    return {
        "status": "ok",
        "database": "ok" if check_db_connection() else "unavailable",
        "tasks": [name for name in ADAPTATION_TASKS if name in celery_app.tasks],
    }
