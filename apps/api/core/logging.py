"""
Structured logging configuration.

JSON lines in production so adaptation decisions, level changes and batch
runs can be searched by field; a compact text format for local work.

Extra structured fields ride along on the record:

    logger.info("...", extra={"extra_fields": {"user_id": str(user_id)}})
"""
import logging
import sys
import json
from datetime import datetime, timezone
from typing import Any, Dict
from core.config import settings

SERVICE_NAME = "adaptive-training-api"

TEXT_FORMAT = "%(asctime)s %(levelname)-7s [%(name)s] %(message)s"

# Third-party loggers and the level they are capped at
QUIET_LOGGERS = {
    "sqlalchemy.engine": logging.WARNING,
    "celery": logging.INFO,
    "uvicorn.access": logging.WARNING,
}


class JSONFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "service": SERVICE_NAME,
            "env": settings.ENVIRONMENT,
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "where": f"{record.module}.{record.funcName}:{record.lineno}",
        }

        extra_fields = getattr(record, "extra_fields", None)
        if extra_fields:
            payload.update(extra_fields)

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str)


def _use_json() -> bool:
    return settings.LOG_FORMAT == "json" or settings.ENVIRONMENT == "production"


def setup_logging() -> logging.Logger:
    """
    Configure the root logger once for the API process or a worker.

    Calling it again replaces the handler rather than stacking a second one.
    """
    level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter() if _use_json() else logging.Formatter(TEXT_FORMAT))

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    root.addHandler(handler)

    for name, cap in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(cap)

    return root
