"""
Adaptive Training API.

Training load, per-zone progression levels, ride zone classification and
the adaptation approval flow. Background runs live in tasks/.
"""
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from routers import training_load, progression, zones, adaptive_training
from core.config import settings
from core.database import check_db_connection
from core.logging import setup_logging
from core.exceptions import AdaptiveTrainingError, http_error_for
import logging
import time
import uuid

setup_logging()
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Adaptive Training API",
    description="Training load, per-zone progression levels and workout adaptation",
    version="1.0.0",
    debug=settings.DEBUG,
)


def _allowed_origins():
    if settings.DEBUG:
        return ["*"]
    if settings.CORS_ORIGINS:
        return [origin.strip() for origin in settings.CORS_ORIGINS.split(",") if origin.strip()]
    return ["http://localhost:3000", "http://127.0.0.1:3000"]


app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins(),
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Tag each request with an id and log status and duration."""
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    started = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = round((time.perf_counter() - started) * 1000, 2)

    logger.info(
        f"{request.method} {request.url.path} -> {response.status_code} ({elapsed_ms}ms)",
        extra={
            "extra_fields": {
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": elapsed_ms,
            }
        },
    )
    response.headers["X-Request-ID"] = request_id
    response.headers["X-Process-Time-Ms"] = str(elapsed_ms)
    return response


@app.exception_handler(AdaptiveTrainingError)
async def adaptive_training_exception_handler(request: Request, exc: AdaptiveTrainingError):
    """Service errors become 404 / 409 / 422 responses."""
    error = http_error_for(exc)
    logger.warning(
        f"{type(exc).__name__} on {request.method} {request.url.path}: {exc}",
        extra={"extra_fields": {"status_code": error.status_code, "error_code": error.error_code}},
    )
    return JSONResponse(
        status_code=error.status_code,
        content={"detail": error.detail, "error_code": error.error_code},
        headers=error.headers,
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(
        f"Unhandled {type(exc).__name__} on {request.method} {request.url.path}: {exc}",
        exc_info=True,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


@app.get("/health")
async def health():
    """200 when the database answers, 503 otherwise."""
    if not check_db_connection():
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "unhealthy", "database": "unavailable"},
        )
    return {"status": "healthy", "database": "ok", "timestamp": time.time()}


app.include_router(training_load.router)
app.include_router(progression.router)
app.include_router(zones.router)
app.include_router(adaptive_training.router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.API_HOST, port=settings.API_PORT)
