"""
Engine, session factory and session dependencies.

Postgres in deployment with a pre-pinged connection pool. SQLite URLs are
accepted for local tooling and share a single connection.

Services commit their own units of work (the progression store retries on
write conflicts, so it has to own the transaction). `get_db` commits
whatever is left at the end of a request and rolls back on error.
"""
from sqlalchemy import create_engine, event, text
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import QueuePool, StaticPool
from core.config import settings
import logging
import time

logger = logging.getLogger(__name__)

DATABASE_URL = settings.database_url

CONNECT_ATTEMPTS = 3
CONNECT_BACKOFF_SECONDS = 0.1


def _engine_kwargs(url: str) -> dict:
    if url.startswith("sqlite"):
        return {
            "connect_args": {"check_same_thread": False},
            "poolclass": StaticPool,
        }
    return {
        "poolclass": QueuePool,
        "pool_size": settings.DB_POOL_SIZE,
        "max_overflow": settings.DB_MAX_OVERFLOW,
        "pool_timeout": settings.DB_POOL_TIMEOUT,
        "pool_recycle": settings.DB_POOL_RECYCLE,
        "pool_pre_ping": True,
    }


engine = create_engine(
    DATABASE_URL,
    echo=settings.DEBUG,
    **_engine_kwargs(DATABASE_URL),
)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    expire_on_commit=False,  # Routers serialize rows after the service committed
)

Base = declarative_base()


@event.listens_for(engine, "connect")
def receive_connect(dbapi_conn, connection_record):
    logger.debug("New database connection established")


def _open_session() -> Session:
    """A session whose connection answered SELECT 1, with exponential backoff."""
    for attempt in range(1, CONNECT_ATTEMPTS + 1):
        db = SessionLocal()
        try:
            db.execute(text("SELECT 1"))
            return db
        except Exception as e:
            db.close()
            if attempt == CONNECT_ATTEMPTS:
                logger.error(f"Could not reach the database after {CONNECT_ATTEMPTS} attempts: {e}")
                raise
            logger.warning(f"Database connection attempt {attempt} failed, retrying")
            time.sleep(CONNECT_BACKOFF_SECONDS * (2 ** (attempt - 1)))


def get_db() -> Session:
    """FastAPI dependency: one session per request."""
    db = _open_session()
    try:
        yield db
        db.commit()
    except Exception as e:
        db.rollback()
        # Expected errors (HTTP / domain) are logged by their handlers
        from fastapi import HTTPException
        from core.exceptions import AdaptiveTrainingError
        if not isinstance(e, (HTTPException, AdaptiveTrainingError)):
            logger.error(f"Database transaction error: {e}")
        raise
    finally:
        db.close()


def get_db_sync() -> Session:
    """
    Plain session for Celery tasks and scripts.

    No automatic commit or rollback; the caller closes it.
    """
    return SessionLocal()


def check_db_connection() -> bool:
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Database connection check failed: {e}")
        return False
