"""
Time source.

Services never call datetime.now() directly; they take `today` / `now`
arguments that default to these helpers, so tests can pin the date.
"""
from datetime import date, datetime, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_today() -> date:
    return utc_now().date()


def get_clock():
    """FastAPI dependency for the request's time source (overridden in tests)."""
    return utc_now
