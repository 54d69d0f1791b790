"""
Pytest configuration and fixtures

Every test gets its own in-memory SQLite database built from the models,
so nothing leaks between tests. Time is pinned with a ticking clock.
"""
import pytest
import sys
import os
from uuid import uuid4
from datetime import datetime, date, timedelta, timezone

# Must be set before core.config is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-adaptive-training-suite-0123456789")
os.environ.setdefault("LOG_FORMAT", "text")

# Add the parent directory to the path so we can import from services
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from core.database import Base  # noqa: E402
import models  # noqa: E402,F401
from models import PlannedWorkout, Ride, WorkoutFeedback  # noqa: E402


class TickingClock:
    """Injectable clock: returns `now` and moves forward one second per call."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + timedelta(seconds=1)
        return current

    def today(self) -> date:
        return self.now.date()


TODAY = date(2026, 3, 10)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(engine):
    session = Session(bind=engine, expire_on_commit=False)
    yield session
    session.close()


@pytest.fixture
def clock():
    return TickingClock(datetime(TODAY.year, TODAY.month, TODAY.day, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def today():
    return TODAY


@pytest.fixture
def user_id():
    return uuid4()


# ============ Data builders ============

def add_workout(db, user_id, workout_date, **kwargs) -> PlannedWorkout:
    fields = dict(
        user_id=user_id,
        workout_date=workout_date,
        workout_type="intervals",
        target_zone="threshold",
        workout_level=5.0,
    )
    fields.update(kwargs)
    workout = PlannedWorkout(**fields)
    db.add(workout)
    db.commit()
    return workout


def add_feedback(db, workout: PlannedWorkout, rpe: int) -> WorkoutFeedback:
    feedback = WorkoutFeedback(
        user_id=workout.user_id,
        planned_workout_id=workout.id,
        perceived_exertion=rpe,
    )
    db.add(feedback)
    db.commit()
    return feedback


def add_ride(db, user_id, ride_date, tss=None, **kwargs) -> Ride:
    fields = dict(
        user_id=user_id,
        recorded_at=datetime(ride_date.year, ride_date.month, ride_date.day, 8, 0),
        duration_seconds=3600,
        tss=tss,
    )
    fields.update(kwargs)
    ride = Ride(**fields)
    db.add(ride)
    db.commit()
    return ride


@pytest.fixture
def make_workout(db_session, user_id):
    def _make(workout_date, **kwargs):
        return add_workout(db_session, user_id, workout_date, **kwargs)
    return _make


@pytest.fixture
def make_ride(db_session, user_id):
    def _make(ride_date, tss=None, **kwargs):
        return add_ride(db_session, user_id, ride_date, tss=tss, **kwargs)
    return _make
