"""
Tests for the nightly adaptive training Celery tasks.

Tasks are called directly (synchronously); the database session and the
service are mocked except where the user query itself is under test.
"""

import pytest
from datetime import timedelta
from unittest.mock import MagicMock, patch
from uuid import uuid4

from services.adaptation_engine import AdaptationDecision, AdaptationType
from services.adaptive_training import AdaptationOutcome
from tasks import adaptation_tasks
from tasks.adaptation_tasks import (
    run_adaptive_training_all,
    run_adaptive_training_for_user,
    users_with_upcoming_workouts,
)


def outcome(applied: bool) -> AdaptationOutcome:
    decision = AdaptationDecision(
        should_adapt=True,
        adaptation_type=AdaptationType.DECREASE,
        new_level=4.0,
        delta=-1.0,
        reason="TSB low (-35.0). Reducing intensity.",
        confidence=0.8,
    )
    return AdaptationOutcome(
        workout_id=uuid4(),
        workout_date=None,
        current_level=5.0,
        decision=decision,
        adaptation_id=uuid4(),
        applied=applied,
    )


class TestUsersWithUpcomingWorkouts:

    def test_filters(self, db_session, today):
        from conftest import add_workout

        active, rest_only, adapted, far_out, past = (uuid4() for _ in range(5))
        add_workout(db_session, active, today + timedelta(days=3))
        add_workout(db_session, active, today + timedelta(days=4))
        add_workout(db_session, rest_only, today + timedelta(days=3), workout_type="rest")
        add_workout(db_session, adapted, today + timedelta(days=3), was_adapted=True)
        add_workout(db_session, far_out, today + timedelta(days=30))
        add_workout(db_session, past, today - timedelta(days=1))

        assert users_with_upcoming_workouts(db_session, today) == [active]


class TestRunForUser:

    def test_success(self):
        user_id = uuid4()
        mock_db = MagicMock()
        with patch.object(adaptation_tasks, "get_db_sync", return_value=mock_db), \
                patch.object(adaptation_tasks, "AdaptiveTrainingService") as service_cls:
            service_cls.return_value.run_batch.return_value = [outcome(True), outcome(False), outcome(False)]

            result = run_adaptive_training_for_user(str(user_id), "2026-03-10")

        assert result == {
            "status": "ok",
            "user_id": str(user_id),
            "date": "2026-03-10",
            "adaptations": 3,
            "applied": 1,
            "pending": 2,
        }
        service_cls.assert_called_once_with(mock_db)
        _, kwargs = service_cls.return_value.run_batch.call_args
        assert kwargs["today"].isoformat() == "2026-03-10"
        mock_db.close.assert_called_once()

    def test_failure_is_contained(self):
        mock_db = MagicMock()
        with patch.object(adaptation_tasks, "get_db_sync", return_value=mock_db), \
                patch.object(adaptation_tasks, "AdaptiveTrainingService") as service_cls:
            service_cls.return_value.run_batch.side_effect = RuntimeError("db went away")

            result = run_adaptive_training_for_user(str(uuid4()), "2026-03-10")

        assert result["status"] == "error"
        assert "db went away" in result["message"]
        mock_db.rollback.assert_called_once()
        mock_db.close.assert_called_once()

    def test_bad_user_id(self):
        mock_db = MagicMock()
        with patch.object(adaptation_tasks, "get_db_sync", return_value=mock_db):
            result = run_adaptive_training_for_user("not-a-uuid")

        assert result["status"] == "error"
        mock_db.close.assert_called_once()


class TestRunAll:

    def test_fans_out_per_user(self):
        users = [uuid4(), uuid4()]
        mock_db = MagicMock()
        with patch.object(adaptation_tasks, "get_db_sync", return_value=mock_db), \
                patch.object(adaptation_tasks, "users_with_upcoming_workouts", return_value=users), \
                patch.object(run_adaptive_training_for_user, "delay") as delay:

            result = run_adaptive_training_all("2026-03-10")

        assert result["status"] == "ok"
        assert result["users"] == 2
        assert result["queued"] == 2
        delay.assert_any_call(str(users[0]), "2026-03-10")
        delay.assert_any_call(str(users[1]), "2026-03-10")
        mock_db.close.assert_called_once()

    def test_enqueue_failure_does_not_stop_others(self):
        users = [uuid4(), uuid4(), uuid4()]
        with patch.object(adaptation_tasks, "get_db_sync", return_value=MagicMock()), \
                patch.object(adaptation_tasks, "users_with_upcoming_workouts", return_value=users), \
                patch.object(run_adaptive_training_for_user, "delay") as delay:
            delay.side_effect = [None, ConnectionError("broker down"), None]

            result = run_adaptive_training_all("2026-03-10")

        assert result["status"] == "partial"
        assert result["queued"] == 2
        assert result["errors"] == [{"user_id": str(users[1]), "error": "broker down"}]
        assert delay.call_count == 3

    def test_no_users(self):
        with patch.object(adaptation_tasks, "get_db_sync", return_value=MagicMock()), \
                patch.object(adaptation_tasks, "users_with_upcoming_workouts", return_value=[]):
            result = run_adaptive_training_all("2026-03-10")

        assert result == {"status": "ok", "date": "2026-03-10", "users": 0, "queued": 0, "errors": []}


class TestBeatSchedule:

    def test_nightly_run_registered(self):
        from tasks import celery_app

        entry = celery_app.conf.beat_schedule["run-adaptive-training"]
        assert entry["task"] == "tasks.run_adaptive_training_all"
        assert "tasks.run_adaptive_training_all" in celery_app.tasks
        assert "tasks.run_adaptive_training_for_user" in celery_app.tasks
