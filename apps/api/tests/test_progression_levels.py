"""
Tests for Progression Levels

Covers the adjustment table, lazy initialization, clamping, the audit
history written with every change, seeding, and the optimistic-retry
path under a concurrent writer.
"""

import pytest
from datetime import timedelta
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from core.database import Base
from core.exceptions import InvariantViolation, ProgressionConflictError
from models import ProgressionLevel, ProgressionLevelHistory
from services.progression_levels import (
    LevelChangeReason,
    ProgressionStore,
    calculate_level_adjustment,
    level_from_average_rpe,
    level_info,
    reason_for_adjustment,
)
from services.training_zones import TrainingZone, ZONE_NAMES, clamp_level

from conftest import add_feedback


@pytest.fixture
def store(db_session, clock):
    return ProgressionStore(db_session, clock=clock)


def history_rows(db, user_id, zone=None):
    query = db.query(ProgressionLevelHistory).filter(ProgressionLevelHistory.user_id == user_id)
    if zone:
        query = query.filter(ProgressionLevelHistory.zone == zone)
    return query.order_by(ProgressionLevelHistory.created_at).all()


class TestCalculateLevelAdjustment:
    """Tests for the completion/RPE adjustment table"""

    @pytest.mark.parametrize("completion,rpe,expected", [
        (95, 6, 0.3),
        (90, 7, 0.3),
        (95, 8, 0.2),
        (95, 9, 0.2),
        (100, 10, 0.1),
        (80, 8, 0.1),
        (70, 9, 0.0),
        (60, 9, -0.3),
        (55, 7, -0.1),
        (40, 9, -0.5),
        (0, 1, -0.5),
    ])
    def test_table(self, completion, rpe, expected):
        assert calculate_level_adjustment(completion, rpe, 5.0, 5.0) == pytest.approx(expected)

    def test_struggle_on_much_harder_workout_is_halved(self):
        assert calculate_level_adjustment(40, 9, 6.5, 4.0) == pytest.approx(-0.25)

    def test_success_on_much_easier_workout_is_halved(self):
        assert calculate_level_adjustment(95, 5, 2.0, 4.5) == pytest.approx(0.15)

    def test_exactly_two_levels_apart_is_not_dampened(self):
        assert calculate_level_adjustment(95, 6, 5.0, 3.0) == pytest.approx(0.3)
        assert calculate_level_adjustment(40, 9, 5.0, 3.0) == pytest.approx(-0.5)

    def test_reward_not_dampened_on_harder_workout(self):
        assert calculate_level_adjustment(95, 6, 8.0, 3.0) == pytest.approx(0.3)


class TestReasonForAdjustment:

    def test_reasons(self):
        assert reason_for_adjustment(0.3, 95) == LevelChangeReason.WORKOUT_SUCCESS
        assert reason_for_adjustment(-0.1, 60) == LevelChangeReason.WORKOUT_STRUGGLE
        assert reason_for_adjustment(-0.5, 40) == LevelChangeReason.WORKOUT_FAILURE
        assert reason_for_adjustment(0.0, 75) == LevelChangeReason.NO_CHANGE


class TestLevelHelpers:

    @pytest.mark.parametrize("avg_rpe,expected", [
        (4.0, 7.0),
        (5.0, 7.0),
        (5.5, 6.0),
        (7.0, 5.0),
        (7.5, 4.0),
        (9.0, 3.0),
        (9.5, 2.0),
    ])
    def test_level_from_average_rpe(self, avg_rpe, expected):
        assert level_from_average_rpe(avg_rpe) == expected

    def test_level_info(self):
        assert level_info(1.0).label == "Beginner"
        assert level_info(3.0).label == "Intermediate"
        assert level_info(5.5).label == "Trained"
        assert level_info(8.5).label == "Expert"
        assert level_info(10.0).label == "Elite"

    def test_clamp_level(self):
        assert clamp_level(0.2) == 1.0
        assert clamp_level(11.3) == 10.0
        assert clamp_level(4.3000000001) == 4.3


class TestProgressionStoreReads:
    """Tests for lazy creation and reads"""

    def test_get_creates_zone_at_default(self, store, db_session, user_id):
        assert store.get(user_id, "vo2max") == 3.0

        rows = db_session.query(ProgressionLevel).filter(ProgressionLevel.user_id == user_id).all()
        assert [row.zone for row in rows] == ["vo2max"]
        assert rows[0].workouts_completed == 0

    def test_get_does_not_write_history(self, store, db_session, user_id):
        store.get(user_id, TrainingZone.TEMPO)

        assert history_rows(db_session, user_id) == []

    def test_find_never_creates(self, store, db_session, user_id):
        assert store.find(user_id, "tempo") is None
        assert db_session.query(ProgressionLevel).count() == 0

    def test_unknown_zone_fails_fast(self, store, user_id):
        with pytest.raises(InvariantViolation):
            store.get(user_id, "zone_9")

    def test_get_all_returns_seven_zones_in_order(self, store, user_id):
        store.update(user_id, "threshold", 1.0)

        rows = store.get_all(user_id)

        assert [row.zone for row in rows] == ZONE_NAMES
        assert rows[4].level == 4.0
        assert all(row.level == 3.0 for i, row in enumerate(rows) if i != 4)

    def test_initialize_is_idempotent(self, store, user_id):
        assert store.initialize(user_id) == 7
        assert store.initialize(user_id) == 0


class TestProgressionStoreWrites:
    """Tests for audited updates"""

    def test_update_writes_history(self, store, db_session, user_id):
        change = store.update(user_id, "threshold", 0.5, notes="felt strong")

        assert change.old_level == 3.0
        assert change.new_level == 3.5
        assert change.level_change == 0.5
        assert change.reason == LevelChangeReason.MANUAL_ADJUSTMENT

        rows = history_rows(db_session, user_id)
        assert len(rows) == 1
        assert rows[0].old_level == 3.0
        assert rows[0].new_level == 3.5
        assert rows[0].notes == "felt strong"

    def test_update_clamps_and_records_applied_change(self, store, db_session, user_id):
        store.update(user_id, "threshold", 6.5)
        change = store.update(user_id, "threshold", 2.0)

        assert change.new_level == 10.0
        assert change.level_change == 0.5

        change = store.update(user_id, "threshold", -20.0)
        assert change.new_level == 1.0

    @pytest.mark.parametrize("delta", [float("nan"), float("inf"), float("-inf")])
    def test_update_rejects_non_finite_delta(self, store, db_session, user_id, delta):
        store.get(user_id, "tempo")

        with pytest.raises(InvariantViolation):
            store.update(user_id, "tempo", delta)

        assert store.get(user_id, "tempo") == 3.0
        assert history_rows(db_session, user_id) == []

    def test_history_rebuilds_current_level(self, store, db_session, user_id):
        for delta in (0.3, -0.5, 8.0, -0.1):
            store.update(user_id, "sweet_spot", delta)

        rows = history_rows(db_session, user_id, "sweet_spot")
        rebuilt = 3.0 + sum(row.level_change for row in rows)
        assert rebuilt == pytest.approx(store.get(user_id, "sweet_spot"))
        for earlier, later in zip(rows, rows[1:]):
            assert later.old_level == earlier.new_level

    def test_updates_accumulate(self, store, user_id):
        store.update(user_id, "endurance", 0.3)
        store.update(user_id, "endurance", 0.3)

        assert store.get(user_id, "endurance") == pytest.approx(3.6)

    def test_set_level_rejects_out_of_range(self, store, db_session, user_id):
        with pytest.raises(InvariantViolation):
            store.set_level(user_id, "tempo", 11.0)
        assert db_session.query(ProgressionLevel).count() == 0

    def test_set_level(self, store, user_id):
        change = store.set_level(user_id, "tempo", 6.0, reason=LevelChangeReason.SEEDED_FROM_RPE, workouts_completed=4)

        assert change.new_level == 6.0
        assert change.level_change == 3.0
        assert store.get_record(user_id, "tempo").workouts_completed == 4

    def test_increment_workout_count(self, store, today, user_id):
        assert store.increment_workout_count(user_id, "tempo", today) == 1
        assert store.increment_workout_count(user_id, "tempo", today) == 2
        assert store.get_record(user_id, "tempo").last_workout_date == today

    def test_get_history_newest_first_and_filtered(self, store, user_id):
        store.update(user_id, "tempo", 0.1)
        store.update(user_id, "threshold", 0.2)
        store.update(user_id, "tempo", 0.3)

        all_rows = store.get_history(user_id)
        tempo_rows = store.get_history(user_id, zone="tempo")

        assert [row.level_change for row in all_rows] == [0.3, 0.2, 0.1]
        assert [row.level_change for row in tempo_rows] == [0.3, 0.1]

    def test_get_history_window(self, db_session, clock, user_id):
        store = ProgressionStore(db_session, clock=clock)
        store.update(user_id, "tempo", 0.1)
        clock.now = clock.now + timedelta(days=100)

        assert store.get_history(user_id, days_back=90) == []
        assert len(store.get_history(user_id, days_back=120)) == 1


class TestApplyWorkoutResult:
    """Tests for folding a completed workout into the level"""

    def test_success(self, store, today, user_id):
        change = store.apply_workout_result(user_id, "threshold", 5.0, 95, 6, workout_date=today)

        assert change.new_level == pytest.approx(3.3)
        assert change.reason == LevelChangeReason.WORKOUT_SUCCESS
        record = store.get_record(user_id, "threshold")
        assert record.workouts_completed == 1
        assert record.last_workout_date == today

    def test_failure(self, store, user_id):
        change = store.apply_workout_result(user_id, "vo2max", 3.0, 40, 9)

        assert change.new_level == pytest.approx(2.5)
        assert change.reason == LevelChangeReason.WORKOUT_FAILURE

    def test_no_change_still_recorded(self, store, db_session, user_id):
        change = store.apply_workout_result(user_id, "tempo", 3.0, 75, 9)

        assert change.level_change == 0.0
        assert change.reason == LevelChangeReason.NO_CHANGE
        assert len(history_rows(db_session, user_id)) == 1

    def test_links_workout(self, store, db_session, make_workout, today, user_id):
        workout = make_workout(today)

        store.apply_workout_result(user_id, "threshold", 5.0, 95, 6, planned_workout_id=workout.id)

        assert history_rows(db_session, user_id)[0].planned_workout_id == workout.id

    def test_invalid_workout_level(self, store, user_id):
        with pytest.raises(InvariantViolation):
            store.apply_workout_result(user_id, "threshold", 0.0, 95, 6)

    def test_non_finite_completion_rejected(self, store, db_session, user_id):
        with pytest.raises(InvariantViolation):
            store.apply_workout_result(user_id, "threshold", 5.0, float("nan"), 6)

        assert history_rows(db_session, user_id) == []


class TestSeeding:
    """Tests for seeding levels from survey RPE"""

    def test_seed_from_rpe(self, store, db_session, make_workout, today, user_id):
        for rpe in (5, 6):
            workout = make_workout(today - timedelta(days=rpe), target_zone="tempo", completed=True)
            add_feedback(db_session, workout, rpe)
        workout = make_workout(today - timedelta(days=1), target_zone="vo2max", completed=True)
        add_feedback(db_session, workout, 10)
        # Not completed: ignored
        workout = make_workout(today, target_zone="endurance")
        add_feedback(db_session, workout, 3)

        seeded = store.seed_from_rpe(user_id)

        assert seeded == 2
        assert store.get(user_id, "tempo") == 6.0
        assert store.get(user_id, "vo2max") == 2.0
        assert store.get(user_id, "endurance") == 3.0
        assert store.get_record(user_id, "tempo").workouts_completed == 2
        assert db_session.query(ProgressionLevel).filter(ProgressionLevel.user_id == user_id).count() == 7

        reasons = {row.reason for row in history_rows(db_session, user_id)}
        assert reasons == {LevelChangeReason.SEEDED_FROM_RPE}

    def test_seed_without_feedback_initializes_defaults(self, store, user_id):
        assert store.seed_from_rpe(user_id) == 0
        assert [row.level for row in store.get_all(user_id)] == [3.0] * 7


class TestConcurrentUpdates:
    """Optimistic concurrency with two sessions on one database file"""

    @pytest.fixture
    def file_engine(self, tmp_path):
        engine = create_engine(f"sqlite:///{tmp_path / 'progression.db'}")
        Base.metadata.create_all(engine)
        yield engine
        engine.dispose()

    def _racing_store(self, monkeypatch, session, other_store, user_id, race_times):
        store = ProgressionStore(session)
        original = store._load_row
        calls = {"n": 0}

        def racing_load_row(uid, zone, for_update=False):
            row = original(uid, zone, for_update=for_update)
            if calls["n"] < race_times:
                calls["n"] += 1
                # Another writer commits between our read and our write
                other_store.update(user_id, zone, 1.0)
            return row

        monkeypatch.setattr(store, "_load_row", racing_load_row)
        return store

    def test_conflict_is_retried_without_lost_update(self, file_engine, monkeypatch, user_id):
        with Session(bind=file_engine, expire_on_commit=False) as ours, \
                Session(bind=file_engine, expire_on_commit=False) as theirs:
            other = ProgressionStore(theirs)
            other.get(user_id, "threshold")

            store = self._racing_store(monkeypatch, ours, other, user_id, race_times=1)
            change = store.update(user_id, "threshold", 0.5)

            assert change.old_level == 4.0
            assert change.new_level == 4.5

        with Session(bind=file_engine) as check:
            assert ProgressionStore(check).get(user_id, "threshold") == 4.5
            assert check.query(ProgressionLevelHistory).count() == 2

    def test_gives_up_after_max_attempts(self, file_engine, monkeypatch, user_id):
        with Session(bind=file_engine, expire_on_commit=False) as ours, \
                Session(bind=file_engine, expire_on_commit=False) as theirs:
            other = ProgressionStore(theirs)
            other.get(user_id, "threshold")

            store = self._racing_store(monkeypatch, ours, other, user_id, race_times=100)
            with pytest.raises(ProgressionConflictError) as exc_info:
                store.update(user_id, "threshold", 0.5)

            assert exc_info.value.attempts == store.max_attempts

        with Session(bind=file_engine) as check:
            # Only the other writer's updates landed
            assert ProgressionStore(check).get(user_id, "threshold") == 3.0 + store.max_attempts
