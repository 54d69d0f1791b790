"""
Tests for Training Load Calculator

Tests CTL/ATL/TSB calculation from TSS series and the ride-history
adapter that builds the series.
"""

import math
import pytest
from datetime import date, timedelta

from services.training_load import (
    ATL_DECAY_DAYS,
    CTL_DECAY_DAYS,
    INSUFFICIENT_DATA,
    InsufficientLoadData,
    TrainingLoadCalculator,
    TrainingLoadSnapshot,
    calculate_load_snapshot,
)


AS_OF = date(2026, 3, 10)


class TestCalculateLoadSnapshot:
    """Tests for the pure CTL/ATL/TSB calculation"""

    def test_no_samples_is_insufficient_data(self):
        result = calculate_load_snapshot([], AS_OF)

        assert isinstance(result, InsufficientLoadData)
        assert result.reason == INSUFFICIENT_DATA
        assert result.as_of == AS_OF

    def test_single_sample_today(self):
        result = calculate_load_snapshot([(AS_OF, 80.0)], AS_OF)

        assert isinstance(result, TrainingLoadSnapshot)
        assert result.ctl == pytest.approx(80.0)
        assert result.atl == pytest.approx(80.0)
        assert result.tsb == pytest.approx(0.0)
        assert result.sample_count == 1

    def test_weighted_mean(self):
        """A week-old zero and a fresh 100 weigh differently for ATL and CTL"""
        samples = [(AS_OF - timedelta(days=7), 0.0), (AS_OF, 100.0)]

        result = calculate_load_snapshot(samples, AS_OF)

        w_atl = math.exp(-7 / ATL_DECAY_DAYS)
        w_ctl = math.exp(-7 / CTL_DECAY_DAYS)
        assert result.atl == pytest.approx(100.0 / (1 + w_atl))
        assert result.ctl == pytest.approx(100.0 / (1 + w_ctl))

    def test_recent_spike_makes_tsb_negative(self):
        samples = [(AS_OF - timedelta(days=d), 50.0) for d in range(10, 60)]
        samples += [(AS_OF - timedelta(days=d), 150.0) for d in range(0, 4)]

        result = calculate_load_snapshot(samples, AS_OF)

        assert result.atl > result.ctl
        assert result.tsb < 0

    def test_tsb_is_ctl_minus_atl(self):
        samples = [
            (AS_OF - timedelta(days=d), float((d * 37) % 140))
            for d in range(0, 90, 2)
        ]

        result = calculate_load_snapshot(samples, AS_OF)

        assert result.tsb == result.ctl - result.atl

    def test_samples_after_as_of_are_ignored(self):
        samples = [(AS_OF, 60.0), (AS_OF + timedelta(days=1), 500.0)]

        result = calculate_load_snapshot(samples, AS_OF)

        assert result.sample_count == 1
        assert result.ctl == pytest.approx(60.0)

    def test_samples_outside_lookback_are_ignored(self):
        samples = [(AS_OF - timedelta(days=91), 300.0)]

        assert isinstance(calculate_load_snapshot(samples, AS_OF, lookback_days=90), InsufficientLoadData)

    def test_missing_tss_counts_as_zero(self):
        result = calculate_load_snapshot([(AS_OF, None), (AS_OF, 100.0)], AS_OF)

        assert result.ctl == pytest.approx(50.0)

    @pytest.mark.parametrize("bad", [float("nan"), float("inf")])
    def test_non_finite_tss_counts_as_zero(self, bad):
        result = calculate_load_snapshot([(AS_OF - timedelta(days=1), bad), (AS_OF, 100.0)], AS_OF)

        assert all(math.isfinite(value) for value in (result.ctl, result.atl, result.tsb))
        assert result.sample_count == 2

    def test_deterministic(self):
        samples = [(AS_OF - timedelta(days=d), 40.0 + d) for d in range(30)]

        assert calculate_load_snapshot(samples, AS_OF) == calculate_load_snapshot(list(samples), AS_OF)


class TestTrainingLoadCalculator:
    """Tests for building the TSS series from ride history"""

    def test_no_rides(self, db_session, user_id):
        calculator = TrainingLoadCalculator(db_session)

        assert isinstance(calculator.get_snapshot(user_id, as_of=AS_OF), InsufficientLoadData)

    def test_uses_ride_tss(self, db_session, user_id, make_ride):
        make_ride(AS_OF - timedelta(days=1), tss=90.0)
        make_ride(AS_OF - timedelta(days=3), tss=60.0)

        samples = TrainingLoadCalculator(db_session).get_tss_samples(
            user_id, AS_OF - timedelta(days=90), AS_OF
        )

        assert samples == [(AS_OF - timedelta(days=3), 60.0), (AS_OF - timedelta(days=1), 90.0)]

    def test_falls_back_to_planned_target_tss(self, db_session, user_id, make_ride, make_workout):
        ride = make_ride(AS_OF - timedelta(days=2), tss=None)
        make_workout(AS_OF - timedelta(days=2), target_tss=75.0, completed=True, completed_ride_id=ride.id)
        make_ride(AS_OF - timedelta(days=1), tss=None)

        samples = TrainingLoadCalculator(db_session).get_tss_samples(
            user_id, AS_OF - timedelta(days=90), AS_OF
        )

        assert samples == [(AS_OF - timedelta(days=2), 75.0), (AS_OF - timedelta(days=1), 0.0)]

    def test_other_users_rides_are_ignored(self, db_session, user_id, make_ride):
        from uuid import uuid4
        from conftest import add_ride

        add_ride(db_session, uuid4(), AS_OF, tss=200.0)
        make_ride(AS_OF, tss=50.0)

        snapshot = TrainingLoadCalculator(db_session).get_snapshot(user_id, as_of=AS_OF)

        assert snapshot.ctl == pytest.approx(50.0)

    def test_rides_after_as_of_are_ignored(self, db_session, user_id, make_ride):
        make_ride(AS_OF, tss=50.0)
        make_ride(AS_OF + timedelta(days=1), tss=400.0)

        snapshot = TrainingLoadCalculator(db_session).get_snapshot(user_id, as_of=AS_OF)

        assert snapshot.sample_count == 1

    def test_load_history(self, db_session, user_id, make_ride):
        make_ride(AS_OF - timedelta(days=3), tss=100.0)

        history = TrainingLoadCalculator(db_session).get_load_history(user_id, days=7, as_of=AS_OF)

        assert len(history) == 7
        assert history[0].as_of == AS_OF - timedelta(days=6)
        assert history[-1].as_of == AS_OF
        # Nothing before the ride, a snapshot from the ride onwards
        assert isinstance(history[2], InsufficientLoadData)
        assert isinstance(history[3], TrainingLoadSnapshot)
        assert history[3].tsb == pytest.approx(0.0)
