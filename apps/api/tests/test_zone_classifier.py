"""
Tests for Zone Classifier

Pure IF -> zone / RPE mapping, plus persisted ride classification and
seeding progression levels from classified rides.
"""

import pytest
from datetime import timedelta

from core.exceptions import NoFTPError, RideNotFound
from models import ProgressionLevelHistory, RideClassification
from services.ftp_history import record_ftp
from services.progression_levels import LevelChangeReason, ProgressionStore
from services.training_zones import TrainingZone
from services.zone_classifier import (
    RideClassifier,
    classify_zone,
    estimate_rpe,
    intensity_factor,
    seed_progression_from_rides,
)


class TestClassifyZone:
    """Tests for IF banding"""

    @pytest.mark.parametrize("watts,expected", [
        (100, TrainingZone.RECOVERY),      # 0.40
        (137, TrainingZone.RECOVERY),      # 0.548
        (150, TrainingZone.ENDURANCE),     # 0.60
        (200, TrainingZone.TEMPO),         # 0.80
        (225, TrainingZone.SWEET_SPOT),    # 0.90
        (250, TrainingZone.THRESHOLD),     # 1.00
        (300, TrainingZone.VO2MAX),        # 1.20
        (400, TrainingZone.ANAEROBIC),     # 1.60
    ])
    def test_bands(self, watts, expected):
        assert classify_zone(watts, None, 250) == expected

    def test_lower_bound_is_inclusive(self):
        # 0.55 exactly belongs to the band above recovery
        assert classify_zone(110, None, 200) == TrainingZone.ENDURANCE
        assert classify_zone(150, None, 200) == TrainingZone.TEMPO

    def test_normalized_power_preferred(self):
        assert classify_zone(100, 260, 250) == TrainingZone.THRESHOLD

    def test_zero_normalized_power_falls_back_to_average(self):
        assert classify_zone(200, 0, 250) == TrainingZone.TEMPO

    def test_no_power_or_ftp(self):
        assert classify_zone(None, None, 250) is None
        assert classify_zone(0, 0, 250) is None
        assert classify_zone(200, None, None) is None
        assert classify_zone(200, None, 0) is None

    def test_intensity_factor(self):
        assert intensity_factor(200, None, 250) == pytest.approx(0.8)
        assert intensity_factor(None, None, 250) is None


class TestEstimateRPE:
    """Tests for RPE estimation"""

    def test_base_from_intensity(self):
        assert estimate_rpe(200, None, 250) == 8
        assert estimate_rpe(225, None, 250) == 9

    def test_default_without_power(self):
        assert estimate_rpe(None, None, 250) == 5
        assert estimate_rpe(200, None, None) == 5

    def test_duration_bumps(self):
        assert estimate_rpe(150, None, 250, duration_seconds=3 * 3600) == 6
        assert estimate_rpe(150, None, 250, duration_seconds=3 * 3600 + 1) == 7
        assert estimate_rpe(150, None, 250, duration_seconds=5 * 3600 + 1) == 8

    def test_high_tss_bump(self):
        assert estimate_rpe(150, None, 250, tss=150) == 6
        assert estimate_rpe(150, None, 250, tss=151) == 7

    def test_clamped(self):
        assert estimate_rpe(500, None, 250) == 10
        assert estimate_rpe(10, None, 250) == 1


class TestRideClassifier:
    """Tests for persisted classification"""

    @pytest.fixture
    def classifier(self, db_session, clock):
        return RideClassifier(db_session, clock=clock)

    def test_classify_ride(self, classifier, db_session, make_ride, today, user_id):
        record_ftp(db_session, user_id, 250, effective_date=today - timedelta(days=30))
        ride = make_ride(today - timedelta(days=1), average_watts=200)

        result = classifier.classify_ride(user_id, ride.id)

        assert result.zone == "tempo"
        assert result.estimated_rpe == 8.0
        assert result.intensity_factor == 0.8
        assert result.used_ftp == 250
        assert result.classification_method == "power"
        assert result.confidence == pytest.approx(0.85)

    def test_reclassify_upserts(self, classifier, db_session, make_ride, today, user_id):
        record_ftp(db_session, user_id, 250, effective_date=today - timedelta(days=30))
        ride = make_ride(today - timedelta(days=1), average_watts=200)
        classifier.classify_ride(user_id, ride.id)

        record_ftp(db_session, user_id, 200, effective_date=today - timedelta(days=2))
        result = classifier.classify_ride(user_id, ride.id)

        assert result.zone == "threshold"
        assert db_session.query(RideClassification).count() == 1

    def test_uses_ftp_in_effect_on_ride_date(self, classifier, db_session, make_ride, today, user_id):
        record_ftp(db_session, user_id, 200, effective_date=today - timedelta(days=60))
        record_ftp(db_session, user_id, 300, effective_date=today - timedelta(days=5))
        old_ride = make_ride(today - timedelta(days=30), average_watts=200)

        assert classifier.classify_ride(user_id, old_ride.id).used_ftp == 200

    def test_ride_before_first_ftp_uses_current(self, classifier, db_session, make_ride, today, user_id):
        record_ftp(db_session, user_id, 250, effective_date=today - timedelta(days=5))
        old_ride = make_ride(today - timedelta(days=100), average_watts=200)

        assert classifier.classify_ride(user_id, old_ride.id).used_ftp == 250

    def test_ride_without_power(self, classifier, db_session, make_ride, today, user_id):
        record_ftp(db_session, user_id, 250, effective_date=today)
        ride = make_ride(today)

        assert classifier.classify_ride(user_id, ride.id) is None
        assert db_session.query(RideClassification).count() == 0

    def test_unknown_ride(self, classifier, user_id):
        from uuid import uuid4

        with pytest.raises(RideNotFound):
            classifier.classify_ride(user_id, uuid4())

    def test_no_ftp(self, classifier, make_ride, today, user_id):
        ride = make_ride(today, average_watts=200)

        with pytest.raises(NoFTPError):
            classifier.classify_ride(user_id, ride.id)
        with pytest.raises(NoFTPError):
            classifier.classify_all_rides(user_id)

    def test_classify_all(self, classifier, db_session, make_ride, today, user_id):
        record_ftp(db_session, user_id, 250, effective_date=today - timedelta(days=90))
        make_ride(today - timedelta(days=1), average_watts=200)
        make_ride(today - timedelta(days=2), average_watts=205)
        make_ride(today - timedelta(days=3), average_watts=300)
        make_ride(today - timedelta(days=4))  # no power

        summary = classifier.classify_all_rides(user_id)

        assert summary.total_rides == 3
        assert summary.classified == 3
        assert summary.skipped == 0
        assert summary.zone_breakdown == {"tempo": 2, "vo2max": 1}


class TestSeedFromRides:

    def test_seed(self, db_session, clock, make_ride, today, user_id):
        record_ftp(db_session, user_id, 250, effective_date=today - timedelta(days=90))
        for days_ago in (1, 2, 3):
            make_ride(today - timedelta(days=days_ago), average_watts=200)  # tempo, RPE 8
        RideClassifier(db_session, clock=clock).classify_all_rides(user_id)

        seeded = seed_progression_from_rides(db_session, user_id, clock=clock)

        store = ProgressionStore(db_session, clock=clock)
        assert seeded == 1
        assert store.get(user_id, "tempo") == 4.0
        assert store.get_record(user_id, "tempo").workouts_completed == 3
        assert store.get(user_id, "vo2max") == 3.0
        assert len(store.get_all(user_id)) == 7

        history = db_session.query(ProgressionLevelHistory).all()
        assert [row.reason for row in history] == [LevelChangeReason.SEEDED_FROM_RIDES]
