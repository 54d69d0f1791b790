"""
Zone Classifier

Maps ride power data to one of the seven training zones and estimates the
RPE the ride most likely felt like. Used to seed progression levels from
historical rides that never got a post-workout survey.

Intensity Factor (IF) = power / FTP, where power is normalized power when
present, else average watts.

    IF < 0.55  recovery
    IF < 0.75  endurance
    IF < 0.88  tempo
    IF < 0.94  sweet_spot
    IF < 1.05  threshold
    IF < 1.50  vo2max
    else       anaerobic
"""

from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple
from uuid import UUID
from dataclasses import dataclass, field
from sqlalchemy.orm import Session
from sqlalchemy import func, or_
import math
import logging

from core.clock import utc_now
from core.exceptions import NoFTPError, RideNotFound
from models import Ride, RideClassification
from services.ftp_history import get_current_ftp
from services.progression_levels import (
    LevelChangeReason,
    ProgressionStore,
    level_from_average_rpe,  # re-exported for callers seeding from RPE
)
from services.training_zones import TrainingZone

logger = logging.getLogger(__name__)

# Upper IF bound (exclusive) for each zone; anything above the last is anaerobic
ZONE_IF_BOUNDS: List[Tuple[float, TrainingZone]] = [
    (0.55, TrainingZone.RECOVERY),
    (0.75, TrainingZone.ENDURANCE),
    (0.88, TrainingZone.TEMPO),
    (0.94, TrainingZone.SWEET_SPOT),
    (1.05, TrainingZone.THRESHOLD),
    (1.50, TrainingZone.VO2MAX),
]

# Long rides feel harder than their IF suggests
DURATION_RPE_THRESHOLDS_SECONDS = (3 * 3600, 4 * 3600, 5 * 3600)
DURATION_RPE_BUMP = 0.5
HIGH_TSS_THRESHOLD = 150
HIGH_TSS_RPE_BUMP = 0.5
DEFAULT_RPE = 5

POWER_CLASSIFICATION_METHOD = "power"
POWER_CLASSIFICATION_CONFIDENCE = 0.85


def _effective_power(avg_watts: Optional[float], normalized_power: Optional[float]) -> float:
    if normalized_power is not None and normalized_power > 0:
        return normalized_power
    return avg_watts or 0


def intensity_factor(
    avg_watts: Optional[float],
    normalized_power: Optional[float],
    ftp: Optional[float],
) -> Optional[float]:
    """IF = power / FTP, or None without usable power or FTP."""
    power = _effective_power(avg_watts, normalized_power)
    if power <= 0 or not ftp or ftp <= 0:
        return None
    return power / ftp


def zone_for_intensity(intensity: float) -> TrainingZone:
    for upper, zone in ZONE_IF_BOUNDS:
        if intensity < upper:
            return zone
    return TrainingZone.ANAEROBIC


def classify_zone(
    avg_watts: Optional[float],
    normalized_power: Optional[float],
    ftp: Optional[float],
    duration_seconds: Optional[int] = None,
) -> Optional[TrainingZone]:
    """Training zone for a ride, or None when there is no power or FTP to go on."""
    intensity = intensity_factor(avg_watts, normalized_power, ftp)
    if intensity is None:
        return None
    return zone_for_intensity(intensity)


def estimate_rpe(
    avg_watts: Optional[float],
    normalized_power: Optional[float],
    ftp: Optional[float],
    duration_seconds: Optional[int] = None,
    tss: Optional[float] = None,
) -> int:
    """
    Estimated RPE (1-10) for a ride.

    Base is IF * 10, plus 0.5 per 3h/4h/5h duration threshold crossed and
    0.5 more above 150 TSS. Rounded half-up and clamped. 5 without power data.
    """
    intensity = intensity_factor(avg_watts, normalized_power, ftp)
    if intensity is None:
        return DEFAULT_RPE

    rpe = intensity * 10
    if duration_seconds:
        for threshold in DURATION_RPE_THRESHOLDS_SECONDS:
            if duration_seconds > threshold:
                rpe += DURATION_RPE_BUMP
    if tss is not None and tss > HIGH_TSS_THRESHOLD:
        rpe += HIGH_TSS_RPE_BUMP

    return max(1, min(10, int(math.floor(rpe + 0.5))))


@dataclass
class ClassificationSummary:
    total_rides: int = 0
    classified: int = 0
    skipped: int = 0
    zone_breakdown: Dict[str, int] = field(default_factory=dict)


class RideClassifier:
    """Persists zone classifications for a user's rides."""

    def __init__(self, db: Session, clock: Callable[[], datetime] = utc_now):
        self.db = db
        self.clock = clock

    def _ftp_for_ride(self, user_id: UUID, ride: Ride) -> int:
        # FTP in effect when the ride happened; rides older than the first
        # recorded test fall back to the current FTP.
        entry = get_current_ftp(self.db, user_id, as_of=ride.recorded_at.date())
        if entry is None:
            entry = get_current_ftp(self.db, user_id, as_of=self.clock().date())
        if entry is None:
            raise NoFTPError(user_id)
        return entry.ftp_watts

    def classify_ride(self, user_id: UUID, ride_id: UUID) -> Optional[RideClassification]:
        """
        Classify one ride and upsert its ride_classification row.

        Returns None for rides without power data. Raises RideNotFound or
        NoFTPError.
        """
        ride = self.db.query(Ride).filter(Ride.id == ride_id, Ride.user_id == user_id).first()
        if not ride:
            raise RideNotFound(ride_id)

        ftp = self._ftp_for_ride(user_id, ride)
        zone = classify_zone(ride.average_watts, ride.normalized_power, ftp, ride.duration_seconds)
        if zone is None:
            logger.debug(f"Ride {ride_id} has no power data, not classified")
            return None

        rpe = estimate_rpe(ride.average_watts, ride.normalized_power, ftp, ride.duration_seconds)
        intensity = intensity_factor(ride.average_watts, ride.normalized_power, ftp)

        classification = self.db.query(RideClassification).filter(
            RideClassification.ride_id == ride_id
        ).first()
        if classification is None:
            classification = RideClassification(
                ride_id=ride_id,
                user_id=user_id,
                classification_method=POWER_CLASSIFICATION_METHOD,
                confidence=POWER_CLASSIFICATION_CONFIDENCE,
                classified_at=self.clock(),
            )
            self.db.add(classification)

        classification.zone = zone.value
        classification.estimated_rpe = float(rpe)
        classification.intensity_factor = round(intensity, 2)
        classification.used_ftp = ftp
        classification.updated_at = self.clock()

        self.db.commit()
        return classification

    def classify_all_rides(self, user_id: UUID) -> ClassificationSummary:
        """Classify every ride with power data. Rides that can't be classified are counted as skipped."""
        if get_current_ftp(self.db, user_id, as_of=self.clock().date()) is None:
            raise NoFTPError(user_id)

        ride_ids = [
            ride_id for (ride_id,) in self.db.query(Ride.id).filter(
                Ride.user_id == user_id,
                or_(Ride.average_watts > 0, Ride.normalized_power > 0),
            ).order_by(Ride.recorded_at.desc())
        ]

        summary = ClassificationSummary(total_rides=len(ride_ids))
        for ride_id in ride_ids:
            try:
                result = self.classify_ride(user_id, ride_id)
            except (NoFTPError, RideNotFound) as e:
                logger.warning(f"Skipping ride {ride_id}: {e}")
                result = None
            if result is None:
                summary.skipped += 1
            else:
                summary.classified += 1

        summary.zone_breakdown = {
            zone: count for zone, count in self.db.query(
                RideClassification.zone, func.count(RideClassification.id)
            ).filter(
                RideClassification.user_id == user_id
            ).group_by(RideClassification.zone)
        }

        logger.info(
            f"Classified {summary.classified}/{summary.total_rides} rides for user {user_id} "
            f"({summary.skipped} skipped)"
        )
        return summary


def seed_progression_from_rides(
    db: Session,
    user_id: UUID,
    clock: Callable[[], datetime] = utc_now,
) -> int:
    """
    Seed progression levels from classified ride history: average estimated
    RPE per zone mapped through level_from_average_rpe. Zones without rides
    stay at (or are initialized to) 3.0. Returns zones seeded.
    """
    rows = (
        db.query(
            RideClassification.zone,
            func.avg(RideClassification.estimated_rpe),
            func.count(RideClassification.id),
        )
        .filter(
            RideClassification.user_id == user_id,
            RideClassification.estimated_rpe.isnot(None),
        )
        .group_by(RideClassification.zone)
        .all()
    )

    store = ProgressionStore(db, clock=clock)
    seeded = store.seed_levels(
        user_id,
        {zone: (float(avg_rpe), int(count)) for zone, avg_rpe, count in rows},
        LevelChangeReason.SEEDED_FROM_RIDES,
    )
    store.initialize(user_id)
    return seeded
