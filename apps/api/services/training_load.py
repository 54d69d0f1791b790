"""
Training Load Calculator

Calculates training stress metrics from a TSS time series:
- CTL (Chronic Training Load) - fitness, 42-day exponential weighting
- ATL (Acute Training Load) - fatigue, 7-day exponential weighting
- TSB (Training Stress Balance) - form (CTL - ATL)

Each sample is weighted by e^(-days_ago / horizon) and the load is the
weighted mean of the samples in the lookback window:

    CTL = sum(tss_i * w42_i) / sum(w42_i)
    ATL = sum(tss_i * w7_i)  / sum(w7_i)

No samples means no snapshot: callers get InsufficientLoadData instead of
a zero or NaN load that would read as "perfectly fresh".
"""

from datetime import datetime, timedelta, date
from typing import List, Iterable, Optional, Tuple, Union
from uuid import UUID
from dataclasses import dataclass
from sqlalchemy.orm import Session
import math
import logging

from core.clock import utc_today
from core.config import settings
from models import Ride, PlannedWorkout

logger = logging.getLogger(__name__)

CTL_DECAY_DAYS = 42  # Chronic (fitness) - long term
ATL_DECAY_DAYS = 7  # Acute (fatigue) - short term
DEFAULT_LOOKBACK_DAYS = 90

INSUFFICIENT_DATA = "insufficient_data"

TSSSample = Tuple[date, float]


@dataclass(frozen=True)
class TrainingLoadSnapshot:
    """CTL/ATL/TSB as of a calendar date. Derived, never the source of truth."""
    ctl: float
    atl: float
    tsb: float
    as_of: date
    sample_count: int


@dataclass(frozen=True)
class InsufficientLoadData:
    """Marker returned when the window holds no TSS samples."""
    as_of: date
    reason: str = INSUFFICIENT_DATA


LoadResult = Union[TrainingLoadSnapshot, InsufficientLoadData]


def _weight(days_ago: int, horizon: int) -> float:
    return math.exp(-days_ago / horizon)


def calculate_load_snapshot(
    samples: Iterable[TSSSample],
    as_of: date,
    lookback_days: int = DEFAULT_LOOKBACK_DAYS,
) -> LoadResult:
    """
    Compute CTL/ATL/TSB from (date, tss) samples.

    Samples dated after `as_of` or more than `lookback_days` before it are
    ignored. Multiple samples on one date each count on their own. A missing
    or non-finite TSS counts as 0.
    Pure: no I/O, same inputs give the same snapshot.
    """
    window_start = as_of - timedelta(days=lookback_days)

    ctl_num = ctl_den = 0.0
    atl_num = atl_den = 0.0
    count = 0

    for sample_date, tss in samples:
        if sample_date > as_of or sample_date < window_start:
            continue
        days_ago = (as_of - sample_date).days
        if tss is None or not math.isfinite(tss):
            tss = 0.0

        w_ctl = _weight(days_ago, CTL_DECAY_DAYS)
        w_atl = _weight(days_ago, ATL_DECAY_DAYS)
        ctl_num += tss * w_ctl
        ctl_den += w_ctl
        atl_num += tss * w_atl
        atl_den += w_atl
        count += 1

    if count == 0:
        return InsufficientLoadData(as_of=as_of)

    ctl = ctl_num / ctl_den
    atl = atl_num / atl_den
    return TrainingLoadSnapshot(
        ctl=ctl,
        atl=atl,
        tsb=ctl - atl,
        as_of=as_of,
        sample_count=count,
    )


class TrainingLoadCalculator:
    """
    Builds the TSS series for a user from ride history and runs the
    pure calculation over it.
    """

    def __init__(self, db: Session):
        self.db = db

    def get_tss_samples(self, user_id: UUID, start_date: date, end_date: date) -> List[TSSSample]:
        """
        (date, tss) per ride in [start_date, end_date].

        A ride without its own TSS falls back to the target TSS of the
        planned workout it completed, then to 0.
        """
        rows = (
            self.db.query(Ride.recorded_at, Ride.tss, PlannedWorkout.target_tss)
            .outerjoin(PlannedWorkout, PlannedWorkout.completed_ride_id == Ride.id)
            .filter(
                Ride.user_id == user_id,
                Ride.recorded_at >= datetime.combine(start_date, datetime.min.time()),
                Ride.recorded_at < datetime.combine(end_date + timedelta(days=1), datetime.min.time()),
            )
            .order_by(Ride.recorded_at)
            .all()
        )

        samples: List[TSSSample] = []
        for recorded_at, ride_tss, target_tss in rows:
            if ride_tss is not None:
                tss = ride_tss
            elif target_tss is not None:
                tss = target_tss
            else:
                tss = 0.0
            samples.append((recorded_at.date(), float(tss)))
        return samples

    def get_snapshot(
        self,
        user_id: UUID,
        as_of: Optional[date] = None,
        lookback_days: Optional[int] = None,
    ) -> LoadResult:
        """Current training load for a user, or InsufficientLoadData."""
        if as_of is None:
            as_of = utc_today()
        if lookback_days is None:
            lookback_days = settings.LOAD_LOOKBACK_DAYS

        samples = self.get_tss_samples(user_id, as_of - timedelta(days=lookback_days), as_of)
        result = calculate_load_snapshot(samples, as_of, lookback_days)

        if isinstance(result, InsufficientLoadData):
            logger.info(f"No TSS samples for user {user_id} in the {lookback_days} days before {as_of}")
        else:
            logger.debug(
                f"Load for user {user_id} as of {as_of}: "
                f"CTL={result.ctl:.1f} ATL={result.atl:.1f} TSB={result.tsb:.1f}"
            )
        return result

    def get_load_history(
        self,
        user_id: UUID,
        days: int = 42,
        as_of: Optional[date] = None,
        lookback_days: Optional[int] = None,
    ) -> List[LoadResult]:
        """
        One result per day for the last `days` days (oldest first), for charting.

        The TSS series is fetched once and re-windowed per day.
        """
        if as_of is None:
            as_of = utc_today()
        if lookback_days is None:
            lookback_days = settings.LOAD_LOOKBACK_DAYS

        first_day = as_of - timedelta(days=days - 1)
        samples = self.get_tss_samples(user_id, first_day - timedelta(days=lookback_days), as_of)

        history: List[LoadResult] = []
        for day_offset in range(days):
            current_date = first_day + timedelta(days=day_offset)
            history.append(calculate_load_snapshot(samples, current_date, lookback_days))
        return history
