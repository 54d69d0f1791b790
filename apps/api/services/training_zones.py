"""
Canonical training zones.

Seven power-based intensity bands keyed to %FTP. Shared by the classifier,
the progression store and the adaptation engine; kept free of model imports
so models.py can use it for CHECK constraints.
"""

from enum import Enum
from typing import Union
import math

from core.exceptions import InvariantViolation


class TrainingZone(str, Enum):
    RECOVERY = "recovery"
    ENDURANCE = "endurance"
    TEMPO = "tempo"
    SWEET_SPOT = "sweet_spot"
    THRESHOLD = "threshold"
    VO2MAX = "vo2max"
    ANAEROBIC = "anaerobic"


# Display / storage order, easiest to hardest
ZONE_ORDER = [
    TrainingZone.RECOVERY,
    TrainingZone.ENDURANCE,
    TrainingZone.TEMPO,
    TrainingZone.SWEET_SPOT,
    TrainingZone.THRESHOLD,
    TrainingZone.VO2MAX,
    TrainingZone.ANAEROBIC,
]

ZONE_NAMES = [z.value for z in ZONE_ORDER]

ZONE_LABELS = {
    TrainingZone.RECOVERY: "Recovery",
    TrainingZone.ENDURANCE: "Endurance",
    TrainingZone.TEMPO: "Tempo",
    TrainingZone.SWEET_SPOT: "Sweet Spot",
    TrainingZone.THRESHOLD: "Threshold",
    TrainingZone.VO2MAX: "VO2max",
    TrainingZone.ANAEROBIC: "Anaerobic",
}

HIGH_INTENSITY_ZONES = frozenset({
    TrainingZone.THRESHOLD,
    TrainingZone.VO2MAX,
    TrainingZone.ANAEROBIC,
})
LOW_INTENSITY_ZONES = frozenset({
    TrainingZone.RECOVERY,
    TrainingZone.ENDURANCE,
})

MIN_LEVEL = 1.0
MAX_LEVEL = 10.0
DEFAULT_LEVEL = 3.0


def parse_zone(zone: Union[str, TrainingZone]) -> TrainingZone:
    """Resolve a zone name, failing fast on anything outside the seven zones."""
    if isinstance(zone, TrainingZone):
        return zone
    try:
        return TrainingZone(zone)
    except ValueError:
        raise InvariantViolation(f"Unrecognized training zone: {zone!r}")


def clamp_level(level: float) -> float:
    """Clamp to [1.0, 10.0], rounded to hundredths to keep float noise out of storage."""
    return round(max(MIN_LEVEL, min(MAX_LEVEL, level)), 2)


def check_level(level: float, what: str = "level") -> float:
    """Reject a stored or supplied level that is already outside [1, 10]."""
    if level is None or not (MIN_LEVEL <= level <= MAX_LEVEL):
        raise InvariantViolation(f"{what} {level!r} outside [{MIN_LEVEL}, {MAX_LEVEL}]")
    return level


def check_finite(value: float, what: str) -> float:
    """Reject NaN and infinities before they reach clamp_level."""
    if value is None or not math.isfinite(value):
        raise InvariantViolation(f"{what} must be a finite number, got {value!r}")
    return value
