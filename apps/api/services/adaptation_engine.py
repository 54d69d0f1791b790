"""
Adaptation Decision Engine

Decides whether an upcoming workout should be made harder, easier, or
skipped, from pre-fetched inputs only:

- the workout (zone, level, date, whether it was already adapted)
- the athlete's adaptation settings
- the current training load snapshot (TSB)
- 7-day completion rate and average RPE
- the athlete's progression level in the workout's zone

Pure: no database access and no mutation. Evaluating the same inputs twice
gives the same decision, so an unapplied decision can be replayed.

Rules are checked top to bottom and the first match wins:

1. TSB below the fatigued threshold on a high-intensity workout
   (skip if more than 10 below, else decrease 1.0)
2. TSB above the fresh threshold on a low-intensity workout (increase 0.5)
3. Completion rate under 60% and the workout isn't already easy (decrease 0.5)
4. Workout more than 2 levels above progression (set to progression + 0.5)
5. Workout more than 2 levels below progression, not recovery
   (set to progression - 0.5)
6. Average RPE 9+ (decrease 0.5)
7. Average RPE 6 or less with 95%+ completion (increase 0.3)
8. Otherwise no change

Sensitivity then scales confidence (and the delta, for delta rules), and
anything under 0.6 confidence is downgraded to no_change.
"""

from datetime import date
from typing import Optional, Union
from uuid import UUID
from dataclasses import dataclass
from enum import Enum

from services.training_load import InsufficientLoadData, TrainingLoadSnapshot, INSUFFICIENT_DATA
from services.training_zones import (
    TrainingZone,
    HIGH_INTENSITY_ZONES,
    LOW_INTENSITY_ZONES,
    clamp_level,
    check_level,
    parse_zone,
)


class AdaptationType(str, Enum):
    INCREASE = "increase"
    DECREASE = "decrease"
    SUBSTITUTE = "substitute"
    SKIP = "skip"
    RESCHEDULE = "reschedule"
    NO_CHANGE = "no_change"


class Sensitivity(str, Enum):
    CONSERVATIVE = "conservative"
    MODERATE = "moderate"
    AGGRESSIVE = "aggressive"


SENSITIVITY_MULTIPLIERS = {
    Sensitivity.CONSERVATIVE: 0.7,
    Sensitivity.MODERATE: 1.0,
    Sensitivity.AGGRESSIVE: 1.3,
}

# Decisions below this (after scaling) are not acted on
MIN_CONFIDENCE = 0.6

# Rule thresholds
VERY_FATIGUED_MARGIN = 10.0
LOW_COMPLETION_RATE = 60.0
EASY_WORKOUT_MARGIN = 0.5
LEVEL_GAP = 2.0
LEVEL_GAP_TARGET_OFFSET = 0.5
HIGH_RPE = 9.0
LOW_RPE = 6.0
HIGH_COMPLETION_RATE = 95.0
FALLBACK_CONFIDENCE = 0.5

REASON_DISABLED = "Adaptive training disabled"
REASON_ALREADY_ADAPTED = "Workout already adapted"
REASON_TOO_CLOSE = "Too close to workout date"
REASON_NO_ADAPTATION = "No adaptation needed"

ADAPTATION_TYPE_LABELS = {
    AdaptationType.INCREASE: "Increase Difficulty",
    AdaptationType.DECREASE: "Decrease Difficulty",
    AdaptationType.SUBSTITUTE: "Substitute Workout",
    AdaptationType.SKIP: "Skip Workout",
    AdaptationType.RESCHEDULE: "Reschedule",
    AdaptationType.NO_CHANGE: "No Change",
}


# =========================================================================
# Inputs / output
# =========================================================================

@dataclass(frozen=True)
class WorkoutTarget:
    id: Optional[UUID]
    workout_date: date
    zone: TrainingZone
    level: float
    was_adapted: bool = False
    adaptation_reason: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "zone", parse_zone(self.zone))
        check_level(self.level, "Workout level")


@dataclass(frozen=True)
class AdaptationSettingsSnapshot:
    adaptive_enabled: bool = True
    auto_apply: bool = False
    sensitivity: Sensitivity = Sensitivity.MODERATE
    min_days_before_workout: int = 2
    tsb_fatigued_threshold: float = -30.0
    tsb_fresh_threshold: float = 5.0
    notify_on_adaptation: bool = True


@dataclass(frozen=True)
class RecentTrainingMetrics:
    """
    Rolling window over planned (non-rest) workouts.

    completion_rate and avg_rpe are None when there was nothing to measure.
    """
    completion_rate: Optional[float] = None
    avg_rpe: Optional[float] = None
    completed: int = 0
    missed: int = 0
    avg_completion_pct: Optional[float] = None


@dataclass(frozen=True)
class AdaptationDecision:
    should_adapt: bool
    adaptation_type: AdaptationType
    new_level: Optional[float]
    delta: float
    reason: str
    confidence: float


@dataclass(frozen=True)
class _RuleMatch:
    adaptation_type: AdaptationType
    reason: str
    confidence: float
    delta: Optional[float] = None
    target_level: Optional[float] = None


# =========================================================================
# Evaluation
# =========================================================================

def _no_change(workout: WorkoutTarget, reason: str, confidence: float = 0.0) -> AdaptationDecision:
    return AdaptationDecision(
        should_adapt=False,
        adaptation_type=AdaptationType.NO_CHANGE,
        new_level=workout.level,
        delta=0.0,
        reason=reason,
        confidence=confidence,
    )


def _match_rule(
    workout: WorkoutTarget,
    settings: AdaptationSettingsSnapshot,
    tsb: float,
    metrics: RecentTrainingMetrics,
    progression_level: float,
) -> _RuleMatch:
    workout_level = workout.level
    level_gap = workout_level - progression_level
    completion_rate = metrics.completion_rate
    avg_rpe = metrics.avg_rpe

    if tsb < settings.tsb_fatigued_threshold and workout.zone in HIGH_INTENSITY_ZONES:
        if tsb < settings.tsb_fatigued_threshold - VERY_FATIGUED_MARGIN:
            return _RuleMatch(
                AdaptationType.SKIP,
                f"TSB very low ({tsb:.1f}). Recommend rest day.",
                0.9,
            )
        return _RuleMatch(
            AdaptationType.DECREASE,
            f"TSB low ({tsb:.1f}). Reducing intensity.",
            0.8,
            delta=-1.0,
        )

    if tsb > settings.tsb_fresh_threshold and workout.zone in LOW_INTENSITY_ZONES:
        return _RuleMatch(
            AdaptationType.INCREASE,
            f"TSB high ({tsb:.1f}). Room for harder training.",
            0.7,
            delta=0.5,
        )

    if (
        completion_rate is not None
        and completion_rate < LOW_COMPLETION_RATE
        and workout_level > progression_level - EASY_WORKOUT_MARGIN
    ):
        return _RuleMatch(
            AdaptationType.DECREASE,
            f"Low completion rate ({completion_rate:.0f}%). Making workouts more achievable.",
            0.75,
            delta=-0.5,
        )

    if level_gap > LEVEL_GAP:
        return _RuleMatch(
            AdaptationType.DECREASE,
            f"Workout level ({workout_level:.1f}) too far above progression level ({progression_level:.1f}).",
            0.85,
            target_level=progression_level + LEVEL_GAP_TARGET_OFFSET,
        )

    if level_gap < -LEVEL_GAP and workout.zone != TrainingZone.RECOVERY:
        return _RuleMatch(
            AdaptationType.INCREASE,
            f"Workout level ({workout_level:.1f}) too far below progression level ({progression_level:.1f}).",
            0.85,
            target_level=progression_level - LEVEL_GAP_TARGET_OFFSET,
        )

    if avg_rpe is not None and avg_rpe >= HIGH_RPE:
        return _RuleMatch(
            AdaptationType.DECREASE,
            f"High average RPE ({avg_rpe:.1f}) suggests overtraining. Reducing load.",
            0.7,
            delta=-0.5,
        )

    if (
        avg_rpe is not None
        and completion_rate is not None
        and avg_rpe <= LOW_RPE
        and completion_rate >= HIGH_COMPLETION_RATE
    ):
        return _RuleMatch(
            AdaptationType.INCREASE,
            f"Low RPE ({avg_rpe:.1f}) and high completion rate. Ready for more challenge.",
            0.8,
            delta=0.3,
        )

    return _RuleMatch(AdaptationType.NO_CHANGE, REASON_NO_ADAPTATION, FALLBACK_CONFIDENCE)


def evaluate_adaptation(
    workout: WorkoutTarget,
    settings: AdaptationSettingsSnapshot,
    load: Union[TrainingLoadSnapshot, InsufficientLoadData, None],
    metrics: RecentTrainingMetrics,
    progression_level: Optional[float],
    today: date,
) -> AdaptationDecision:
    """Evaluate one workout. Never touches persisted state."""
    if not settings.adaptive_enabled:
        return _no_change(workout, REASON_DISABLED)

    days_until = (workout.workout_date - today).days
    if days_until < settings.min_days_before_workout:
        return _no_change(workout, REASON_TOO_CLOSE)

    if workout.was_adapted:
        return _no_change(workout, REASON_ALREADY_ADAPTED)

    if load is None or isinstance(load, InsufficientLoadData) or progression_level is None:
        return _no_change(workout, INSUFFICIENT_DATA)

    check_level(progression_level, "Progression level")

    match = _match_rule(workout, settings, load.tsb, metrics, progression_level)
    multiplier = SENSITIVITY_MULTIPLIERS[Sensitivity(settings.sensitivity)]
    confidence = round(min(1.0, max(0.0, match.confidence * multiplier)), 4)

    if match.adaptation_type == AdaptationType.NO_CHANGE or confidence < MIN_CONFIDENCE:
        return _no_change(workout, match.reason, confidence)

    if match.adaptation_type == AdaptationType.SKIP:
        new_level = None
        delta = 0.0
    elif match.target_level is not None:
        # Absolute target: only confidence is scaled
        new_level = clamp_level(match.target_level)
        delta = round(new_level - workout.level, 2)
    else:
        delta = round(match.delta * multiplier, 2)
        new_level = clamp_level(workout.level + delta)

    return AdaptationDecision(
        should_adapt=True,
        adaptation_type=match.adaptation_type,
        new_level=new_level,
        delta=delta,
        reason=match.reason,
        confidence=confidence,
    )


# =========================================================================
# Display helpers
# =========================================================================

def adaptation_type_label(adaptation_type: Union[str, AdaptationType]) -> str:
    try:
        return ADAPTATION_TYPE_LABELS[AdaptationType(adaptation_type)]
    except ValueError:
        return str(adaptation_type)


def confidence_label(confidence: Optional[float]) -> str:
    if confidence is None:
        return "Low Confidence"
    if confidence >= 0.8:
        return "High Confidence"
    if confidence >= 0.6:
        return "Medium Confidence"
    return "Low Confidence"
