"""Badge eligibility: a pure function of a definition and a stats snapshot.

Checks short-circuit in a fixed order, each failure with its own reason code:
inactive -> already earned (or cooling down) -> seasonal window ->
prerequisites -> exclusivity -> configuration -> threshold.
"""

from __future__ import annotations

import operator
from collections.abc import Callable, Collection
from datetime import datetime, timedelta

import structlog

from rewards.errors import ConfigurationError
from rewards.gamification.schemas import (
    BadgeDefinition,
    CriteriaType,
    EligibilityResult,
    ReasonCode,
    StatsSnapshot,
)
from rewards.time_utils import ensure_utc, utcnow

logger = structlog.get_logger()

# criteria_type -> snapshot field. consecutive_days reads the same counter as streak_days.
CRITERIA_FIELDS: dict[str, str] = {
    CriteriaType.XP_THRESHOLD.value: "current_xp",
    CriteriaType.POINTS_EARNED.value: "total_points_earned",
    CriteriaType.SHARES_COUNT.value: "total_apps_shared",
    CriteriaType.TOURNAMENTS_WON.value: "total_tournaments_won",
    CriteriaType.STREAK_DAYS.value: "sharing_streak_days",
    CriteriaType.REFERRALS_COUNT.value: "successful_referrals_count",
    CriteriaType.LEVEL_REACHED.value: "user_level",
    CriteriaType.CONSECUTIVE_DAYS.value: "sharing_streak_days",
    CriteriaType.CATEGORY_DIVERSITY.value: "unique_categories_shared",
    CriteriaType.APP_DIVERSITY.value: "unique_apps_shared",
    CriteriaType.TOTAL_PAYOUTS.value: "total_payouts_received",
    CriteriaType.BADGE_COUNT.value: "total_badges_earned",
}

THRESHOLD_OPERATORS: dict[str, Callable[[float, float], bool]] = {
    ">=": operator.ge,
    "==": operator.eq,
    "<=": operator.le,
    ">": operator.gt,
    "<": operator.lt,
    "!=": operator.ne,
}


def extract_value(stats: StatsSnapshot, criteria_type: str) -> float:
    """Measured value for a criteria type. Unknown types read as 0, never raise."""
    field = CRITERIA_FIELDS.get(criteria_type)
    if field is None:
        return 0
    return getattr(stats, field)


def evaluate_threshold(threshold_operator: str, current_value: float, threshold_value: float) -> bool:
    """Standard comparison semantics for the six supported operators."""
    compare = THRESHOLD_OPERATORS.get(threshold_operator)
    if compare is None:
        raise ConfigurationError(f"Unknown threshold operator: {threshold_operator!r}")
    return compare(current_value, threshold_value)


def progress_percent(current_value: float, threshold_value: float) -> float:
    """Percent complete clamped to [0, 100]; 0 when the threshold is not positive."""
    if threshold_value <= 0:
        return 0.0
    return max(0.0, min(100.0, current_value / threshold_value * 100))


def configuration_problem(badge: BadgeDefinition) -> str | None:
    """Describe why a definition cannot be evaluated, or None when it is sound."""
    if badge.criteria_type not in CRITERIA_FIELDS:
        return f"unknown criteria_type {badge.criteria_type!r}"
    if badge.threshold_operator not in THRESHOLD_OPERATORS:
        return f"unknown threshold_operator {badge.threshold_operator!r}"
    if badge.threshold_value <= 0:
        return f"threshold_value must be positive, got {badge.threshold_value}"
    return None


def _in_season(badge: BadgeDefinition, now: datetime) -> bool:
    window = badge.seasonal_window
    if window is None:
        return True
    return ensure_utc(window.start) <= now <= ensure_utc(window.end)  # type: ignore[operator]


def _cooling_down(badge: BadgeDefinition, last_earned_at: datetime | None, now: datetime) -> bool:
    if last_earned_at is None or badge.cooldown_days <= 0:
        return False
    return now - ensure_utc(last_earned_at) < timedelta(days=badge.cooldown_days)  # type: ignore[operator]


def evaluate(
    badge: BadgeDefinition,
    user_badge_ids: Collection[str],
    stats: StatsSnapshot,
    *,
    now: datetime | None = None,
    last_earned_at: datetime | None = None,
) -> EligibilityResult:
    """Decide whether ``stats`` qualifies for ``badge``.

    ``last_earned_at`` is the user's most recent grant of this badge; it only
    matters for repeatable badges with a cooldown.
    """
    now = ensure_utc(now) or utcnow()

    def negative(reason: ReasonCode, current_value: float = 0) -> EligibilityResult:
        return EligibilityResult(
            badge_id=badge.badge_id,
            eligible=False,
            reason=reason,
            current_value=current_value,
            required_value=badge.threshold_value,
            progress_percent=progress_percent(current_value, badge.threshold_value),
        )

    if not badge.is_active:
        return negative(ReasonCode.BADGE_NOT_FOUND)

    if not badge.is_repeatable and badge.badge_id in user_badge_ids:
        return negative(ReasonCode.ALREADY_EARNED)
    if badge.is_repeatable and _cooling_down(badge, last_earned_at, now):
        return negative(ReasonCode.COOLDOWN_ACTIVE)

    if not _in_season(badge, now):
        return negative(ReasonCode.OUTSIDE_SEASONAL_PERIOD)

    if any(prereq not in user_badge_ids for prereq in badge.prerequisite_badges):
        return negative(ReasonCode.PREREQUISITE_MISSING)

    if any(other in user_badge_ids for other in badge.exclusive_with):
        return negative(ReasonCode.EXCLUSIVE_CONFLICT)

    problem = configuration_problem(badge)
    if problem is not None:
        logger.warning("badge_configuration_invalid", badge_id=badge.badge_id, problem=problem)
        return EligibilityResult(
            badge_id=badge.badge_id,
            eligible=False,
            reason=ReasonCode.INVALID_CONFIGURATION,
            current_value=extract_value(stats, badge.criteria_type),
            required_value=badge.threshold_value,
            progress_percent=0.0,
        )

    current_value = extract_value(stats, badge.criteria_type)
    eligible = evaluate_threshold(badge.threshold_operator, current_value, badge.threshold_value)
    return EligibilityResult(
        badge_id=badge.badge_id,
        eligible=eligible,
        reason=ReasonCode.ELIGIBLE if eligible else ReasonCode.THRESHOLD_NOT_MET,
        current_value=current_value,
        required_value=badge.threshold_value,
        progress_percent=progress_percent(current_value, badge.threshold_value),
    )
