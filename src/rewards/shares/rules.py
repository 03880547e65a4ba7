"""Regular share rules: the reward for an app share and the limits that gate it.

Each bonus is rounded on its own, on top of the veteran-adjusted base. The
tournament bonuses in ``rewards.tournaments.scoring`` start from this total.
"""

from __future__ import annotations

from datetime import datetime, timedelta

import structlog

from rewards.errors import ValidationError
from rewards.shares.schemas import RegularShareReward, SharedApp, Sharer, ShareHistory
from rewards.time_utils import ensure_utc, round_half_up

logger = structlog.get_logger()

VETERAN_LEVEL = 10
VETERAN_MULTIPLIER = 1.1

LONG_STREAK_DAYS = 7
LONG_STREAK_XP_RATE = 0.20
LONG_STREAK_POINTS_RATE = 0.10

FIRST_SHARE_XP_RATE = 0.50
FIRST_SHARE_POINTS_RATE = 0.25

DIVERSITY_MIN_CATEGORIES = 5
DIVERSITY_XP = 25
DIVERSITY_POINTS = 5


def regular_share_reward(app: SharedApp, user: Sharer, history: ShareHistory) -> RegularShareReward:
    base_xp, base_points = app.xp, app.points
    if user.level >= VETERAN_LEVEL:
        base_xp = round_half_up(base_xp * VETERAN_MULTIPLIER)
        base_points = round_half_up(base_points * VETERAN_MULTIPLIER)

    streak_xp = streak_points = 0
    if user.sharing_streak_days >= LONG_STREAK_DAYS:
        streak_xp = round_half_up(base_xp * LONG_STREAK_XP_RATE)
        streak_points = round_half_up(base_points * LONG_STREAK_POINTS_RATE)

    first_xp = first_points = 0
    if history.verified_app_shares == 0:
        first_xp = round_half_up(base_xp * FIRST_SHARE_XP_RATE)
        first_points = round_half_up(base_points * FIRST_SHARE_POINTS_RATE)

    diversity_xp = diversity_points = 0
    if len(history.shared_categories) >= DIVERSITY_MIN_CATEGORIES and app.categories - history.shared_categories:
        diversity_xp, diversity_points = DIVERSITY_XP, DIVERSITY_POINTS

    return RegularShareReward(
        base_xp=base_xp,
        base_points=base_points,
        streak_bonus_xp=streak_xp,
        streak_bonus_points=streak_points,
        first_time_bonus_xp=first_xp,
        first_time_bonus_points=first_points,
        diversity_bonus_xp=diversity_xp,
        diversity_bonus_points=diversity_points,
    )


def validate_share_limits(app: SharedApp, user: Sharer, history: ShareHistory, now: datetime) -> None:
    """Raise ValidationError with the first limit the share breaks, checked in a fixed order."""
    rules = app.share_rules
    code = None
    if history.user_shares_today >= rules.daily_user_limit:
        code = "user_daily_limit_exceeded"
    elif history.global_shares_today >= rules.daily_global_limit:
        code = "global_daily_limit_exceeded"
    elif (
        history.last_share_at is not None
        and ensure_utc(now) - ensure_utc(history.last_share_at) < timedelta(minutes=rules.cooldown_minutes)  # type: ignore[operator]
    ):
        code = "cooldown_active"
    elif user.level < rules.min_user_level:
        code = "level_too_low"
    elif not app.has_budget:
        code = "app_budget_exhausted"

    if code is not None:
        logger.info("share_limit_rejected", user_id=user.user_id, app_id=app.app_id, code=code)
        raise ValidationError(f"Share of {app.app_id} by {user.user_id} refused: {code}", code=code)
