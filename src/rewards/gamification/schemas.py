"""Value objects for badge evaluation and granting."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class CriteriaType(str, Enum):
    XP_THRESHOLD = "xp_threshold"
    POINTS_EARNED = "points_earned"
    SHARES_COUNT = "shares_count"
    TOURNAMENTS_WON = "tournaments_won"
    STREAK_DAYS = "streak_days"
    REFERRALS_COUNT = "referrals_count"
    LEVEL_REACHED = "level_reached"
    CONSECUTIVE_DAYS = "consecutive_days"
    CATEGORY_DIVERSITY = "category_diversity"
    APP_DIVERSITY = "app_diversity"
    TOTAL_PAYOUTS = "total_payouts"
    BADGE_COUNT = "badge_count"


class ThresholdOperator(str, Enum):
    GTE = ">="
    EQ = "=="
    LTE = "<="
    GT = ">"
    LT = "<"
    NE = "!="


class BadgeClassification(str, Enum):
    ACHIEVEMENT = "achievement"
    MILESTONE = "milestone"
    SPECIAL_EVENT = "special_event"
    SEASONAL = "seasonal"
    REFERRAL = "referral"
    TOURNAMENT = "tournament"


class Rarity(str, Enum):
    COMMON = "common"
    RARE = "rare"
    EPIC = "epic"
    LEGENDARY = "legendary"
    MYTHIC = "mythic"


class ReasonCode(str, Enum):
    ELIGIBLE = "eligible"
    BADGE_NOT_FOUND = "badge_not_found"
    USER_NOT_FOUND = "user_not_found"
    ALREADY_EARNED = "already_earned"
    COOLDOWN_ACTIVE = "cooldown_active"
    OUTSIDE_SEASONAL_PERIOD = "outside_seasonal_period"
    PREREQUISITE_MISSING = "prerequisite_missing"
    EXCLUSIVE_CONFLICT = "exclusive_conflict"
    THRESHOLD_NOT_MET = "threshold_not_met"
    INVALID_CONFIGURATION = "invalid_configuration"
    GRANT_CONFLICT = "grant_conflict"


# --- Definitions ---


class SeasonalWindow(BaseModel):
    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime


class BadgeDefinition(BaseModel):
    """Immutable during evaluation; edited only through the admin channel.

    ``criteria_type`` and ``threshold_operator`` stay plain strings so a
    malformed row loads and is reported as a configuration error instead of
    failing the whole badge list.
    """

    model_config = ConfigDict(frozen=True)

    badge_id: str
    name: str = ""
    classification: str = BadgeClassification.ACHIEVEMENT.value
    criteria_type: str
    threshold_value: float
    threshold_operator: str = ThresholdOperator.GTE.value
    rarity: str = Rarity.COMMON.value
    xp_reward: int = Field(default=0, ge=0)
    points_reward: int = Field(default=0, ge=0)
    is_active: bool = True
    is_repeatable: bool = False
    cooldown_days: int = Field(default=0, ge=0)
    prerequisite_badges: frozenset[str] = frozenset()
    exclusive_with: frozenset[str] = frozenset()
    seasonal_window: SeasonalWindow | None = None
    users_achieved_count: int = 0


# --- Snapshot and deltas ---


class RewardDelta(BaseModel):
    """Counter changes produced by one grant; applied by the repository in one commit."""

    model_config = ConfigDict(frozen=True)

    xp: int = 0
    points: int = 0
    badge_id: str | None = None
    record_earned: bool = False
    badges_earned: int = 0
    new_level: int = 1


class StatsSnapshot(BaseModel):
    """Read-only aggregate of one user's counters at a single point in time.

    ``version`` is the optimistic concurrency token of the underlying row; a
    grant commits only if the row is still at the version it was read at.
    """

    model_config = ConfigDict(frozen=True)

    user_id: str
    current_xp: int = 0
    current_points: int = 0
    total_xp_earned: int = 0
    total_points_earned: int = 0
    total_apps_shared: int = 0
    total_tournaments_won: int = 0
    sharing_streak_days: int = 0
    successful_referrals_count: int = 0
    user_level: int = 1
    earned_badge_ids: frozenset[str] = frozenset()
    total_badges_earned: int = 0
    unique_categories_shared: int = 0
    unique_apps_shared: int = 0
    total_payouts_received: int = 0
    version: int = 0
    taken_at: datetime | None = None

    def apply(self, delta: RewardDelta) -> StatsSnapshot:
        """Return the snapshot as it reads after ``delta`` commits."""
        earned = self.earned_badge_ids
        if delta.record_earned and delta.badge_id is not None:
            earned = earned | {delta.badge_id}
        return self.model_copy(update={
            "current_xp": self.current_xp + delta.xp,
            "current_points": self.current_points + delta.points,
            "total_xp_earned": self.total_xp_earned + delta.xp,
            "total_points_earned": self.total_points_earned + delta.points,
            "total_badges_earned": self.total_badges_earned + delta.badges_earned,
            "earned_badge_ids": earned,
            "user_level": delta.new_level,
            "version": self.version + 1,
        })


# --- Records ---


class UserBadgeGrant(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    badge_id: str
    grant_key: str
    earned_at: datetime
    xp_awarded: int
    points_awarded: int
    achievement_value: float
    streak_count: int = 1
    context: dict[str, Any] = Field(default_factory=dict)


class BadgeProgress(BaseModel):
    """Best-effort UI hint; never consulted when gating a grant."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    badge_id: str
    current_value: float
    percent_complete: float = Field(ge=0, le=100)
    last_updated: datetime


# --- Results ---


class EligibilityResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    badge_id: str
    eligible: bool
    reason: ReasonCode
    current_value: float = 0
    required_value: float = 0
    progress_percent: float = 0


class GrantResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool
    badge_id: str
    reason: ReasonCode
    xp_awarded: int = 0
    points_awarded: int = 0
    new_level: int | None = None
    level_changed: bool = False
    total_badges_earned: int | None = None
    grant: UserBadgeGrant | None = None

    @classmethod
    def failure(cls, badge_id: str, reason: ReasonCode) -> GrantResult:
        return cls(success=False, badge_id=badge_id, reason=reason)


class BatchGrantResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    trigger_event: str
    badges_evaluated: int
    granted: list[GrantResult] = Field(default_factory=list)
    total_xp_awarded: int = 0
    total_points_awarded: int = 0
    new_level: int = 1
    level_changed: bool = False
    progress: list[BadgeProgress] = Field(default_factory=list)


class ClosestBadge(BaseModel):
    model_config = ConfigDict(frozen=True)

    badge_id: str
    name: str
    rarity: str
    current_value: float
    threshold_value: float
    progress_percent: float
