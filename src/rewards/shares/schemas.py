"""Value objects for regular (non-tournament) app shares."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class ShareRules(BaseModel):
    """Per-app sharing limits. Counts are per UTC day."""

    model_config = ConfigDict(frozen=True)

    daily_user_limit: int = Field(default=10, ge=0)
    daily_global_limit: int = Field(default=1000, ge=0)
    cooldown_minutes: int = Field(default=30, ge=0)
    min_user_level: int = Field(default=1, ge=1)


class SharedApp(BaseModel):
    model_config = ConfigDict(frozen=True)

    app_id: str
    xp: int = Field(default=0, ge=0)
    points: int = Field(default=0, ge=0)
    categories: frozenset[str] = frozenset()
    share_rules: ShareRules = Field(default_factory=ShareRules)
    has_budget: bool = True


class Sharer(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    level: int = Field(default=1, ge=1)
    sharing_streak_days: int = Field(default=0, ge=0)


class ShareHistory(BaseModel):
    """What the caller already knows about earlier shares of this app by this user.

    ``verified_app_shares`` counts the user's verified shares of the app,
    ``shared_categories`` is the union of categories over every app the user
    has a verified share of, and the two ``*_today`` counts cover the app on
    the current UTC day.
    """

    model_config = ConfigDict(frozen=True)

    verified_app_shares: int = Field(default=0, ge=0)
    shared_categories: frozenset[str] = frozenset()
    user_shares_today: int = Field(default=0, ge=0)
    global_shares_today: int = Field(default=0, ge=0)
    last_share_at: datetime | None = None


class RegularShareReward(BaseModel):
    model_config = ConfigDict(frozen=True)

    base_xp: int
    base_points: int
    streak_bonus_xp: int = 0
    streak_bonus_points: int = 0
    first_time_bonus_xp: int = 0
    first_time_bonus_points: int = 0
    diversity_bonus_xp: int = 0
    diversity_bonus_points: int = 0

    @property
    def total_xp(self) -> int:
        return self.base_xp + self.streak_bonus_xp + self.first_time_bonus_xp + self.diversity_bonus_xp

    @property
    def total_points(self) -> int:
        return (
            self.base_points + self.streak_bonus_points + self.first_time_bonus_points + self.diversity_bonus_points
        )
