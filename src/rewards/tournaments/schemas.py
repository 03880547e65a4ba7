"""Value objects for tournaments, participants, scoring and prizes."""

from __future__ import annotations

import math
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, computed_field

from rewards.errors import ValidationError


class TournamentStatus(str, Enum):
    DRAFT = "draft"
    SCHEDULED = "scheduled"
    LIVE = "live"
    COMPLETED = "completed"
    PRIZES_DISTRIBUTED = "prizes_distributed"
    CANCELLED = "cancelled"


class TournamentCategory(str, Enum):
    WEEKLY_CHALLENGE = "weekly_challenge"
    MONTHLY_CHAMPIONSHIP = "monthly_championship"
    SPECIAL_EVENT = "special_event"
    SEASONAL = "seasonal"
    CATEGORY_SPECIFIC = "category_specific"


class ScoringMethod(str, Enum):
    SHARES_COUNT = "shares_count"
    XP_EARNED = "xp_earned"
    POINTS_EARNED = "points_earned"
    WEIGHTED_SCORE = "weighted_score"


class PrizeTier(str, Enum):
    FIRST_PLACE = "first_place"
    SECOND_PLACE = "second_place"
    THIRD_PLACE = "third_place"
    TOP_10 = "top_10"
    PARTICIPATION = "participation"


class RegistrationStatus(str, Enum):
    REGISTERED = "registered"
    WITHDRAWN = "withdrawn"


class AppealStatus(str, Enum):
    NONE = "none"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ShareValidationStatus(str, Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


GLOBAL_REGION = "GLOBAL"


# --- Definitions ---


class Prize(BaseModel):
    model_config = ConfigDict(frozen=True)

    xp: int = Field(default=0, ge=0)
    points: int = Field(default=0, ge=0)
    cash: float = Field(default=0.0, ge=0)


class TournamentDefinition(BaseModel):
    model_config = ConfigDict(frozen=True)

    tournament_id: str
    name: str = ""
    category: str = TournamentCategory.WEEKLY_CHALLENGE.value
    start_date: datetime
    end_date: datetime
    registration_deadline: datetime | None = None
    scoring_method: ScoringMethod = ScoringMethod.SHARES_COUNT
    bonus_multiplier: float = Field(default=1.0, gt=0)
    min_level: int = 1
    max_participants: int | None = None
    eligible_regions: frozenset[str] = frozenset({GLOBAL_REGION})
    is_featured: bool = False
    prizes: dict[PrizeTier, Prize] = Field(default_factory=dict)
    status: TournamentStatus = TournamentStatus.DRAFT
    total_participants: int = 0
    prizes_distributed_at: datetime | None = None

    @property
    def is_special(self) -> bool:
        return self.category == TournamentCategory.SPECIAL_EVENT.value or self.is_featured

    def admits_region(self, region: str | None) -> bool:
        if not self.eligible_regions or GLOBAL_REGION in self.eligible_regions:
            return True
        return region is not None and region in self.eligible_regions


# --- Participants ---


class BonusMultipliers(BaseModel):
    """Per-participant multipliers. Each component is at least 1.0."""

    model_config = ConfigDict(frozen=True)

    early_bird: float = Field(default=1.0, ge=1.0)
    streak_bonus: float = Field(default=1.0, ge=1.0)
    performance_bonus: float = Field(default=1.0, ge=1.0)
    referral_bonus: float = Field(default=1.0, ge=1.0)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_multiplier(self) -> float:
        return math.prod((self.early_bird, self.streak_bonus, self.performance_bonus, self.referral_bonus))

    def with_bonus(self, kind: str, value: float) -> BonusMultipliers:
        """Copy with one component replaced; rejects unknown kinds and values below 1.0."""
        if kind not in type(self).model_fields:
            raise ValidationError(f"Unknown bonus multiplier: {kind}", code="invalid_bonus")
        if value < 1.0:
            raise ValidationError(f"Bonus multiplier {kind} must be >= 1.0, got {value}", code="invalid_bonus")
        return self.model_copy(update={kind: float(value)})


class TournamentParticipant(BaseModel):
    model_config = ConfigDict(frozen=True)

    tournament_id: str
    user_id: str
    registered_at: datetime
    registration_status: RegistrationStatus = RegistrationStatus.REGISTERED

    score: int = 0
    verified_shares: int = 0
    total_xp_earned: int = 0
    total_points_earned: int = 0
    best_share_score: int = 0
    current_streak: int = 0
    longest_streak: int = 0
    days_participated: int = 0
    first_share_at: datetime | None = None
    last_share_at: datetime | None = None

    current_rank: int | None = None
    previous_rank: int | None = None

    multipliers: BonusMultipliers = Field(default_factory=BonusMultipliers)

    prize_tier: PrizeTier | None = None
    prize_xp: int = 0
    prize_points: int = 0
    prize_cash: float = 0.0
    prize_claimed: bool = False
    prize_claimed_at: datetime | None = None

    is_disqualified: bool = False
    disqualification_reason: str | None = None
    disqualified_at: datetime | None = None
    disqualified_by: str | None = None
    appeal_status: AppealStatus = AppealStatus.NONE
    appeal_submitted_at: datetime | None = None
    appeal_decision_at: datetime | None = None
    appeal_decision_by: str | None = None

    @property
    def is_competing(self) -> bool:
        return self.registration_status == RegistrationStatus.REGISTERED and not self.is_disqualified

    @property
    def rank_change(self) -> int | None:
        if self.current_rank is None or self.previous_rank is None:
            return None
        return self.previous_rank - self.current_rank


class Registrant(BaseModel):
    """Account facts checked at registration time."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    is_active: bool = True
    level: int = 1
    region: str | None = None


class ShareEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    share_id: str
    user_id: str
    tournament_id: str | None = None
    app_id: str | None = None
    xp_awarded: int = Field(default=0, ge=0)
    points_awarded: int = Field(default=0, ge=0)
    validation_status: ShareValidationStatus = ShareValidationStatus.VERIFIED
    created_at: datetime

    @property
    def is_verified(self) -> bool:
        return self.validation_status == ShareValidationStatus.VERIFIED


# --- Results ---


class LeaderboardEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    position: int
    rank: int
    user_id: str
    score: int
    registered_at: datetime
    previous_rank: int | None = None
    rank_change: int | None = None
    percentile: float = 0.0


class ShareRewardBreakdown(BaseModel):
    """Per-share reward: every bonus is added unrounded, the totals are rounded once."""

    model_config = ConfigDict(frozen=True)

    base_xp: int
    base_points: int
    tournament_xp: float = 0.0
    tournament_points: float = 0.0
    performance_xp: float = 0.0
    performance_points: float = 0.0
    streak_xp: float = 0.0
    streak_points: float = 0.0
    special_event_xp: float = 0.0
    special_event_points: float = 0.0
    total_xp: int
    total_points: int


class ScoreUpdate(BaseModel):
    model_config = ConfigDict(frozen=True)

    participant: TournamentParticipant
    share_score: int
    reward: ShareRewardBreakdown | None = None
    duplicate: bool = False
    leaderboard: list[LeaderboardEntry] = Field(default_factory=list)


class PrizeWinner(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    rank: int
    tier: PrizeTier
    xp: int = 0
    points: int = 0
    cash: float = 0.0


class DistributionResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    tournament_id: str
    distributed_at: datetime
    winners: list[PrizeWinner] = Field(default_factory=list)
    total_xp: int = 0
    total_points: int = 0
    total_cash: float = 0.0

    @property
    def totals_by_kind(self) -> dict[str, float]:
        return {"xp": self.total_xp, "points": self.total_points, "cash": self.total_cash}


class ScoreDistribution(BaseModel):
    model_config = ConfigDict(frozen=True)

    average: float = 0.0
    median: float = 0.0
    top_10_percent: int = 0
    top_25_percent: int = 0
    top_50_percent: int = 0


class TournamentAnalytics(BaseModel):
    model_config = ConfigDict(frozen=True)

    tournament_id: str
    registered_participants: int = 0
    total_shares: int = 0
    unique_sharers: int = 0
    total_xp_distributed: int = 0
    total_points_distributed: int = 0
    average_shares_per_sharer: float = 0.0
    conversion_rate: float = 0.0
    scores: ScoreDistribution = Field(default_factory=ScoreDistribution)
