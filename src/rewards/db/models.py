"""ORM tables backing the SQL repository adapters.

The engine reads and commits through these tables only inside the
repository adapters; every other module works on the pydantic value
objects in the domain packages.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from rewards.db.base import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")


# ---------------------------------------------------------------------------
# Badges
# ---------------------------------------------------------------------------


class BadgeDefinition(Base):
    __tablename__ = "badge_definitions"

    badge_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    classification: Mapped[str] = mapped_column(String(32), nullable=False, default="achievement")
    criteria_type: Mapped[str] = mapped_column(String(32), nullable=False)
    threshold_value: Mapped[float] = mapped_column(Float, nullable=False)
    threshold_operator: Mapped[str] = mapped_column(String(2), nullable=False, default=">=")
    rarity: Mapped[str] = mapped_column(String(16), nullable=False, default="common")
    xp_reward: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    points_reward: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_repeatable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    cooldown_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    prerequisite_badges: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    exclusive_with: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    seasonal_start: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    seasonal_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    users_achieved_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class UserStats(Base):
    """Denormalized counters per user. ``version`` is bumped by every committed grant."""

    __tablename__ = "user_stats"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    current_xp: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    current_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_xp_earned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_points_earned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_apps_shared: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_tournaments_won: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    sharing_streak_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    successful_referrals_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    user_level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    earned_badge_ids: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    total_badges_earned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    unique_categories_shared: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    unique_apps_shared: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_payouts_received: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class UserBadge(Base):
    """Grant records. UNIQUE(grant_key) turns a lost grant race into an IntegrityError."""

    __tablename__ = "user_badges"
    __table_args__ = (
        Index("ix_user_badges_user_badge", "user_id", "badge_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    badge_id: Mapped[str] = mapped_column(String(64), ForeignKey("badge_definitions.badge_id"), nullable=False)
    grant_key: Mapped[str] = mapped_column(String(200), unique=True, nullable=False)
    earned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    xp_awarded: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    points_awarded: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    achievement_value: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    streak_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    context: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)


class BadgeProgress(Base):
    __tablename__ = "badge_progress"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    badge_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    current_value: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    percent_complete: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    last_updated: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# ---------------------------------------------------------------------------
# Tournaments
# ---------------------------------------------------------------------------


class Tournament(Base):
    __tablename__ = "tournaments"

    tournament_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    category: Mapped[str] = mapped_column(String(32), nullable=False, default="weekly_challenge")
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    registration_deadline: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    scoring_method: Mapped[str] = mapped_column(String(32), nullable=False, default="shares_count")
    bonus_multiplier: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    min_level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    max_participants: Mapped[int | None] = mapped_column(Integer, nullable=True)
    eligible_regions: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    is_featured: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    prizes: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="draft")
    total_participants: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    prizes_distributed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class TournamentParticipant(Base):
    __tablename__ = "tournament_participants"
    __table_args__ = (
        UniqueConstraint("tournament_id", "user_id", name="tournament_participants_tournament_user_key"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tournament_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("tournaments.tournament_id", ondelete="CASCADE"), nullable=False,
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    registered_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    registration_status: Mapped[str] = mapped_column(String(16), nullable=False, default="registered")

    # Performance
    score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    verified_shares: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_xp_earned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_points_earned: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    best_share_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    current_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    longest_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    days_participated: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    first_share_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_share_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Leaderboard
    current_rank: Mapped[int | None] = mapped_column(Integer, nullable=True)
    previous_rank: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Multipliers; total_multiplier is stored for reads but always recomputed on write
    early_bird: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    streak_bonus: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    performance_bonus: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    referral_bonus: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    total_multiplier: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)

    # Prize
    prize_tier: Mapped[str | None] = mapped_column(String(16), nullable=True)
    prize_xp: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    prize_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    prize_cash: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    prize_claimed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    prize_claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Disqualification and appeal
    is_disqualified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    disqualification_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    disqualified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    disqualified_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    appeal_status: Mapped[str] = mapped_column(String(16), nullable=False, default="none")
    appeal_submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    appeal_decision_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    appeal_decision_by: Mapped[str | None] = mapped_column(String(64), nullable=True)


class ShareEvent(Base):
    __tablename__ = "share_events"
    __table_args__ = (
        Index("ix_share_events_tournament_user", "tournament_id", "user_id"),
    )

    share_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    tournament_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    app_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    xp_awarded: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    points_awarded: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    validation_status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class PrizeAward(Base):
    """One row per (tournament, user); the unique key makes prize crediting idempotent."""

    __tablename__ = "prize_awards"
    __table_args__ = (
        UniqueConstraint("tournament_id", "user_id", name="prize_awards_tournament_user_key"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tournament_id: Mapped[str] = mapped_column(String(64), ForeignKey("tournaments.tournament_id"), nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    rank: Mapped[int] = mapped_column(Integer, nullable=False)
    tier: Mapped[str] = mapped_column(String(16), nullable=False)
    xp: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    cash: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    awarded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# ---------------------------------------------------------------------------
# Payouts
# ---------------------------------------------------------------------------


class UserProfile(Base):
    """Account facts the payout rules need beyond the counters in user_stats."""

    __tablename__ = "user_profiles"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    kyc_status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    region: Mapped[str | None] = mapped_column(String(16), nullable=True)
    base_risk_score: Mapped[int] = mapped_column(Integer, nullable=False, default=30)


class Payment(Base):
    __tablename__ = "payments"
    __table_args__ = (
        Index("ix_payments_user_created", "user_id", "created_at"),
    )

    payment_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    method: Mapped[str] = mapped_column(String(32), nullable=False)
    details: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    fee: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    final_amount: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    risk_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    risk_level: Mapped[str] = mapped_column(String(16), nullable=False, default="low")
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    transaction_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    error_code: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
