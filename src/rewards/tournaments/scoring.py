"""Tournament scoring.

Pure rules first (base score per scoring method, per-share reward bonuses,
per-share score, participation streaks), then ``TournamentScorer``, which
serializes the write per (tournament, user) and recomputes the leaderboard
as a lock-free snapshot sort afterwards.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date, datetime, timedelta

import structlog

from rewards.config import Settings, get_settings
from rewards.errors import NotFoundError, ValidationError
from rewards.locks import KeyedLock, LocalKeyedLock
from rewards.shares.schemas import RegularShareReward
from rewards.time_utils import ensure_utc, round_half_up, utc_day
from rewards.tournaments.leaderboard import rank_participants, ranks_by_user
from rewards.tournaments.repository import TournamentRepository
from rewards.tournaments.schemas import (
    BonusMultipliers,
    LeaderboardEntry,
    ScoreUpdate,
    ScoringMethod,
    ShareEvent,
    ShareRewardBreakdown,
    TournamentDefinition,
    TournamentParticipant,
    TournamentStatus,
)

logger = structlog.get_logger()

WEIGHTED_XP = 0.6
WEIGHTED_POINTS = 0.4

# (max rank / participants, xp rate, points rate), best tier first
PERFORMANCE_TIERS: list[tuple[float, float, float]] = [
    (0.10, 0.30, 0.15),
    (0.25, 0.20, 0.10),
    (0.50, 0.10, 0.05),
]

STREAK_MIN_DAYS = 3
STREAK_XP_PER_DAY = 20
STREAK_POINTS_PER_DAY = 5

SPECIAL_EVENT_XP_RATE = 0.20
SPECIAL_EVENT_POINTS_RATE = 0.10

HIGH_VALUE_XP = 100
HIGH_VALUE_POINTS = 10
EARLY_SHARE_WINDOW = timedelta(hours=24)


def _own_verified(shares: Iterable[ShareEvent], user_id: str) -> list[ShareEvent]:
    return [s for s in shares if s.is_verified and s.user_id == user_id]


def base_score(shares: Iterable[ShareEvent], scoring_method: ScoringMethod) -> float:
    """Unmultiplied score over verified shares."""
    verified = [s for s in shares if s.is_verified]
    if scoring_method == ScoringMethod.SHARES_COUNT:
        return float(len(verified))
    if scoring_method == ScoringMethod.XP_EARNED:
        return float(sum(s.xp_awarded for s in verified))
    if scoring_method == ScoringMethod.POINTS_EARNED:
        return float(sum(s.points_awarded for s in verified))
    if scoring_method == ScoringMethod.WEIGHTED_SCORE:
        return sum(WEIGHTED_XP * s.xp_awarded + WEIGHTED_POINTS * s.points_awarded for s in verified)
    raise ValidationError(f"Unknown scoring method: {scoring_method}", code="invalid_scoring_method")


def score(
    participant: TournamentParticipant,
    shares: Iterable[ShareEvent],
    rules: TournamentDefinition,
) -> int:
    """Participant's total: base score times the tournament multiplier, rounded half-up."""
    own = _own_verified(shares, participant.user_id)
    return round_half_up(base_score(own, rules.scoring_method) * rules.bonus_multiplier)


def performance_rates(rank: int | None, total_participants: int) -> tuple[float, float]:
    if rank is None or rank <= 0 or total_participants <= 0:
        return 0.0, 0.0
    ratio = rank / total_participants
    for cutoff, xp_rate, points_rate in PERFORMANCE_TIERS:
        if ratio <= cutoff:
            return xp_rate, points_rate
    return 0.0, 0.0


def participation_days(shares: Iterable[ShareEvent]) -> set[date]:
    return {utc_day(s.created_at) for s in shares if s.is_verified}


def calculate_share_reward(
    share: ShareEvent,
    tournament: TournamentDefinition,
    rank: int | None,
    total_participants: int,
    unique_days: int,
    regular: RegularShareReward | None = None,
) -> ShareRewardBreakdown:
    """Reward for one share with every bonus added before a single rounding.

    The base is the regular app-share reward when one is given, else what the
    share event already carries.
    """
    if regular is not None:
        base_xp, base_points = regular.total_xp, regular.total_points
    else:
        base_xp, base_points = share.xp_awarded, share.points_awarded

    multiplier_bonus = tournament.bonus_multiplier - 1
    tournament_xp = base_xp * multiplier_bonus
    tournament_points = base_points * multiplier_bonus

    xp_rate, points_rate = performance_rates(rank, total_participants)
    performance_xp = base_xp * xp_rate
    performance_points = base_points * points_rate

    streak_xp = streak_points = 0.0
    if unique_days >= STREAK_MIN_DAYS:
        streak_xp = float(STREAK_XP_PER_DAY * unique_days)
        streak_points = float(STREAK_POINTS_PER_DAY * unique_days)

    special_xp = special_points = 0.0
    if tournament.is_special:
        special_xp = base_xp * SPECIAL_EVENT_XP_RATE
        special_points = base_points * SPECIAL_EVENT_POINTS_RATE

    return ShareRewardBreakdown(
        base_xp=base_xp,
        base_points=base_points,
        tournament_xp=tournament_xp,
        tournament_points=tournament_points,
        performance_xp=performance_xp,
        performance_points=performance_points,
        streak_xp=streak_xp,
        streak_points=streak_points,
        special_event_xp=special_xp,
        special_event_points=special_points,
        total_xp=round_half_up(base_xp + tournament_xp + performance_xp + streak_xp + special_xp),
        total_points=round_half_up(
            base_points + tournament_points + performance_points + streak_points + special_points
        ),
    )


def is_early_share(share: ShareEvent, tournament: TournamentDefinition) -> bool:
    """Shared within the first 24 hours after the tournament started."""
    elapsed = ensure_utc(share.created_at) - ensure_utc(tournament.start_date)  # type: ignore[operator]
    return timedelta(0) <= elapsed <= EARLY_SHARE_WINDOW


def share_score(share: ShareEvent, tournament: TournamentDefinition, multipliers: BonusMultipliers) -> int:
    """1 per share, +2 for a high-value share, +1 for an early share, times the participant multiplier."""
    points = 1
    if share.xp_awarded > HIGH_VALUE_XP or share.points_awarded > HIGH_VALUE_POINTS:
        points += 2
    if is_early_share(share, tournament):
        points += 1
    return round_half_up(points * multipliers.total_multiplier)


def streak_after(
    current_streak: int,
    longest_streak: int,
    last_share_at: datetime | None,
    share_at: datetime,
) -> tuple[int, int]:
    """(current, longest) streak once a share on ``share_at`` is counted."""
    share_day = utc_day(share_at)
    if last_share_at is not None:
        last_day = utc_day(last_share_at)
        if share_day <= last_day:
            return current_streak, longest_streak
        current = current_streak + 1 if share_day - last_day == timedelta(days=1) else 1
    else:
        current = 1
    return current, max(longest_streak, current)


class TournamentScorer:
    """Applies a share to a participant and refreshes the leaderboard."""

    def __init__(
        self,
        repository: TournamentRepository,
        lock: KeyedLock | None = None,
        settings: Settings | None = None,
    ) -> None:
        settings = settings or get_settings()
        self.repository = repository
        self.lock = lock or LocalKeyedLock(wait_seconds=settings.lock_wait_seconds)
        self.top_n = settings.leaderboard_top_n

    async def update_score(self, tournament_id: str, share: ShareEvent) -> ScoreUpdate:
        """Record a share and recompute the sharer's score.

        A share id seen before is reported as ``duplicate`` and changes nothing.
        """
        if share.tournament_id not in (None, tournament_id):
            raise ValidationError(
                f"Share {share.share_id} belongs to tournament {share.tournament_id}", code="tournament_mismatch",
            )
        share = share.model_copy(update={"tournament_id": tournament_id})

        async with self.lock.hold(f"score:{tournament_id}:{share.user_id}"):
            update = await self._apply_share(tournament_id, share)

        if update.reward is None:
            return update

        leaderboard = await self.refresh_leaderboard(tournament_id)
        rank = ranks_by_user(leaderboard).get(share.user_id)
        participant = update.participant
        if rank is not None and rank != participant.current_rank:
            participant = participant.model_copy(
                update={"previous_rank": participant.current_rank, "current_rank": rank},
            )
        return update.model_copy(update={"participant": participant, "leaderboard": leaderboard[: self.top_n]})

    async def refresh_leaderboard(self, tournament_id: str) -> list[LeaderboardEntry]:
        """Re-rank from the current participant set and persist rank movements."""
        participants = await self.repository.list_participants(tournament_id)
        entries = rank_participants(participants)
        await self.repository.save_ranks(tournament_id, ranks_by_user(entries))
        return entries

    async def _apply_share(self, tournament_id: str, share: ShareEvent) -> ScoreUpdate:
        tournament = await self.repository.get_tournament(tournament_id)
        if tournament is None:
            raise NotFoundError(f"Tournament {tournament_id} not found")
        if tournament.status != TournamentStatus.LIVE:
            raise ValidationError(
                f"Tournament {tournament_id} is {tournament.status.value}, not live", code="tournament_not_live",
            )
        if not ensure_utc(tournament.start_date) <= ensure_utc(share.created_at) <= ensure_utc(tournament.end_date):  # type: ignore[operator]
            raise ValidationError(
                f"Share {share.share_id} is outside the tournament window", code="outside_tournament_window",
            )

        participant = await self.repository.get_participant(tournament_id, share.user_id)
        if participant is None:
            raise NotFoundError(f"User {share.user_id} is not registered in {tournament_id}")
        if not participant.is_competing:
            raise ValidationError(
                f"User {share.user_id} cannot score in {tournament_id}", code="participant_not_eligible",
            )

        if not await self.repository.record_share(share):
            logger.info("share_already_recorded", tournament_id=tournament_id, share_id=share.share_id)
            return ScoreUpdate(participant=participant, share_score=0, duplicate=True)
        if not share.is_verified:
            return ScoreUpdate(participant=participant, share_score=0)

        shares = _own_verified(await self.repository.list_shares(tournament_id, share.user_id), share.user_id)
        days = participation_days(shares)
        reward = calculate_share_reward(
            share, tournament, participant.current_rank, tournament.total_participants, len(days),
        )
        this_score = share_score(share, tournament, participant.multipliers)
        current, longest = streak_after(
            participant.current_streak,
            participant.longest_streak,
            participant.last_share_at,
            share.created_at,
        )
        first = participant.first_share_at
        last = participant.last_share_at
        updated = participant.model_copy(update={
            "score": score(participant, shares, tournament),
            "verified_shares": len(shares),
            "total_xp_earned": sum(s.xp_awarded for s in shares),
            "total_points_earned": sum(s.points_awarded for s in shares),
            "best_share_score": max(participant.best_share_score, this_score),
            "current_streak": current,
            "longest_streak": longest,
            "days_participated": len(days),
            "first_share_at": share.created_at if first is None else min(ensure_utc(first), ensure_utc(share.created_at)),  # type: ignore[type-var]
            "last_share_at": share.created_at if last is None else max(ensure_utc(last), ensure_utc(share.created_at)),  # type: ignore[type-var]
        })
        await self.repository.save_participant(updated)

        logger.info(
            "tournament_score_updated",
            tournament_id=tournament_id,
            user_id=share.user_id,
            score=updated.score,
            share_score=this_score,
            reward_xp=reward.total_xp,
            reward_points=reward.total_points,
        )
        return ScoreUpdate(participant=updated, share_score=this_score, reward=reward)
