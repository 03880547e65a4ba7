"""Tournament repository contract and its SQLAlchemy adapter."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import Protocol

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rewards.db import models
from rewards.errors import AlreadyDistributedError, AlreadyRegisteredError, NotFoundError, PrizeAlreadyClaimedError
from rewards.gamification.levels import compute_level
from rewards.time_utils import ensure_utc
from rewards.tournaments.schemas import (
    AppealStatus,
    BonusMultipliers,
    Prize,
    PrizeTier,
    PrizeWinner,
    Registrant,
    RegistrationStatus,
    ShareEvent,
    ShareValidationStatus,
    TournamentDefinition,
    TournamentParticipant,
    TournamentStatus,
)


class TournamentRepository(Protocol):
    async def get_tournament(self, tournament_id: str) -> TournamentDefinition | None: ...

    async def set_status(
        self, tournament_id: str, expected: TournamentStatus, target: TournamentStatus,
    ) -> bool:
        """Move the status only if it still reads ``expected``. Returns whether it moved."""
        ...

    async def get_registrant(self, user_id: str) -> Registrant | None: ...

    async def get_participant(self, tournament_id: str, user_id: str) -> TournamentParticipant | None: ...

    async def list_participants(self, tournament_id: str) -> list[TournamentParticipant]: ...

    async def add_participant(self, participant: TournamentParticipant) -> None:
        """Insert and bump ``total_participants``; AlreadyRegisteredError on a duplicate."""
        ...

    async def save_participant(self, participant: TournamentParticipant) -> None: ...

    async def save_ranks(self, tournament_id: str, ranks: Mapping[str, int]) -> None:
        """Store new ranks, shifting the old current rank into previous where it moved."""
        ...

    async def record_share(self, share: ShareEvent) -> bool:
        """Store a share event. False when the share id is already recorded."""
        ...

    async def list_shares(self, tournament_id: str, user_id: str | None = None) -> list[ShareEvent]: ...

    async def commit_prizes(
        self, tournament_id: str, winners: Sequence[PrizeWinner], distributed_at: datetime,
    ) -> None:
        """Flip completed -> prizes_distributed and credit every winner in one commit.

        Raises AlreadyDistributedError when the status flip finds the
        tournament no longer ``completed``.
        """
        ...

    async def mark_prize_claimed(self, tournament_id: str, user_id: str, claimed_at: datetime) -> TournamentParticipant:
        """Raises PrizeAlreadyClaimedError when the claim was already recorded."""
        ...


# ---------------------------------------------------------------------------
# Row mapping
# ---------------------------------------------------------------------------


def tournament_from_row(row: models.Tournament) -> TournamentDefinition:
    return TournamentDefinition(
        tournament_id=row.tournament_id,
        name=row.name,
        category=row.category,
        start_date=ensure_utc(row.start_date),
        end_date=ensure_utc(row.end_date),
        registration_deadline=ensure_utc(row.registration_deadline),
        scoring_method=row.scoring_method,
        bonus_multiplier=row.bonus_multiplier,
        min_level=row.min_level,
        max_participants=row.max_participants,
        eligible_regions=frozenset(row.eligible_regions or ()),
        is_featured=row.is_featured,
        prizes={PrizeTier(tier): Prize(**prize) for tier, prize in (row.prizes or {}).items()},
        status=TournamentStatus(row.status),
        total_participants=row.total_participants,
        prizes_distributed_at=ensure_utc(row.prizes_distributed_at),
    )


def tournament_to_row(tournament: TournamentDefinition) -> models.Tournament:
    return models.Tournament(
        tournament_id=tournament.tournament_id,
        name=tournament.name,
        category=tournament.category,
        start_date=tournament.start_date,
        end_date=tournament.end_date,
        registration_deadline=tournament.registration_deadline,
        scoring_method=tournament.scoring_method.value,
        bonus_multiplier=tournament.bonus_multiplier,
        min_level=tournament.min_level,
        max_participants=tournament.max_participants,
        eligible_regions=sorted(tournament.eligible_regions),
        is_featured=tournament.is_featured,
        prizes={tier.value: prize.model_dump() for tier, prize in tournament.prizes.items()},
        status=tournament.status.value,
        total_participants=tournament.total_participants,
        prizes_distributed_at=tournament.prizes_distributed_at,
    )


def participant_from_row(row: models.TournamentParticipant) -> TournamentParticipant:
    return TournamentParticipant(
        tournament_id=row.tournament_id,
        user_id=row.user_id,
        registered_at=ensure_utc(row.registered_at),
        registration_status=RegistrationStatus(row.registration_status),
        score=row.score,
        verified_shares=row.verified_shares,
        total_xp_earned=row.total_xp_earned,
        total_points_earned=row.total_points_earned,
        best_share_score=row.best_share_score,
        current_streak=row.current_streak,
        longest_streak=row.longest_streak,
        days_participated=row.days_participated,
        first_share_at=ensure_utc(row.first_share_at),
        last_share_at=ensure_utc(row.last_share_at),
        current_rank=row.current_rank,
        previous_rank=row.previous_rank,
        multipliers=BonusMultipliers(
            early_bird=row.early_bird,
            streak_bonus=row.streak_bonus,
            performance_bonus=row.performance_bonus,
            referral_bonus=row.referral_bonus,
        ),
        prize_tier=PrizeTier(row.prize_tier) if row.prize_tier else None,
        prize_xp=row.prize_xp,
        prize_points=row.prize_points,
        prize_cash=row.prize_cash,
        prize_claimed=row.prize_claimed,
        prize_claimed_at=ensure_utc(row.prize_claimed_at),
        is_disqualified=row.is_disqualified,
        disqualification_reason=row.disqualification_reason,
        disqualified_at=ensure_utc(row.disqualified_at),
        disqualified_by=row.disqualified_by,
        appeal_status=AppealStatus(row.appeal_status),
        appeal_submitted_at=ensure_utc(row.appeal_submitted_at),
        appeal_decision_at=ensure_utc(row.appeal_decision_at),
        appeal_decision_by=row.appeal_decision_by,
    )


def _participant_values(participant: TournamentParticipant) -> dict[str, object]:
    # Rank columns are written only by save_ranks.
    m = participant.multipliers
    return {
        "registered_at": participant.registered_at,
        "registration_status": participant.registration_status.value,
        "score": participant.score,
        "verified_shares": participant.verified_shares,
        "total_xp_earned": participant.total_xp_earned,
        "total_points_earned": participant.total_points_earned,
        "best_share_score": participant.best_share_score,
        "current_streak": participant.current_streak,
        "longest_streak": participant.longest_streak,
        "days_participated": participant.days_participated,
        "first_share_at": participant.first_share_at,
        "last_share_at": participant.last_share_at,
        "early_bird": m.early_bird,
        "streak_bonus": m.streak_bonus,
        "performance_bonus": m.performance_bonus,
        "referral_bonus": m.referral_bonus,
        "total_multiplier": m.total_multiplier,
        "prize_tier": participant.prize_tier.value if participant.prize_tier else None,
        "prize_xp": participant.prize_xp,
        "prize_points": participant.prize_points,
        "prize_cash": participant.prize_cash,
        "prize_claimed": participant.prize_claimed,
        "prize_claimed_at": participant.prize_claimed_at,
        "is_disqualified": participant.is_disqualified,
        "disqualification_reason": participant.disqualification_reason,
        "disqualified_at": participant.disqualified_at,
        "disqualified_by": participant.disqualified_by,
        "appeal_status": participant.appeal_status.value,
        "appeal_submitted_at": participant.appeal_submitted_at,
        "appeal_decision_at": participant.appeal_decision_at,
        "appeal_decision_by": participant.appeal_decision_by,
    }


def share_from_row(row: models.ShareEvent) -> ShareEvent:
    return ShareEvent(
        share_id=row.share_id,
        user_id=row.user_id,
        tournament_id=row.tournament_id,
        app_id=row.app_id,
        xp_awarded=row.xp_awarded,
        points_awarded=row.points_awarded,
        validation_status=ShareValidationStatus(row.validation_status),
        created_at=ensure_utc(row.created_at),
    )


# ---------------------------------------------------------------------------
# SQLAlchemy adapter
# ---------------------------------------------------------------------------


class SqlTournamentRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def create_tournament(self, tournament: TournamentDefinition) -> None:
        async with self._session_factory() as db:
            db.add(tournament_to_row(tournament))
            await db.commit()

    async def get_tournament(self, tournament_id: str) -> TournamentDefinition | None:
        async with self._session_factory() as db:
            row = await db.get(models.Tournament, tournament_id)
            return tournament_from_row(row) if row is not None else None

    async def set_status(
        self, tournament_id: str, expected: TournamentStatus, target: TournamentStatus,
    ) -> bool:
        async with self._session_factory() as db:
            result = await db.execute(
                update(models.Tournament)
                .where(
                    models.Tournament.tournament_id == tournament_id,
                    models.Tournament.status == expected.value,
                )
                .values(status=target.value)
            )
            await db.commit()
            return result.rowcount == 1

    async def get_registrant(self, user_id: str) -> Registrant | None:
        async with self._session_factory() as db:
            profile = await db.get(models.UserProfile, user_id)
            if profile is None:
                return None
            stats = await db.get(models.UserStats, user_id)
            return Registrant(
                user_id=user_id,
                is_active=profile.is_active,
                level=stats.user_level if stats is not None else 1,
                region=profile.region,
            )

    async def _participant_row(self, db: AsyncSession, tournament_id: str, user_id: str) -> models.TournamentParticipant | None:
        result = await db.execute(
            select(models.TournamentParticipant).where(
                models.TournamentParticipant.tournament_id == tournament_id,
                models.TournamentParticipant.user_id == user_id,
            )
        )
        return result.scalar_one_or_none()

    async def get_participant(self, tournament_id: str, user_id: str) -> TournamentParticipant | None:
        async with self._session_factory() as db:
            row = await self._participant_row(db, tournament_id, user_id)
            return participant_from_row(row) if row is not None else None

    async def list_participants(self, tournament_id: str) -> list[TournamentParticipant]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(models.TournamentParticipant)
                .where(models.TournamentParticipant.tournament_id == tournament_id)
                .order_by(models.TournamentParticipant.id)
            )
            return [participant_from_row(row) for row in result.scalars()]

    async def add_participant(self, participant: TournamentParticipant) -> None:
        async with self._session_factory() as db:
            try:
                db.add(models.TournamentParticipant(
                    tournament_id=participant.tournament_id,
                    user_id=participant.user_id,
                    **_participant_values(participant),
                ))
                await db.execute(
                    update(models.Tournament)
                    .where(models.Tournament.tournament_id == participant.tournament_id)
                    .values(total_participants=models.Tournament.total_participants + 1)
                )
                await db.commit()
            except IntegrityError as exc:
                await db.rollback()
                raise AlreadyRegisteredError(
                    f"User {participant.user_id} already registered for {participant.tournament_id}"
                ) from exc

    async def save_participant(self, participant: TournamentParticipant) -> None:
        async with self._session_factory() as db:
            result = await db.execute(
                update(models.TournamentParticipant)
                .where(
                    models.TournamentParticipant.tournament_id == participant.tournament_id,
                    models.TournamentParticipant.user_id == participant.user_id,
                )
                .values(**_participant_values(participant))
            )
            if result.rowcount != 1:
                await db.rollback()
                raise NotFoundError(
                    f"User {participant.user_id} is not registered in {participant.tournament_id}"
                )
            await db.commit()

    async def save_ranks(self, tournament_id: str, ranks: Mapping[str, int]) -> None:
        async with self._session_factory() as db:
            result = await db.execute(
                select(models.TournamentParticipant)
                .where(models.TournamentParticipant.tournament_id == tournament_id)
            )
            for row in result.scalars():
                rank = ranks.get(row.user_id)
                if rank != row.current_rank:
                    row.previous_rank = row.current_rank
                    row.current_rank = rank
            await db.commit()

    async def record_share(self, share: ShareEvent) -> bool:
        async with self._session_factory() as db:
            try:
                db.add(models.ShareEvent(
                    share_id=share.share_id,
                    tournament_id=share.tournament_id,
                    user_id=share.user_id,
                    app_id=share.app_id,
                    xp_awarded=share.xp_awarded,
                    points_awarded=share.points_awarded,
                    validation_status=share.validation_status.value,
                    created_at=share.created_at,
                ))
                await db.commit()
            except IntegrityError:
                await db.rollback()
                return False
            return True

    async def list_shares(self, tournament_id: str, user_id: str | None = None) -> list[ShareEvent]:
        stmt = select(models.ShareEvent).where(models.ShareEvent.tournament_id == tournament_id)
        if user_id is not None:
            stmt = stmt.where(models.ShareEvent.user_id == user_id)
        async with self._session_factory() as db:
            result = await db.execute(stmt.order_by(models.ShareEvent.created_at, models.ShareEvent.share_id))
            return [share_from_row(row) for row in result.scalars()]

    async def commit_prizes(
        self, tournament_id: str, winners: Sequence[PrizeWinner], distributed_at: datetime,
    ) -> None:
        async with self._session_factory() as db:
            try:
                # Commit barrier: only one caller can move completed -> prizes_distributed
                result = await db.execute(
                    update(models.Tournament)
                    .where(
                        models.Tournament.tournament_id == tournament_id,
                        models.Tournament.status == TournamentStatus.COMPLETED.value,
                    )
                    .values(status=TournamentStatus.PRIZES_DISTRIBUTED.value, prizes_distributed_at=distributed_at)
                )
                if result.rowcount != 1:
                    await db.rollback()
                    raise AlreadyDistributedError(f"Tournament {tournament_id} is no longer completed")

                for winner in winners:
                    db.add(models.PrizeAward(
                        tournament_id=tournament_id,
                        user_id=winner.user_id,
                        rank=winner.rank,
                        tier=winner.tier.value,
                        xp=winner.xp,
                        points=winner.points,
                        cash=winner.cash,
                        awarded_at=distributed_at,
                    ))
                    await db.execute(
                        update(models.TournamentParticipant)
                        .where(
                            models.TournamentParticipant.tournament_id == tournament_id,
                            models.TournamentParticipant.user_id == winner.user_id,
                        )
                        .values(
                            prize_tier=winner.tier.value,
                            prize_xp=winner.xp,
                            prize_points=winner.points,
                            prize_cash=winner.cash,
                        )
                    )
                    await self._credit(db, winner, distributed_at)
                await db.commit()
            except IntegrityError as exc:
                await db.rollback()
                raise AlreadyDistributedError(f"Prizes for {tournament_id} already recorded") from exc

    async def _credit(self, db: AsyncSession, winner: PrizeWinner, at: datetime) -> None:
        # Increments are evaluated by the database so a grant committed
        # between our read and this write is kept, and version still moves.
        stats = models.UserStats
        won = 1 if winner.rank == 1 else 0
        result = await db.execute(
            update(stats)
            .where(stats.user_id == winner.user_id)
            .values(
                current_xp=stats.current_xp + winner.xp,
                total_xp_earned=stats.total_xp_earned + winner.xp,
                current_points=stats.current_points + winner.points,
                total_points_earned=stats.total_points_earned + winner.points,
                total_tournaments_won=stats.total_tournaments_won + won,
                version=stats.version + 1,
                updated_at=at,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            db.add(models.UserStats(
                user_id=winner.user_id,
                current_xp=winner.xp, current_points=winner.points,
                total_xp_earned=winner.xp, total_points_earned=winner.points,
                total_tournaments_won=won, user_level=compute_level(winner.xp),
                version=1, updated_at=at,
            ))
            await db.flush()
            return

        total_xp = await db.scalar(select(stats.total_xp_earned).where(stats.user_id == winner.user_id))
        await db.execute(
            update(stats)
            .where(stats.user_id == winner.user_id)
            .values(user_level=compute_level(total_xp))
            .execution_options(synchronize_session=False)
        )

    async def mark_prize_claimed(self, tournament_id: str, user_id: str, claimed_at: datetime) -> TournamentParticipant:
        async with self._session_factory() as db:
            result = await db.execute(
                update(models.TournamentParticipant)
                .where(
                    models.TournamentParticipant.tournament_id == tournament_id,
                    models.TournamentParticipant.user_id == user_id,
                    models.TournamentParticipant.prize_claimed.is_(False),
                )
                .values(prize_claimed=True, prize_claimed_at=claimed_at)
            )
            if result.rowcount != 1:
                await db.rollback()
                raise PrizeAlreadyClaimedError(f"Prize for {user_id} in {tournament_id} already claimed")
            await db.commit()
            row = await self._participant_row(db, tournament_id, user_id)
            return participant_from_row(row)  # type: ignore[arg-type]

