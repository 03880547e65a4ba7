"""SQLAlchemy adapters on a throwaway SQLite database."""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import timedelta

import pytest
from sqlalchemy import func, select

from fakes import RecordingProcessor, StaticFraudScorer
from rewards.db import models
from rewards.errors import (
    AlreadyDistributedError,
    AlreadyRegisteredError,
    GrantConflictError,
    PrizeAlreadyClaimedError,
    StateConflictError,
)
from rewards.gamification.repository import SqlBadgeRepository, SqlStatsSnapshotProvider
from rewards.gamification.reward_service import RewardGranter
from rewards.gamification.schemas import ReasonCode, RewardDelta, UserBadgeGrant
from rewards.payouts.engine import PayoutRiskEngine
from rewards.payouts.repository import SqlPayoutRepository
from rewards.payouts.schemas import PaymentRecord, PaymentStatus, PayoutMethod
from rewards.tournaments.prizes import PrizeDistributor
from rewards.tournaments.repository import SqlTournamentRepository
from rewards.tournaments.schemas import (
    Prize,
    PrizeTier,
    PrizeWinner,
    ShareEvent,
    TournamentDefinition,
    TournamentParticipant,
    TournamentStatus,
)
from rewards.tournaments.service import TournamentService


async def seed(session_factory, *rows) -> None:
    async with session_factory() as db:
        db.add_all(rows)
        await db.commit()


def sharer_granter(session_factory, settings) -> RewardGranter:
    return RewardGranter(
        SqlBadgeRepository(session_factory), SqlStatsSnapshotProvider(session_factory), settings=settings,
    )


def sharer_badge() -> models.BadgeDefinition:
    return models.BadgeDefinition(
        badge_id="sharer", criteria_type="shares_count", threshold_value=10, xp_reward=150, points_reward=7,
    )


def run_before_first_statement(session_factory, hook):
    """Session factory whose sessions await ``hook`` once, right before their first execute."""

    @asynccontextmanager
    async def factory():
        async with session_factory() as db:
            execute = db.execute
            pending = [hook]

            async def execute_after_hook(*args, **kwargs):
                while pending:
                    await pending.pop()()
                return await execute(*args, **kwargs)

            db.execute = execute_after_hook
            yield db

    return factory


class TestSqlBadgeRepository:
    @pytest.mark.asyncio
    async def test_grant_round_trip(self, session_factory, settings, now):
        await seed(
            session_factory,
            models.BadgeDefinition(badge_id="sharer", criteria_type="shares_count", threshold_value=10, xp_reward=150),
            models.UserStats(user_id="u1", total_apps_shared=12),
        )
        badges = SqlBadgeRepository(session_factory)
        granter = RewardGranter(badges, SqlStatsSnapshotProvider(session_factory), settings=settings)

        result = await granter.grant("u1", "sharer", now=now)
        again = await granter.grant("u1", "sharer", now=now)

        assert result.success is True
        assert result.new_level == 2
        assert again.reason == ReasonCode.ALREADY_EARNED
        async with session_factory() as db:
            stats = await db.get(models.UserStats, "u1")
            assert stats.current_xp == 150
            assert stats.earned_badge_ids == ["sharer"]
            assert stats.version == 1
            badge = await db.get(models.BadgeDefinition, "sharer")
            assert badge.users_achieved_count == 1
            assert await db.scalar(select(func.count(models.UserBadge.id))) == 1

    @pytest.mark.asyncio
    async def test_stale_snapshot_and_duplicate_key_conflict(self, session_factory, now):
        await seed(
            session_factory,
            models.BadgeDefinition(badge_id="sharer", criteria_type="shares_count", threshold_value=1),
            models.UserStats(user_id="u1", total_apps_shared=1),
        )
        badges = SqlBadgeRepository(session_factory)
        snapshots = SqlStatsSnapshotProvider(session_factory)
        read = await snapshots.get("u1")
        grant = UserBadgeGrant(
            user_id="u1", badge_id="sharer", grant_key="u1:sharer", earned_at=now,
            xp_awarded=0, points_awarded=0, achievement_value=1,
        )
        delta = RewardDelta(badge_id="sharer", record_earned=True, badges_earned=1)

        await badges.commit_grant(grant, delta, read)
        with pytest.raises(GrantConflictError):
            await badges.commit_grant(grant, delta, read)
        with pytest.raises(GrantConflictError):
            await badges.commit_grant(grant, delta, await snapshots.get("u1"))
        assert await badges.count_grants("u1", "sharer") == 1
        assert await badges.last_grant_at("u1", "sharer") == now


PRIZES = {
    PrizeTier.FIRST_PLACE: Prize(xp=1000, points=500, cash=25.0),
    PrizeTier.PARTICIPATION: Prize(xp=10),
}


class TestSqlTournamentRepository:
    async def _seeded(self, session_factory, now) -> SqlTournamentRepository:
        repo = SqlTournamentRepository(session_factory)
        await repo.create_tournament(TournamentDefinition(
            tournament_id="t1",
            start_date=now - timedelta(days=7),
            end_date=now - timedelta(hours=1),
            status=TournamentStatus.COMPLETED,
            prizes=PRIZES,
        ))
        for i, (user_id, score) in enumerate([("a", 30), ("b", 10)]):
            participant = TournamentParticipant(
                tournament_id="t1", user_id=user_id, registered_at=now - timedelta(days=8, minutes=-i),
            )
            await repo.add_participant(participant)
            await repo.save_participant(participant.model_copy(update={"score": score}))
        return repo

    @pytest.mark.asyncio
    async def test_definition_round_trip(self, session_factory, now):
        repo = await self._seeded(session_factory, now)
        tournament = await repo.get_tournament("t1")
        assert tournament.prizes == PRIZES
        assert tournament.total_participants == 2
        assert tournament.start_date == now - timedelta(days=7)

    @pytest.mark.asyncio
    async def test_duplicate_registration(self, session_factory, now):
        repo = await self._seeded(session_factory, now)
        with pytest.raises(AlreadyRegisteredError):
            await repo.add_participant(TournamentParticipant(tournament_id="t1", user_id="a", registered_at=now))

    @pytest.mark.asyncio
    async def test_ranks_only_move_through_save_ranks(self, session_factory, now):
        repo = await self._seeded(session_factory, now)
        await repo.save_ranks("t1", {"a": 2, "b": 1})
        await repo.save_ranks("t1", {"a": 1, "b": 2})
        a = await repo.get_participant("t1", "a")
        await repo.save_participant(a.model_copy(update={"current_rank": 99, "score": 31}))

        stored = await repo.get_participant("t1", "a")
        assert (stored.current_rank, stored.previous_rank, stored.rank_change) == (1, 2, 1)
        assert stored.score == 31

    @pytest.mark.asyncio
    async def test_duplicate_share(self, session_factory, now):
        repo = await self._seeded(session_factory, now)
        share = ShareEvent(share_id="s1", user_id="a", tournament_id="t1", created_at=now - timedelta(days=1))
        assert await repo.record_share(share) is True
        assert await repo.record_share(share) is False
        assert [s.share_id for s in await repo.list_shares("t1", "a")] == ["s1"]

    @pytest.mark.asyncio
    async def test_prizes_credited_once(self, session_factory, settings, now):
        repo = await self._seeded(session_factory, now)
        distributor = PrizeDistributor(repo, settings=settings)

        result = await distributor.distribute("t1", now=now)
        with pytest.raises(AlreadyDistributedError):
            await distributor.distribute("t1", now=now)
        with pytest.raises(AlreadyDistributedError):
            await repo.commit_prizes("t1", result.winners, now)

        assert (await repo.get_tournament("t1")).status == TournamentStatus.PRIZES_DISTRIBUTED
        async with session_factory() as db:
            winner = await db.get(models.UserStats, "a")
            assert (winner.current_xp, winner.current_points, winner.total_tournaments_won) == (1000, 500, 1)
            assert winner.user_level == 4
            assert await db.scalar(select(func.count(models.PrizeAward.id))) == 2

        service = TournamentService(repo, settings=settings)
        claimed = await service.claim_prize("t1", "a", now=now)
        assert claimed.prize_tier == PrizeTier.FIRST_PLACE
        assert claimed.prize_cash == 25.0
        with pytest.raises(PrizeAlreadyClaimedError):
            await service.claim_prize("t1", "a", now=now)

    @pytest.mark.asyncio
    async def test_prize_credit_keeps_a_grant_committed_mid_transaction(self, session_factory, settings, now):
        """A badge grant landing between the stats read and the prize write is not overwritten."""
        await seed(session_factory, sharer_badge(), models.UserStats(user_id="u1", total_apps_shared=12))
        repo = SqlTournamentRepository(session_factory)
        winner = PrizeWinner(user_id="u1", rank=1, tier=PrizeTier.FIRST_PLACE, xp=1000, points=500)

        async with session_factory() as db:
            stale = await db.get(models.UserStats, "u1")
            assert stale.current_xp == 0
            granted = await sharer_granter(session_factory, settings).grant("u1", "sharer", now=now)
            assert granted.success is True
            await repo._credit(db, winner, now)
            await db.commit()

        async with session_factory() as db:
            stats = await db.get(models.UserStats, "u1")
            assert (stats.current_xp, stats.total_xp_earned) == (1150, 1150)
            assert (stats.current_points, stats.total_points_earned) == (507, 507)
            assert stats.total_tournaments_won == 1
            assert stats.earned_badge_ids == ["sharer"]
            assert stats.user_level == 4
            assert stats.version == 2


class TestSqlPayoutRepository:
    @pytest.mark.asyncio
    async def test_completed_payout_debits_balance(self, session_factory, settings, now):
        await seed(
            session_factory,
            models.UserProfile(user_id="u1", kyc_status="verified", region="US"),
            models.UserStats(user_id="u1", current_points=5000, user_level=10),
        )
        repo = SqlPayoutRepository(session_factory)
        engine = PayoutRiskEngine(repo, StaticFraudScorer(0.1), RecordingProcessor(), settings=settings)

        decision = await engine.evaluate("u1", 1000, "paypal", {"email": "u1@example.com"}, now=now)

        assert decision.status == PaymentStatus.COMPLETED
        async with session_factory() as db:
            stats = await db.get(models.UserStats, "u1")
            assert stats.current_points == 4000
            assert stats.total_payouts_received == 1000
            payment = await db.get(models.Payment, decision.payment_id)
            assert payment.status == "completed"
            assert payment.transaction_id == "txn-1"
        with pytest.raises(StateConflictError):
            await repo.complete_payment(decision.payment_id, "txn-2", now)

    @pytest.mark.asyncio
    async def test_completion_keeps_a_grant_committed_mid_transaction(self, session_factory, settings, now):
        """Points granted while a payout is being completed survive the debit."""
        await seed(
            session_factory,
            sharer_badge(),
            models.UserStats(user_id="u1", current_points=5000, total_points_earned=5000, total_apps_shared=12),
        )
        await SqlPayoutRepository(session_factory).create_payment(PaymentRecord(
            payment_id="p1", user_id="u1", amount=1000, method=PayoutMethod.PAYPAL,
            status=PaymentStatus.PROCESSING, created_at=now,
        ))
        granted = []

        async def grant():
            granted.append(await sharer_granter(session_factory, settings).grant("u1", "sharer", now=now))

        repo = SqlPayoutRepository(run_before_first_statement(session_factory, grant))
        await repo.complete_payment("p1", "txn-9", now)

        assert granted[0].success is True
        async with session_factory() as db:
            stats = await db.get(models.UserStats, "u1")
            assert stats.current_points == 4007
            assert stats.current_xp == 150
            assert stats.total_payouts_received == 1000
            assert stats.version == 2
            payment = await db.get(models.Payment, "p1")
            assert (payment.status, payment.transaction_id) == ("completed", "txn-9")

    @pytest.mark.asyncio
    async def test_history_includes_old_open_payments(self, session_factory, now):
        repo = SqlPayoutRepository(session_factory)
        for payment_id, age, status in [
            ("old-open", 60, PaymentStatus.PENDING_REVIEW),
            ("old-done", 60, PaymentStatus.COMPLETED),
            ("recent", 2, PaymentStatus.COMPLETED),
        ]:
            await repo.create_payment(PaymentRecord(
                payment_id=payment_id, user_id="u1", amount=100, method=PayoutMethod.STRIPE,
                status=status, created_at=now - timedelta(days=age),
            ))
        history = await repo.list_payments("u1", now - timedelta(days=30))
        assert [p.payment_id for p in history] == ["old-open", "recent"]
        assert history[1].created_at == now - timedelta(days=2)
