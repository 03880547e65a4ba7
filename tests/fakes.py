"""In-memory implementations of the repository and port contracts."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Mapping, Sequence
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

from rewards.errors import (
    AlreadyDistributedError,
    AlreadyRegisteredError,
    GrantConflictError,
    NotFoundError,
    PrizeAlreadyClaimedError,
    StateConflictError,
)
from rewards.gamification.schemas import BadgeDefinition, BadgeProgress, RewardDelta, StatsSnapshot, UserBadgeGrant
from rewards.payouts.ports import ProcessorResult
from rewards.payouts.schemas import PaymentRecord, PaymentStatus, PayoutAccount
from rewards.payouts.validation import OPEN_STATUSES
from rewards.tournaments.schemas import (
    PrizeWinner,
    Registrant,
    ShareEvent,
    TournamentDefinition,
    TournamentParticipant,
    TournamentStatus,
)


class NoLock:
    """Lets every caller straight through; exercises the compare-and-commit path alone."""

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        yield


class InMemoryBadgeStore:
    """Badge repository and snapshot provider over shared dictionaries.

    ``yield_on_read`` hands control back to the event loop after every read so
    concurrent callers interleave between their read and their commit.
    """

    def __init__(self, badges: Sequence[BadgeDefinition] = (), yield_on_read: bool = False) -> None:
        self.badges: dict[str, BadgeDefinition] = {b.badge_id: b for b in badges}
        self.stats: dict[str, StatsSnapshot] = {}
        self.grants: list[UserBadgeGrant] = []
        self.progress: dict[tuple[str, str], BadgeProgress] = {}
        self.achieved: dict[str, int] = {}
        self.yield_on_read = yield_on_read
        self.commit_attempts = 0

    def add_user(self, snapshot: StatsSnapshot) -> None:
        self.stats[snapshot.user_id] = snapshot

    async def _pause(self) -> None:
        if self.yield_on_read:
            await asyncio.sleep(0)

    # StatsSnapshotProvider
    async def get(self, user_id: str) -> StatsSnapshot | None:
        snapshot = self.stats.get(user_id)
        await self._pause()
        return snapshot

    # BadgeRepository
    async def get_badge(self, badge_id: str) -> BadgeDefinition | None:
        return self.badges.get(badge_id)

    async def list_active_badges(self) -> list[BadgeDefinition]:
        return sorted((b for b in self.badges.values() if b.is_active), key=lambda b: b.badge_id)

    async def last_grant_at(self, user_id: str, badge_id: str) -> datetime | None:
        times = [g.earned_at for g in self.grants if g.user_id == user_id and g.badge_id == badge_id]
        return max(times) if times else None

    async def count_grants(self, user_id: str, badge_id: str) -> int:
        return sum(1 for g in self.grants if g.user_id == user_id and g.badge_id == badge_id)

    async def commit_grant(self, grant: UserBadgeGrant, delta: RewardDelta, read_at: StatsSnapshot) -> None:
        self.commit_attempts += 1
        await self._pause()
        current = self.stats.get(grant.user_id)
        if current is None or current.version != read_at.version:
            raise GrantConflictError(f"Counters for {grant.user_id} moved past version {read_at.version}")
        if any(g.grant_key == grant.grant_key for g in self.grants):
            raise GrantConflictError(f"Grant {grant.grant_key} already recorded")
        self.stats[grant.user_id] = read_at.apply(delta)
        self.grants.append(grant)
        self.achieved[grant.badge_id] = self.achieved.get(grant.badge_id, 0) + 1

    async def upsert_progress(self, records: Sequence[BadgeProgress]) -> None:
        for record in records:
            self.progress[(record.user_id, record.badge_id)] = record


class InMemoryTournamentRepository:
    def __init__(self) -> None:
        self.tournaments: dict[str, TournamentDefinition] = {}
        self.participants: dict[tuple[str, str], TournamentParticipant] = {}
        self.shares: dict[str, ShareEvent] = {}
        self.registrants: dict[str, Registrant] = {}
        self.awards: dict[tuple[str, str], PrizeWinner] = {}
        self.credits: dict[str, dict[str, int]] = {}

    def add_tournament(self, tournament: TournamentDefinition) -> None:
        self.tournaments[tournament.tournament_id] = tournament

    def put_participant(self, participant: TournamentParticipant) -> None:
        self.participants[(participant.tournament_id, participant.user_id)] = participant

    async def get_tournament(self, tournament_id: str) -> TournamentDefinition | None:
        return self.tournaments.get(tournament_id)

    async def set_status(self, tournament_id: str, expected: TournamentStatus, target: TournamentStatus) -> bool:
        tournament = self.tournaments.get(tournament_id)
        if tournament is None or tournament.status != expected:
            return False
        self.tournaments[tournament_id] = tournament.model_copy(update={"status": target})
        return True

    async def get_registrant(self, user_id: str) -> Registrant | None:
        return self.registrants.get(user_id)

    async def get_participant(self, tournament_id: str, user_id: str) -> TournamentParticipant | None:
        return self.participants.get((tournament_id, user_id))

    async def list_participants(self, tournament_id: str) -> list[TournamentParticipant]:
        return [p for (t, _), p in self.participants.items() if t == tournament_id]

    async def add_participant(self, participant: TournamentParticipant) -> None:
        key = (participant.tournament_id, participant.user_id)
        if key in self.participants:
            raise AlreadyRegisteredError(f"User {participant.user_id} already registered")
        self.participants[key] = participant
        tournament = self.tournaments[participant.tournament_id]
        self.tournaments[participant.tournament_id] = tournament.model_copy(
            update={"total_participants": tournament.total_participants + 1},
        )

    async def save_participant(self, participant: TournamentParticipant) -> None:
        key = (participant.tournament_id, participant.user_id)
        stored = self.participants.get(key)
        if stored is None:
            raise NotFoundError(f"User {participant.user_id} is not registered")
        self.participants[key] = participant.model_copy(
            update={"current_rank": stored.current_rank, "previous_rank": stored.previous_rank},
        )

    async def save_ranks(self, tournament_id: str, ranks: Mapping[str, int]) -> None:
        for (t, user_id), participant in list(self.participants.items()):
            if t != tournament_id:
                continue
            rank = ranks.get(user_id)
            if rank != participant.current_rank:
                self.participants[(t, user_id)] = participant.model_copy(
                    update={"previous_rank": participant.current_rank, "current_rank": rank},
                )

    async def record_share(self, share: ShareEvent) -> bool:
        if share.share_id in self.shares:
            return False
        self.shares[share.share_id] = share
        return True

    async def list_shares(self, tournament_id: str, user_id: str | None = None) -> list[ShareEvent]:
        return sorted(
            (s for s in self.shares.values()
             if s.tournament_id == tournament_id and (user_id is None or s.user_id == user_id)),
            key=lambda s: (s.created_at, s.share_id),
        )

    async def commit_prizes(self, tournament_id: str, winners: Sequence[PrizeWinner], distributed_at: datetime) -> None:
        tournament = self.tournaments[tournament_id]
        if tournament.status != TournamentStatus.COMPLETED:
            raise AlreadyDistributedError(f"Tournament {tournament_id} is no longer completed")
        self.tournaments[tournament_id] = tournament.model_copy(update={
            "status": TournamentStatus.PRIZES_DISTRIBUTED,
            "prizes_distributed_at": distributed_at,
        })
        for winner in winners:
            self.awards[(tournament_id, winner.user_id)] = winner
            key = (tournament_id, winner.user_id)
            self.participants[key] = self.participants[key].model_copy(update={
                "prize_tier": winner.tier,
                "prize_xp": winner.xp,
                "prize_points": winner.points,
                "prize_cash": winner.cash,
            })
            credit = self.credits.setdefault(winner.user_id, {"xp": 0, "points": 0, "wins": 0})
            credit["xp"] += winner.xp
            credit["points"] += winner.points
            if winner.rank == 1:
                credit["wins"] += 1

    async def mark_prize_claimed(self, tournament_id: str, user_id: str, claimed_at: datetime) -> TournamentParticipant:
        participant = self.participants[(tournament_id, user_id)]
        if participant.prize_claimed:
            raise PrizeAlreadyClaimedError(f"Prize for {user_id} already claimed")
        claimed = participant.model_copy(update={"prize_claimed": True, "prize_claimed_at": claimed_at})
        self.participants[(tournament_id, user_id)] = claimed
        return claimed


class InMemoryPayoutRepository:
    def __init__(self) -> None:
        self.accounts: dict[str, PayoutAccount] = {}
        self.payments: dict[str, PaymentRecord] = {}

    def add_account(self, account: PayoutAccount) -> None:
        self.accounts[account.user_id] = account

    async def get_account(self, user_id: str) -> PayoutAccount | None:
        return self.accounts.get(user_id)

    async def list_payments(self, user_id: str, since: datetime) -> list[PaymentRecord]:
        return sorted(
            (p for p in self.payments.values()
             if p.user_id == user_id and (p.created_at >= since or p.status in OPEN_STATUSES)),
            key=lambda p: p.created_at,
        )

    async def create_payment(self, record: PaymentRecord) -> None:
        self.payments[record.payment_id] = record

    async def update_payment(
        self, payment_id: str, status: PaymentStatus, updated_at: datetime, *, error_code: str | None = None,
    ) -> None:
        record = self.payments[payment_id]
        self.payments[payment_id] = record.model_copy(
            update={"status": status, "updated_at": updated_at, "error_code": error_code},
        )

    async def complete_payment(self, payment_id: str, transaction_id: str, completed_at: datetime) -> None:
        record = self.payments[payment_id]
        if record.status != PaymentStatus.PROCESSING:
            raise StateConflictError(f"Payment {payment_id} is {record.status.value}")
        self.payments[payment_id] = record.model_copy(update={
            "status": PaymentStatus.COMPLETED,
            "transaction_id": transaction_id,
            "updated_at": completed_at,
        })
        account = self.accounts[record.user_id]
        self.accounts[record.user_id] = account.model_copy(
            update={"current_points": account.current_points - record.amount},
        )


class StaticFraudScorer:
    def __init__(self, value: float = 0.0, error: Exception | None = None, delay: float = 0.0) -> None:
        self.value = value
        self.error = error
        self.delay = delay
        self.calls: list[dict[str, Any]] = []

    async def score(self, context: dict[str, Any]) -> float:
        self.calls.append(context)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.value


class RecordingProcessor:
    def __init__(self, error: Exception | None = None, delay: float = 0.0) -> None:
        self.error = error
        self.delay = delay
        self.submitted: list[tuple[str, dict[str, Any], float]] = []

    async def submit(self, method: str, details: dict[str, Any], amount: float) -> ProcessorResult:
        self.submitted.append((method, details, amount))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return ProcessorResult(transaction_id=f"txn-{len(self.submitted)}")
