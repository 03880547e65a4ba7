"""Exactly-once prize distribution at tournament close."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import datetime

import structlog

from rewards.config import Settings, get_settings
from rewards.errors import AlreadyDistributedError, NotCompletedError, NotFoundError
from rewards.locks import KeyedLock, LocalKeyedLock
from rewards.time_utils import utcnow
from rewards.tournaments.leaderboard import rank_participants
from rewards.tournaments.repository import TournamentRepository
from rewards.tournaments.schemas import (
    DistributionResult,
    LeaderboardEntry,
    Prize,
    PrizeTier,
    PrizeWinner,
    TournamentStatus,
)

logger = structlog.get_logger()

TOP_10_CUTOFF = 10

_PODIUM: dict[int, PrizeTier] = {
    1: PrizeTier.FIRST_PLACE,
    2: PrizeTier.SECOND_PLACE,
    3: PrizeTier.THIRD_PLACE,
}


def tier_for_rank(rank: int, prizes: Mapping[PrizeTier, Prize]) -> PrizeTier | None:
    """Tier for a rank, falling through to the next defined tier.

    Ranks 1-3 take their podium tier when defined, ranks up to 10 take
    top_10 when defined, everyone else takes participation when defined.
    Tied ranks share a tier because the rank number itself is shared.
    """
    podium = _PODIUM.get(rank)
    if podium is not None and podium in prizes:
        return podium
    if rank <= TOP_10_CUTOFF and PrizeTier.TOP_10 in prizes:
        return PrizeTier.TOP_10
    if PrizeTier.PARTICIPATION in prizes:
        return PrizeTier.PARTICIPATION
    return None


def plan_prizes(entries: Iterable[LeaderboardEntry], prizes: Mapping[PrizeTier, Prize]) -> list[PrizeWinner]:
    winners = []
    for entry in entries:
        tier = tier_for_rank(entry.rank, prizes)
        if tier is None:
            continue
        prize = prizes[tier]
        winners.append(PrizeWinner(
            user_id=entry.user_id,
            rank=entry.rank,
            tier=tier,
            xp=prize.xp,
            points=prize.points,
            cash=prize.cash,
        ))
    return winners


class PrizeDistributor:
    """Maps final ranks to prize tiers and credits them once per tournament.

    The per-tournament lock keeps concurrent callers in line; the repository's
    conditional ``completed -> prizes_distributed`` update is the commit
    barrier that makes a second distribution impossible even across processes.
    """

    def __init__(
        self,
        repository: TournamentRepository,
        lock: KeyedLock | None = None,
        settings: Settings | None = None,
    ) -> None:
        settings = settings or get_settings()
        self.repository = repository
        self.lock = lock or LocalKeyedLock(wait_seconds=settings.lock_wait_seconds)

    async def distribute(self, tournament_id: str, *, now: datetime | None = None) -> DistributionResult:
        now = now or utcnow()
        async with self.lock.hold(f"distribute:{tournament_id}"):
            tournament = await self.repository.get_tournament(tournament_id)
            if tournament is None:
                raise NotFoundError(f"Tournament {tournament_id} not found")
            if tournament.status == TournamentStatus.PRIZES_DISTRIBUTED:
                raise AlreadyDistributedError(f"Prizes for {tournament_id} were already distributed")
            if tournament.status != TournamentStatus.COMPLETED:
                raise NotCompletedError(
                    f"Tournament {tournament_id} is {tournament.status.value}, not completed"
                )

            entries = rank_participants(await self.repository.list_participants(tournament_id))
            winners = plan_prizes(entries, tournament.prizes)
            await self.repository.commit_prizes(tournament_id, winners, now)

        result = DistributionResult(
            tournament_id=tournament_id,
            distributed_at=now,
            winners=winners,
            total_xp=sum(w.xp for w in winners),
            total_points=sum(w.points for w in winners),
            total_cash=sum(w.cash for w in winners),
        )
        logger.info(
            "prizes_distributed",
            tournament_id=tournament_id,
            winners=len(winners),
            total_xp=result.total_xp,
            total_points=result.total_points,
            total_cash=result.total_cash,
        )
        return result
