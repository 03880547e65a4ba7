"""Tournament analytics over the participant set and verified shares."""

from __future__ import annotations

import math
import statistics
from collections.abc import Iterable, Sequence

from rewards.tournaments.repository import TournamentRepository
from rewards.tournaments.schemas import ScoreDistribution, ShareEvent, TournamentAnalytics, TournamentParticipant


def _cutoff(scores_desc: Sequence[int], fraction: float) -> int:
    """Lowest score still inside the top ``fraction`` of participants."""
    if not scores_desc:
        return 0
    index = max(0, math.ceil(len(scores_desc) * fraction) - 1)
    return scores_desc[index]


def score_distribution(scores: Iterable[int]) -> ScoreDistribution:
    ordered = sorted(scores, reverse=True)
    if not ordered:
        return ScoreDistribution()
    return ScoreDistribution(
        average=round(statistics.fmean(ordered), 2),
        median=float(statistics.median(ordered)),
        top_10_percent=_cutoff(ordered, 0.10),
        top_25_percent=_cutoff(ordered, 0.25),
        top_50_percent=_cutoff(ordered, 0.50),
    )


def compute_analytics(
    tournament_id: str,
    participants: Sequence[TournamentParticipant],
    shares: Iterable[ShareEvent],
) -> TournamentAnalytics:
    verified = [s for s in shares if s.is_verified]
    registered = len(participants)
    sharers = {s.user_id for s in verified}
    return TournamentAnalytics(
        tournament_id=tournament_id,
        registered_participants=registered,
        total_shares=len(verified),
        unique_sharers=len(sharers),
        total_xp_distributed=sum(s.xp_awarded for s in verified),
        total_points_distributed=sum(s.points_awarded for s in verified),
        average_shares_per_sharer=round(len(verified) / len(sharers), 2) if sharers else 0.0,
        conversion_rate=round(len(sharers) / registered * 100, 2) if registered else 0.0,
        scores=score_distribution(p.score for p in participants if p.is_competing),
    )


async def tournament_analytics(repository: TournamentRepository, tournament_id: str) -> TournamentAnalytics:
    participants = await repository.list_participants(tournament_id)
    shares = await repository.list_shares(tournament_id)
    return compute_analytics(tournament_id, participants, shares)
