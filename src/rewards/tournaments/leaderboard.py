"""Leaderboard ranking: a lock-free snapshot sort over the participant set.

Position order is strict: score desc, then earliest registration, then
user id. Rank numbers use standard competition ranking, so tied scores
share a rank and the next distinct score resumes at its position (1, 2, 2, 4).
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime

from rewards.tournaments.schemas import LeaderboardEntry, TournamentParticipant
from rewards.time_utils import ensure_utc


def position_key(participant: TournamentParticipant) -> tuple[int, datetime, str]:
    return (-participant.score, ensure_utc(participant.registered_at), participant.user_id)  # type: ignore[return-value]


def rank_participants(participants: Iterable[TournamentParticipant]) -> list[LeaderboardEntry]:
    """Rank competing participants. Disqualified and withdrawn entries are left out."""
    ordered = sorted((p for p in participants if p.is_competing), key=position_key)
    total = len(ordered)

    entries: list[LeaderboardEntry] = []
    rank = 0
    prev_score: int | None = None
    for position, participant in enumerate(ordered, start=1):
        if participant.score != prev_score:
            rank = position
            prev_score = participant.score
        previous = participant.current_rank
        entries.append(LeaderboardEntry(
            position=position,
            rank=rank,
            user_id=participant.user_id,
            score=participant.score,
            registered_at=participant.registered_at,
            previous_rank=previous,
            rank_change=previous - rank if previous is not None else None,
            percentile=round(100 - (rank / total * 100), 2) if total > 0 else 0.0,
        ))
    return entries


def ranks_by_user(entries: Iterable[LeaderboardEntry]) -> dict[str, int]:
    return {entry.user_id: entry.rank for entry in entries}
