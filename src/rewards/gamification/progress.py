"""Progress toward unearned badges. Used for UI hints, never for gating."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import TYPE_CHECKING

from rewards.gamification.criteria import configuration_problem, extract_value, progress_percent
from rewards.gamification.schemas import BadgeDefinition, BadgeProgress, ClosestBadge, StatsSnapshot
from rewards.time_utils import utcnow

if TYPE_CHECKING:
    from rewards.gamification.repository import BadgeRepository

CLOSEST_MIN_PERCENT = 50.0
CLOSEST_LIMIT = 5


def _trackable(badges: Iterable[BadgeDefinition], stats: StatsSnapshot) -> Iterable[BadgeDefinition]:
    for badge in badges:
        if not badge.is_active or badge.badge_id in stats.earned_badge_ids:
            continue
        if configuration_problem(badge) is not None:
            continue
        yield badge


def compute_progress(
    badges: Iterable[BadgeDefinition],
    stats: StatsSnapshot,
    now: datetime | None = None,
) -> list[BadgeProgress]:
    """One progress record per active, well-configured badge the user has not earned."""
    now = now or utcnow()
    records = []
    for badge in _trackable(badges, stats):
        value = extract_value(stats, badge.criteria_type)
        records.append(BadgeProgress(
            user_id=stats.user_id,
            badge_id=badge.badge_id,
            current_value=value,
            percent_complete=progress_percent(value, badge.threshold_value),
            last_updated=now,
        ))
    return records


def next_closest(
    badges: Iterable[BadgeDefinition],
    stats: StatsSnapshot,
    limit: int = CLOSEST_LIMIT,
    min_percent: float = CLOSEST_MIN_PERCENT,
) -> list[ClosestBadge]:
    """Unearned badges at least ``min_percent`` complete, closest first."""
    candidates = []
    for badge in _trackable(badges, stats):
        value = extract_value(stats, badge.criteria_type)
        percent = progress_percent(value, badge.threshold_value)
        if percent >= min_percent:
            candidates.append(ClosestBadge(
                badge_id=badge.badge_id,
                name=badge.name,
                rarity=badge.rarity,
                current_value=value,
                threshold_value=badge.threshold_value,
                progress_percent=percent,
            ))
    candidates.sort(key=lambda c: (-c.progress_percent, c.badge_id))
    return candidates[:limit]


class ProgressTracker:
    """Upserts progress records through the badge repository."""

    def __init__(self, repository: BadgeRepository) -> None:
        self.repository = repository

    async def refresh(
        self,
        stats: StatsSnapshot,
        badges: Sequence[BadgeDefinition] | None = None,
        now: datetime | None = None,
    ) -> list[BadgeProgress]:
        if badges is None:
            badges = await self.repository.list_active_badges()
        records = compute_progress(badges, stats, now)
        if records:
            await self.repository.upsert_progress(records)
        return records
