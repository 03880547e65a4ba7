"""Badge grant orchestration with re-validation and compare-and-commit."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any

import structlog

from rewards.config import Settings, get_settings
from rewards.errors import DependencyUnavailableError, GrantConflictError, NotFoundError
from rewards.gamification.criteria import evaluate
from rewards.gamification.levels import compute_level
from rewards.gamification.progress import ProgressTracker
from rewards.gamification.repository import BadgeRepository, StatsSnapshotProvider
from rewards.gamification.schemas import (
    BadgeDefinition,
    BatchGrantResult,
    GrantResult,
    ReasonCode,
    RewardDelta,
    StatsSnapshot,
    UserBadgeGrant,
)
from rewards.locks import KeyedLock, LocalKeyedLock
from rewards.time_utils import utcnow

logger = structlog.get_logger()


def grant_lock_key(user_id: str, badge_id: str) -> str:
    return f"grant:{user_id}:{badge_id}"


def grant_key(user_id: str, badge: BadgeDefinition, occurrence: int) -> str:
    """Unique key per grant; repeatable badges are keyed by occurrence number."""
    if badge.is_repeatable:
        return f"{user_id}:{badge.badge_id}:{occurrence}"
    return f"{user_id}:{badge.badge_id}"


class RewardGranter:
    """Grants badges exactly once per qualifying event.

    Every grant re-evaluates eligibility against a freshly read snapshot while
    holding the (user, badge) lock, then commits through the repository's
    version-checked write. A lost compare-and-commit re-reads and re-evaluates,
    so the loser of a race observes ``already_earned`` instead of a duplicate.
    """

    def __init__(
        self,
        badges: BadgeRepository,
        snapshots: StatsSnapshotProvider,
        lock: KeyedLock | None = None,
        settings: Settings | None = None,
    ) -> None:
        settings = settings or get_settings()
        self.badges = badges
        self.snapshots = snapshots
        self.lock = lock or LocalKeyedLock(wait_seconds=settings.lock_wait_seconds)
        self.snapshot_timeout = settings.snapshot_timeout_seconds
        self.max_attempts = max(1, settings.grant_max_attempts)
        self.progress = ProgressTracker(badges)

    async def fetch_snapshot(self, user_id: str) -> StatsSnapshot | None:
        try:
            return await asyncio.wait_for(self.snapshots.get(user_id), timeout=self.snapshot_timeout)
        except asyncio.TimeoutError as exc:
            raise DependencyUnavailableError(f"Snapshot provider timed out for {user_id}") from exc

    async def grant(
        self,
        user_id: str,
        badge_id: str,
        context: dict[str, Any] | None = None,
        *,
        now: datetime | None = None,
    ) -> GrantResult:
        """Grant one badge. Negative outcomes come back as reason codes, never raised."""
        badge = await self.badges.get_badge(badge_id)
        if badge is None or not badge.is_active:
            return GrantResult.failure(badge_id, ReasonCode.BADGE_NOT_FOUND)

        async with self.lock.hold(grant_lock_key(user_id, badge_id)):
            result, _ = await self._grant_with_retry(user_id, badge, None, context or {}, now or utcnow())
        return result

    async def evaluate_and_grant_all(
        self,
        user_id: str,
        trigger_event: str,
        context: dict[str, Any] | None = None,
        *,
        now: datetime | None = None,
    ) -> BatchGrantResult:
        """Screen every active badge and grant the qualifying ones.

        Each successful grant advances the working snapshot, and badges left
        ungranted are re-screened until a pass grants nothing, so cascades such
        as ``badge_count >= 5`` resolve regardless of badge order.
        """
        now = now or utcnow()
        context = {"trigger_event": trigger_event, **(context or {})}
        badges = await self.badges.list_active_badges()
        stats = await self.fetch_snapshot(user_id)
        if stats is None:
            raise NotFoundError(f"User {user_id} not found", code="user_not_found")

        start_level = stats.user_level
        granted: list[GrantResult] = []
        pending = list(badges)
        while pending:
            still_pending = []
            for badge in pending:
                async with self.lock.hold(grant_lock_key(user_id, badge.badge_id)):
                    result, stats = await self._grant_with_retry(user_id, badge, stats, context, now)
                if result.success:
                    granted.append(result)
                else:
                    still_pending.append(badge)
            if len(still_pending) == len(pending):
                break
            pending = still_pending

        if stats is None:
            raise NotFoundError(f"User {user_id} disappeared during evaluation", code="user_not_found")
        progress = await self.progress.refresh(stats, badges, now)

        batch = BatchGrantResult(
            user_id=user_id,
            trigger_event=trigger_event,
            badges_evaluated=len(badges),
            granted=granted,
            total_xp_awarded=sum(g.xp_awarded for g in granted),
            total_points_awarded=sum(g.points_awarded for g in granted),
            new_level=stats.user_level,
            level_changed=stats.user_level != start_level,
            progress=progress,
        )
        logger.info(
            "badges_evaluated",
            user_id=user_id,
            trigger_event=trigger_event,
            evaluated=batch.badges_evaluated,
            granted=[g.badge_id for g in granted],
        )
        return batch

    async def _grant_with_retry(
        self,
        user_id: str,
        badge: BadgeDefinition,
        stats: StatsSnapshot | None,
        context: dict[str, Any],
        now: datetime,
    ) -> tuple[GrantResult, StatsSnapshot | None]:
        latest = stats
        for attempt in range(1, self.max_attempts + 1):
            if stats is None:
                stats = await self.fetch_snapshot(user_id)
                if stats is None:
                    return GrantResult.failure(badge.badge_id, ReasonCode.USER_NOT_FOUND), None
            latest = stats
            result, after = await self._try_grant(badge, stats, context, now)
            if result is not None:
                return result, after
            logger.info("grant_conflict_retry", user_id=user_id, badge_id=badge.badge_id, attempt=attempt)
            stats = None

        logger.warning("grant_conflict_exhausted", user_id=user_id, badge_id=badge.badge_id)
        return GrantResult.failure(badge.badge_id, ReasonCode.GRANT_CONFLICT), latest

    async def _try_grant(
        self,
        badge: BadgeDefinition,
        stats: StatsSnapshot,
        context: dict[str, Any],
        now: datetime,
    ) -> tuple[GrantResult | None, StatsSnapshot]:
        """One evaluate-then-commit round. ``None`` means the commit lost a race."""
        last_earned_at = None
        occurrence = 1
        if badge.is_repeatable:
            last_earned_at = await self.badges.last_grant_at(stats.user_id, badge.badge_id)
            occurrence = await self.badges.count_grants(stats.user_id, badge.badge_id) + 1

        eligibility = evaluate(badge, stats.earned_badge_ids, stats, now=now, last_earned_at=last_earned_at)
        if not eligibility.eligible:
            return GrantResult.failure(badge.badge_id, eligibility.reason), stats

        new_level = compute_level(stats.total_xp_earned + badge.xp_reward)
        delta = RewardDelta(
            xp=badge.xp_reward,
            points=badge.points_reward,
            badge_id=badge.badge_id,
            record_earned=not badge.is_repeatable,
            badges_earned=1,
            new_level=new_level,
        )
        grant = UserBadgeGrant(
            user_id=stats.user_id,
            badge_id=badge.badge_id,
            grant_key=grant_key(stats.user_id, badge, occurrence),
            earned_at=now,
            xp_awarded=badge.xp_reward,
            points_awarded=badge.points_reward,
            achievement_value=eligibility.current_value,
            streak_count=occurrence,
            context=context,
        )
        try:
            await self.badges.commit_grant(grant, delta, stats)
        except GrantConflictError:
            return None, stats

        after = stats.apply(delta)
        logger.info(
            "badge_granted",
            user_id=stats.user_id,
            badge_id=badge.badge_id,
            xp=badge.xp_reward,
            points=badge.points_reward,
            new_level=new_level,
        )
        return GrantResult(
            success=True,
            badge_id=badge.badge_id,
            reason=ReasonCode.ELIGIBLE,
            xp_awarded=badge.xp_reward,
            points_awarded=badge.points_reward,
            new_level=new_level,
            level_changed=new_level != stats.user_level,
            total_badges_earned=after.total_badges_earned,
            grant=grant,
        ), after
