"""Badge and snapshot repository contracts, with SQLAlchemy adapters."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Protocol

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rewards.db import models
from rewards.errors import GrantConflictError
from rewards.gamification.schemas import (
    BadgeDefinition,
    BadgeProgress,
    RewardDelta,
    SeasonalWindow,
    StatsSnapshot,
    UserBadgeGrant,
)
from rewards.time_utils import ensure_utc, utcnow


class StatsSnapshotProvider(Protocol):
    async def get(self, user_id: str) -> StatsSnapshot | None: ...


class BadgeRepository(Protocol):
    async def get_badge(self, badge_id: str) -> BadgeDefinition | None: ...

    async def list_active_badges(self) -> list[BadgeDefinition]: ...

    async def last_grant_at(self, user_id: str, badge_id: str) -> datetime | None: ...

    async def count_grants(self, user_id: str, badge_id: str) -> int: ...

    async def commit_grant(self, grant: UserBadgeGrant, delta: RewardDelta, read_at: StatsSnapshot) -> None:
        """Append the grant, credit the rewards and bump the badge counter as one unit.

        Commits only while the user's counters are still at ``read_at.version``;
        raises GrantConflictError otherwise, or when the grant key already exists.
        """
        ...

    async def upsert_progress(self, records: Sequence[BadgeProgress]) -> None: ...


# ---------------------------------------------------------------------------
# Row mapping
# ---------------------------------------------------------------------------


def badge_from_row(row: models.BadgeDefinition) -> BadgeDefinition:
    window = None
    if row.seasonal_start is not None and row.seasonal_end is not None:
        window = SeasonalWindow(start=ensure_utc(row.seasonal_start), end=ensure_utc(row.seasonal_end))
    return BadgeDefinition(
        badge_id=row.badge_id,
        name=row.name,
        classification=row.classification,
        criteria_type=row.criteria_type,
        threshold_value=row.threshold_value,
        threshold_operator=row.threshold_operator,
        rarity=row.rarity,
        xp_reward=row.xp_reward,
        points_reward=row.points_reward,
        is_active=row.is_active,
        is_repeatable=row.is_repeatable,
        cooldown_days=row.cooldown_days,
        prerequisite_badges=frozenset(row.prerequisite_badges or ()),
        exclusive_with=frozenset(row.exclusive_with or ()),
        seasonal_window=window,
        users_achieved_count=row.users_achieved_count,
    )


def snapshot_from_row(row: models.UserStats) -> StatsSnapshot:
    return StatsSnapshot(
        user_id=row.user_id,
        current_xp=row.current_xp,
        current_points=row.current_points,
        total_xp_earned=row.total_xp_earned,
        total_points_earned=row.total_points_earned,
        total_apps_shared=row.total_apps_shared,
        total_tournaments_won=row.total_tournaments_won,
        sharing_streak_days=row.sharing_streak_days,
        successful_referrals_count=row.successful_referrals_count,
        user_level=row.user_level,
        earned_badge_ids=frozenset(row.earned_badge_ids or ()),
        total_badges_earned=row.total_badges_earned,
        unique_categories_shared=row.unique_categories_shared,
        unique_apps_shared=row.unique_apps_shared,
        total_payouts_received=row.total_payouts_received,
        version=row.version,
        taken_at=utcnow(),
    )


# ---------------------------------------------------------------------------
# SQLAlchemy adapters
# ---------------------------------------------------------------------------


class SqlStatsSnapshotProvider:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, user_id: str) -> StatsSnapshot | None:
        async with self._session_factory() as db:
            row = await db.get(models.UserStats, user_id)
            return snapshot_from_row(row) if row is not None else None


class SqlBadgeRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_badge(self, badge_id: str) -> BadgeDefinition | None:
        async with self._session_factory() as db:
            row = await db.get(models.BadgeDefinition, badge_id)
            return badge_from_row(row) if row is not None else None

    async def list_active_badges(self) -> list[BadgeDefinition]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(models.BadgeDefinition)
                .where(models.BadgeDefinition.is_active.is_(True))
                .order_by(models.BadgeDefinition.badge_id)
            )
            return [badge_from_row(row) for row in result.scalars()]

    async def last_grant_at(self, user_id: str, badge_id: str) -> datetime | None:
        async with self._session_factory() as db:
            result = await db.execute(
                select(func.max(models.UserBadge.earned_at)).where(
                    models.UserBadge.user_id == user_id,
                    models.UserBadge.badge_id == badge_id,
                )
            )
            return ensure_utc(result.scalar_one_or_none())

    async def count_grants(self, user_id: str, badge_id: str) -> int:
        async with self._session_factory() as db:
            result = await db.execute(
                select(func.count(models.UserBadge.id)).where(
                    models.UserBadge.user_id == user_id,
                    models.UserBadge.badge_id == badge_id,
                )
            )
            return int(result.scalar_one())

    async def commit_grant(self, grant: UserBadgeGrant, delta: RewardDelta, read_at: StatsSnapshot) -> None:
        after = read_at.apply(delta)
        async with self._session_factory() as db:
            try:
                # Compare-and-commit on the counters row
                result = await db.execute(
                    update(models.UserStats)
                    .where(
                        models.UserStats.user_id == grant.user_id,
                        models.UserStats.version == read_at.version,
                    )
                    .values(
                        current_xp=after.current_xp,
                        current_points=after.current_points,
                        total_xp_earned=after.total_xp_earned,
                        total_points_earned=after.total_points_earned,
                        total_badges_earned=after.total_badges_earned,
                        earned_badge_ids=sorted(after.earned_badge_ids),
                        user_level=after.user_level,
                        version=after.version,
                        updated_at=grant.earned_at,
                    )
                )
                if result.rowcount != 1:
                    await db.rollback()
                    raise GrantConflictError(
                        f"Counters for {grant.user_id} moved past version {read_at.version}"
                    )

                db.add(models.UserBadge(
                    user_id=grant.user_id,
                    badge_id=grant.badge_id,
                    grant_key=grant.grant_key,
                    earned_at=grant.earned_at,
                    xp_awarded=grant.xp_awarded,
                    points_awarded=grant.points_awarded,
                    achievement_value=grant.achievement_value,
                    streak_count=grant.streak_count,
                    context=grant.context,
                ))
                await db.execute(
                    update(models.BadgeDefinition)
                    .where(models.BadgeDefinition.badge_id == grant.badge_id)
                    .values(users_achieved_count=models.BadgeDefinition.users_achieved_count + 1)
                )
                await db.commit()
            except IntegrityError as exc:
                await db.rollback()
                raise GrantConflictError(f"Grant {grant.grant_key} already recorded") from exc

    async def upsert_progress(self, records: Sequence[BadgeProgress]) -> None:
        async with self._session_factory() as db:
            for record in records:
                row = await db.get(models.BadgeProgress, (record.user_id, record.badge_id))
                if row is None:
                    db.add(models.BadgeProgress(
                        user_id=record.user_id,
                        badge_id=record.badge_id,
                        current_value=record.current_value,
                        percent_complete=record.percent_complete,
                        last_updated=record.last_updated,
                    ))
                else:
                    row.current_value = record.current_value
                    row.percent_complete = record.percent_complete
                    row.last_updated = record.last_updated
            await db.commit()
