"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from datetime import datetime, timezone

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from rewards.config import Settings
from rewards.database import _engine_options, create_schema

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def settings() -> Settings:
    """Settings with short budgets so timeout paths finish quickly."""
    return Settings(
        _env_file=None,
        lock_wait_seconds=2.0,
        snapshot_timeout_seconds=0.5,
        fraud_timeout_seconds=0.2,
        processor_timeout_seconds=0.2,
        grant_max_attempts=3,
        leaderboard_top_n=10,
    )


@pytest_asyncio.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """File-backed SQLite database with the engine schema created."""
    url = f"sqlite+aiosqlite:///{tmp_path / 'rewards.db'}"
    engine = create_async_engine(url, **_engine_options(url))
    await create_schema(engine)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()
