"""Per-key serialization for grant, score, distribution and payout writes.

Usage:
    async with lock.hold("grant:user-1:badge-7"):
        ...  # re-check, then commit

The in-process backend suits a single worker and the test suite; the Redis
backend serializes across processes with SET NX PX leases.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Protocol

import redis.asyncio as redis
import structlog
from redis.exceptions import LockError, RedisError

from rewards.config import Settings
from rewards.errors import DependencyUnavailableError

logger = structlog.get_logger()


class KeyedLock(Protocol):
    def hold(self, key: str) -> AbstractAsyncContextManager[None]: ...


class LocalKeyedLock:
    """One asyncio.Lock per key, dropped when the last holder or waiter leaves."""

    def __init__(self, wait_seconds: float = 10.0) -> None:
        self._wait_seconds = wait_seconds
        self._locks: dict[str, asyncio.Lock] = {}
        self._refs: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._refs[key] = self._refs.get(key, 0) + 1
        try:
            try:
                await asyncio.wait_for(lock.acquire(), timeout=self._wait_seconds)
            except asyncio.TimeoutError as exc:
                raise DependencyUnavailableError(f"Timed out waiting for lock {key}") from exc
            try:
                yield
            finally:
                lock.release()
        finally:
            self._refs[key] -= 1
            if self._refs[key] == 0:
                del self._refs[key]
                self._locks.pop(key, None)


class RedisKeyedLock:
    """Lease-based lock in Redis. The TTL bounds how long a crashed holder blocks a key."""

    def __init__(
        self,
        client: redis.Redis,
        ttl_seconds: int = 30,
        wait_seconds: float = 10.0,
        prefix: str = "lock:rewards:",
    ) -> None:
        self._client = client
        self._ttl_seconds = ttl_seconds
        self._wait_seconds = wait_seconds
        self._prefix = prefix

    @classmethod
    def from_url(cls, url: str, **kwargs: object) -> RedisKeyedLock:
        client = redis.from_url(  # type: ignore[no-untyped-call]
            url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=50,
        )
        return cls(client, **kwargs)  # type: ignore[arg-type]

    async def close(self) -> None:
        await self._client.aclose()

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._client.lock(
            f"{self._prefix}{key}",
            timeout=self._ttl_seconds,
            blocking_timeout=self._wait_seconds,
        )
        try:
            acquired = await lock.acquire()
        except RedisError as exc:
            raise DependencyUnavailableError(f"Lock backend unavailable for {key}") from exc
        if not acquired:
            raise DependencyUnavailableError(f"Timed out waiting for lock {key}")
        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError:
                # Lease expired while the holder was still working.
                logger.warning("lock_expired_before_release", key=key, ttl_seconds=self._ttl_seconds)


def build_lock(settings: Settings) -> KeyedLock:
    """Pick the lock backend configured for this deployment."""
    if settings.lock_backend == "redis":
        return RedisKeyedLock.from_url(
            settings.redis_url,
            ttl_seconds=settings.lock_ttl_seconds,
            wait_seconds=settings.lock_wait_seconds,
        )
    if settings.lock_backend != "local":
        raise ValueError(f"Unknown lock backend: {settings.lock_backend}")
    return LocalKeyedLock(wait_seconds=settings.lock_wait_seconds)
