"""Cache engines: the sorted-set primitives the recency cache is built on.

Each primitive is atomic on its own. The eviction and retention policy
lives in ``pricewatch.cache.recency``, not here.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Protocol, TypeVar, runtime_checkable

from redis.asyncio import Redis
from redis.exceptions import RedisError

from pricewatch.core.config import CacheConfig
from pricewatch.core.exceptions import CacheError, StoreUnreachable
from pricewatch.core.models import CacheBackendType

logger = logging.getLogger(__name__)

T = TypeVar("T")


@runtime_checkable
class CacheBackend(Protocol):
    """Scored-set store with per-key expiry."""

    async def add(self, key: str, member: str, score: float) -> None:
        """Insert `member` or update its score."""
        ...

    async def trim(self, key: str, below: float) -> int:
        """Remove members scored strictly below `below`. Returns count removed."""
        ...

    async def range(self, key: str, low: float, high: float) -> list[tuple[str, float]]:
        """Members with ``low <= score <= high``, ascending by score."""
        ...

    async def remove(self, key: str, member: str) -> None: ...

    async def count(self, key: str) -> int: ...

    async def pop_lowest(self, key: str, count: int = 1) -> list[str]:
        """Remove and return the `count` lowest-scored members."""
        ...

    async def members(self, key: str) -> list[str]:
        """All members, ascending by score."""
        ...

    async def expire(self, key: str, seconds: int) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def ping(self) -> bool: ...

    async def close(self) -> None: ...


class RedisCacheBackend:
    """Redis sorted sets via redis.asyncio.

    Parameters
    ----------
    client : Redis
        A client created with ``decode_responses=True``.
    """

    def __init__(self, client: Redis) -> None:
        self._redis = client

    @classmethod
    def from_url(cls, url: str) -> RedisCacheBackend:
        return cls(Redis.from_url(url, decode_responses=True))

    async def _run(self, operation: str, key: str, call: Awaitable[T]) -> T:
        try:
            return await call
        except RedisError as e:
            raise CacheError(
                f"Redis {operation} failed for {key}: {e}",
                context={"operation": operation, "key": key},
            ) from e

    async def add(self, key: str, member: str, score: float) -> None:
        await self._run("zadd", key, self._redis.zadd(key, {member: score}))

    async def trim(self, key: str, below: float) -> int:
        return await self._run(
            "zremrangebyscore", key, self._redis.zremrangebyscore(key, "-inf", f"({below}")
        )

    async def range(self, key: str, low: float, high: float) -> list[tuple[str, float]]:
        rows = await self._run(
            "zrangebyscore",
            key,
            self._redis.zrangebyscore(key, low, high, withscores=True),
        )
        return [(member, float(score)) for member, score in rows]

    async def remove(self, key: str, member: str) -> None:
        await self._run("zrem", key, self._redis.zrem(key, member))

    async def count(self, key: str) -> int:
        return await self._run("zcard", key, self._redis.zcard(key))

    async def pop_lowest(self, key: str, count: int = 1) -> list[str]:
        rows = await self._run("zpopmin", key, self._redis.zpopmin(key, count))
        return [member for member, _score in rows]

    async def members(self, key: str) -> list[str]:
        return await self._run("zrange", key, self._redis.zrange(key, 0, -1))

    async def expire(self, key: str, seconds: int) -> None:
        await self._run("expire", key, self._redis.expire(key, seconds))

    async def delete(self, key: str) -> None:
        await self._run("del", key, self._redis.delete(key))

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except RedisError:
            return False

    async def close(self) -> None:
        await self._redis.aclose()


class MemoryCacheBackend:
    """In-process engine for single-node deployments and tests.

    Runs entirely on the event loop thread; no operation awaits, so every
    primitive is atomic with respect to other tasks. Expired keys are purged
    lazily on access.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._sets: dict[str, dict[str, float]] = {}
        self._expires_at: dict[str, float] = {}

    def _live(self, key: str) -> dict[str, float] | None:
        deadline = self._expires_at.get(key)
        if deadline is not None and self._clock() >= deadline:
            self._sets.pop(key, None)
            self._expires_at.pop(key, None)
        return self._sets.get(key)

    def _drop_if_empty(self, key: str) -> None:
        if not self._sets.get(key):
            self._sets.pop(key, None)
            self._expires_at.pop(key, None)

    async def add(self, key: str, member: str, score: float) -> None:
        entries = self._live(key)
        if entries is None:
            entries = self._sets[key] = {}
        entries[member] = score

    async def trim(self, key: str, below: float) -> int:
        entries = self._live(key)
        if not entries:
            return 0
        stale = [m for m, s in entries.items() if s < below]
        for member in stale:
            del entries[member]
        self._drop_if_empty(key)
        return len(stale)

    async def range(self, key: str, low: float, high: float) -> list[tuple[str, float]]:
        entries = self._live(key) or {}
        return sorted(
            ((m, s) for m, s in entries.items() if low <= s <= high),
            key=lambda item: (item[1], item[0]),
        )

    async def remove(self, key: str, member: str) -> None:
        entries = self._live(key)
        if entries is not None:
            entries.pop(member, None)
            self._drop_if_empty(key)

    async def count(self, key: str) -> int:
        return len(self._live(key) or {})

    async def pop_lowest(self, key: str, count: int = 1) -> list[str]:
        entries = self._live(key)
        if not entries:
            return []
        ordered = sorted(entries.items(), key=lambda item: (item[1], item[0]))
        popped = [member for member, _score in ordered[:count]]
        for member in popped:
            del entries[member]
        self._drop_if_empty(key)
        return popped

    async def members(self, key: str) -> list[str]:
        entries = self._live(key) or {}
        return [m for m, _s in sorted(entries.items(), key=lambda item: (item[1], item[0]))]

    async def expire(self, key: str, seconds: int) -> None:
        if self._live(key) is not None:
            self._expires_at[key] = self._clock() + seconds

    async def delete(self, key: str) -> None:
        self._sets.pop(key, None)
        self._expires_at.pop(key, None)

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        self._sets.clear()
        self._expires_at.clear()


async def create_cache_backend(config: CacheConfig) -> CacheBackend:
    """Create a cache engine and make sure it answers before returning it."""
    if config.backend == CacheBackendType.MEMORY:
        return MemoryCacheBackend()

    backend = RedisCacheBackend.from_url(config.redis_url)
    for attempt in range(1, config.connect_attempts + 1):
        if await backend.ping():
            return backend
        logger.warning(
            "Waiting for cache engine... attempt %d/%d", attempt, config.connect_attempts
        )
        if attempt < config.connect_attempts:
            await asyncio.sleep(config.connect_delay)

    await backend.close()
    raise StoreUnreachable(
        f"Cache engine is not reachable after {config.connect_attempts} attempts",
        context={"operation": "connect", "attempts": config.connect_attempts},
    )
