"""Tests for pricewatch.cache.backends."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from pricewatch.cache.backends import (
    CacheBackend,
    MemoryCacheBackend,
    RedisCacheBackend,
    create_cache_backend,
)
from pricewatch.core.config import CacheConfig
from pricewatch.core.exceptions import CacheError, StoreUnreachable
from pricewatch.core.models import CacheBackendType


class TestMemoryBackend:
    async def test_satisfies_protocol(self, memory_backend):
        assert isinstance(memory_backend, CacheBackend)

    async def test_add_and_range(self, memory_backend):
        await memory_backend.add("k", "b", 2)
        await memory_backend.add("k", "a", 1)
        await memory_backend.add("k", "c", 3)
        assert await memory_backend.range("k", 1, 2) == [("a", 1), ("b", 2)]

    async def test_add_updates_score(self, memory_backend):
        await memory_backend.add("k", "a", 1)
        await memory_backend.add("k", "a", 5)
        assert await memory_backend.range("k", 0, 10) == [("a", 5)]
        assert await memory_backend.count("k") == 1

    async def test_trim_is_exclusive(self, memory_backend):
        for score in (1, 2, 3):
            await memory_backend.add("k", str(score), score)
        assert await memory_backend.trim("k", 2) == 1
        assert await memory_backend.members("k") == ["2", "3"]

    async def test_pop_lowest(self, memory_backend):
        for member, score in (("x", 3), ("y", 1), ("z", 2)):
            await memory_backend.add("k", member, score)
        assert await memory_backend.pop_lowest("k", 2) == ["y", "z"]
        assert await memory_backend.members("k") == ["x"]

    async def test_pop_lowest_missing_key(self, memory_backend):
        assert await memory_backend.pop_lowest("nope") == []

    async def test_remove_and_delete(self, memory_backend):
        await memory_backend.add("k", "a", 1)
        await memory_backend.add("k", "b", 2)
        await memory_backend.remove("k", "a")
        assert await memory_backend.members("k") == ["b"]
        await memory_backend.delete("k")
        assert await memory_backend.count("k") == 0

    async def test_expiry(self, clock):
        backend = MemoryCacheBackend(clock=clock)
        await backend.add("k", "a", 1)
        await backend.expire("k", 10)

        clock.advance(9)
        assert await backend.count("k") == 1
        clock.advance(1)
        assert await backend.count("k") == 0

    async def test_expire_refresh_extends_life(self, clock):
        backend = MemoryCacheBackend(clock=clock)
        await backend.add("k", "a", 1)
        await backend.expire("k", 10)
        clock.advance(8)
        await backend.expire("k", 10)
        clock.advance(8)
        assert await backend.members("k") == ["a"]

    async def test_expired_key_starts_fresh(self, clock):
        backend = MemoryCacheBackend(clock=clock)
        await backend.add("k", "old", 1)
        await backend.expire("k", 10)
        clock.advance(20)
        await backend.add("k", "new", 2)
        assert await backend.members("k") == ["new"]

    async def test_expire_missing_key_is_noop(self, memory_backend):
        await memory_backend.expire("nope", 10)
        await memory_backend.add("nope", "a", 1)
        assert await memory_backend.count("nope") == 1

    async def test_ping(self, memory_backend):
        assert await memory_backend.ping() is True


class TestRedisBackend:
    @pytest.fixture
    def redis_client(self):
        return AsyncMock()

    @pytest.fixture
    def backend(self, redis_client):
        return RedisCacheBackend(redis_client)

    async def test_add(self, backend, redis_client):
        await backend.add("token:BTC", "1000:50000.0", 1000)
        redis_client.zadd.assert_awaited_once_with("token:BTC", {"1000:50000.0": 1000})

    async def test_trim_uses_exclusive_bound(self, backend, redis_client):
        redis_client.zremrangebyscore.return_value = 2
        assert await backend.trim("token:BTC", 1000) == 2
        redis_client.zremrangebyscore.assert_awaited_once_with("token:BTC", "-inf", "(1000")

    async def test_range_converts_scores(self, backend, redis_client):
        redis_client.zrangebyscore.return_value = [("1000:1.5", "1000")]
        rows = await backend.range("token:BTC", 700, 1300)
        assert rows == [("1000:1.5", 1000.0)]
        redis_client.zrangebyscore.assert_awaited_once_with(
            "token:BTC", 700, 1300, withscores=True
        )

    async def test_pop_lowest_returns_members(self, backend, redis_client):
        redis_client.zpopmin.return_value = [("BTC", 1.0), ("ETH", 2.0)]
        assert await backend.pop_lowest("token:lru", 2) == ["BTC", "ETH"]

    async def test_expire_and_delete(self, backend, redis_client):
        await backend.expire("token:BTC", 600)
        await backend.delete("token:BTC")
        redis_client.expire.assert_awaited_once_with("token:BTC", 600)
        redis_client.delete.assert_awaited_once_with("token:BTC")

    async def test_redis_error_wrapped(self, backend, redis_client):
        redis_client.zcard.side_effect = RedisConnectionError("connection refused")
        with pytest.raises(CacheError) as exc_info:
            await backend.count("token:lru")
        assert exc_info.value.context == {"operation": "zcard", "key": "token:lru"}

    async def test_ping_false_on_error(self, backend, redis_client):
        redis_client.ping.side_effect = RedisConnectionError("down")
        assert await backend.ping() is False

    async def test_close(self, backend, redis_client):
        await backend.close()
        redis_client.aclose.assert_awaited_once()


class TestCreateCacheBackend:
    async def test_memory(self):
        backend = await create_cache_backend(CacheConfig(backend=CacheBackendType.MEMORY))
        assert isinstance(backend, MemoryCacheBackend)

    async def test_redis_ready(self):
        fake = MagicMock()
        fake.ping = AsyncMock(return_value=True)
        with patch.object(RedisCacheBackend, "from_url", return_value=fake) as from_url:
            backend = await create_cache_backend(CacheConfig(redis_url="redis://cache:6379/0"))
        assert backend is fake
        from_url.assert_called_once_with("redis://cache:6379/0")

    async def test_redis_retries_then_succeeds(self):
        fake = MagicMock()
        fake.ping = AsyncMock(side_effect=[False, True])
        with patch.object(RedisCacheBackend, "from_url", return_value=fake):
            backend = await create_cache_backend(CacheConfig(connect_delay=0))
        assert backend is fake
        assert fake.ping.await_count == 2

    async def test_redis_unreachable(self):
        fake = MagicMock()
        fake.ping = AsyncMock(return_value=False)
        fake.close = AsyncMock()
        with patch.object(RedisCacheBackend, "from_url", return_value=fake):
            with pytest.raises(StoreUnreachable):
                await create_cache_backend(CacheConfig(connect_attempts=3, connect_delay=0))
        assert fake.ping.await_count == 3
        fake.close.assert_awaited_once()
