"""Shared pytest fixtures for pricewatch."""

from __future__ import annotations

import asyncio

import pytest

from pricewatch.cache.backends import MemoryCacheBackend
from pricewatch.cache.recency import RecencyCache
from pricewatch.core.config import CacheConfig, StorageConfig
from pricewatch.core.exceptions import UnsupportedAsset
from pricewatch.core.models import CacheBackendType, Sample
from pricewatch.storage.store import SqliteSampleStore


class FakeClock:
    """Settable clock; call it to read the current value."""

    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakePriceSource:
    """In-memory PriceSource.

    `prices` maps asset -> list of prices returned on successive calls (the
    last one repeats). An exception instance in the list is raised instead.
    Setting `gate` makes get_price block until the gate event is set.
    """

    def __init__(self, prices: dict[str, list] | None = None) -> None:
        self.prices = prices or {}
        self.calls: dict[str, int] = {}
        self.gate: asyncio.Event | None = None
        self.fetch_started = asyncio.Event()
        self.closed = False

    async def get_price(self, asset: str) -> float:
        await self.check_asset(asset)
        n = self.calls.get(asset, 0)
        self.calls[asset] = n + 1
        self.fetch_started.set()
        if self.gate is not None:
            await self.gate.wait()
        series = self.prices[asset]
        value = series[min(n, len(series) - 1)]
        if isinstance(value, Exception):
            raise value
        return value

    async def check_asset(self, asset: str) -> None:
        if asset not in self.prices:
            raise UnsupportedAsset(f"Asset not supported: {asset}", context={"asset": asset})

    async def supported_assets(self) -> list[str]:
        return sorted(self.prices)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(10_000.0)


@pytest.fixture
def fake_source() -> FakePriceSource:
    return FakePriceSource({"BTC": [50_000.0, 50_100.0], "ETH": [3_000.0]})


@pytest.fixture
def cache_config() -> CacheConfig:
    return CacheConfig(
        backend=CacheBackendType.MEMORY,
        entry_ttl=600,
        retention=4 * 60 * 60,
        max_assets=100,
        hit_window=300,
    )


@pytest.fixture
def memory_backend() -> MemoryCacheBackend:
    return MemoryCacheBackend()


@pytest.fixture
def cache(memory_backend, cache_config, clock) -> RecencyCache:
    return RecencyCache(memory_backend, cache_config, clock=clock)


@pytest.fixture
async def store():
    """An initialized in-memory SqliteSampleStore."""
    s = SqliteSampleStore(StorageConfig(sqlite_path=":memory:"))
    await s.initialize()
    yield s
    await s.close()


@pytest.fixture
def make_sample():
    """Factory for Sample with overridable defaults."""

    def _make(**overrides) -> Sample:
        defaults = dict(asset="BTC", price=50_000.0, timestamp=1_000)
        defaults.update(overrides)
        return Sample(**defaults)

    return _make
