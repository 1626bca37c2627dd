"""Recency cache: windowed per-asset samples with a global asset cap.

Layout on the cache engine:

- ``<prefix>:<asset>``: the asset's samples, member ``"<ts>:<price>"``
  scored by timestamp. Carries its own expiry, refreshed on read and write.
- ``<prefix>:lru``: one member per cached asset, scored by the time of its
  last read-or-write touch. When it grows past ``max_assets`` the lowest
  scored assets lose their sample key.

Invariants:

- Every sample returned has ``timestamp >= now - retention``. Stale samples
  are pruned on write and filtered on read.
- An entry holds one unbroken run of the durable store's samples for its
  asset: no durable sample lies between two cached ones. A write that would
  leave a gap replaces the entry instead.
- Assets holding a sample key are a subset of the LRU members, so the number
  of cached assets never exceeds ``max_assets``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Sequence

from pricewatch.cache.backends import CacheBackend
from pricewatch.core.config import CacheConfig
from pricewatch.core.exceptions import CacheError, CacheMiss
from pricewatch.core.models import Sample, closest_sample

logger = logging.getLogger(__name__)

# Smallest step that keeps touch scores strictly increasing at epoch scale
_TOUCH_EPSILON = 1e-6


def encode_member(sample: Sample) -> str:
    return f"{sample.timestamp}:{sample.price!r}"


def decode_member(asset: str, member: str) -> Sample:
    ts, _, price = member.partition(":")
    try:
        return Sample(asset=asset, price=float(price), timestamp=int(ts))
    except ValueError as e:
        raise CacheError(
            f"Malformed cache member {member!r}",
            context={"operation": "decode", "key": asset},
        ) from e


def _covers(
    samples: list[Sample], timestamp: int, oldest: int | None, newest: int | None
) -> bool:
    """Whether cached samples, ascending, are sure to include the durable nearest one."""
    if not samples:
        return False
    first, last = samples[0].timestamp, samples[-1].timestamp
    if first <= timestamp <= last:
        return True
    if last < timestamp:
        return last == newest
    return first == oldest


class RecencyCache:
    """Eviction and retention policy over a ``CacheBackend``.

    Parameters
    ----------
    backend : CacheBackend
        The engine holding the sorted sets.
    config : CacheConfig
        TTL, retention, cap, hit window and key prefix.
    clock : Callable[[], float]
        Wall-clock source in unix seconds. Injected by tests.
    """

    def __init__(
        self,
        backend: CacheBackend,
        config: CacheConfig,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._backend = backend
        self._ttl = config.entry_ttl
        self._retention = config.retention
        self._max_assets = config.max_assets
        self._window = config.hit_window
        self._prefix = config.key_prefix
        self._clock = clock
        # Guards the touch-then-evict sequence on the LRU ranking
        self._lru_lock = asyncio.Lock()
        self._last_touch = 0.0

    @property
    def backend(self) -> CacheBackend:
        return self._backend

    def entry_key(self, asset: str) -> str:
        return f"{self._prefix}:{asset}"

    @property
    def lru_key(self) -> str:
        return f"{self._prefix}:lru"

    def _retention_floor(self) -> float:
        return self._clock() - self._retention

    async def put(self, sample: Sample, previous: int | None = None) -> None:
        """Append a freshly collected sample.

        `previous` is the timestamp of the durable sample written just before
        this one, if known. The entry is extended only when it still holds
        that sample; otherwise it restarts from `sample`.
        """
        await self.put_run([sample], previous=previous)

    async def put_run(self, samples: Sequence[Sample], previous: int | None = None) -> None:
        """Cache consecutive durable samples of one asset, oldest first.

        The run joins the entry when the entry already holds one of its
        samples or `previous`, and replaces it otherwise. Samples older than
        the retention window are dropped up front; if none is left, neither
        the entry nor the asset's recency marker is touched.
        """
        floor = self._retention_floor()
        fresh = [s for s in samples if s.timestamp >= floor]
        if not fresh:
            if samples:
                logger.debug("Skipped caching stale samples for %s", samples[0].asset)
            return

        asset = fresh[0].asset
        key = self.entry_key(asset)
        anchors = {s.timestamp for s in fresh}
        if previous is not None:
            anchors.add(previous)
        held = await self._backend.range(key, min(anchors), max(anchors))
        if not anchors.intersection(score for _member, score in held):
            await self._backend.delete(key)

        for sample in fresh:
            await self._backend.add(key, encode_member(sample), sample.timestamp)
        pruned = await self._backend.trim(key, floor)
        if pruned:
            logger.debug("Pruned %d stale samples for %s", pruned, asset)
        await self._backend.expire(key, self._ttl)
        await self._touch(asset)

    async def lookup(
        self,
        asset: str,
        timestamp: int,
        oldest: int | None = None,
        newest: int | None = None,
    ) -> Sample:
        """Return the cached sample closest to `timestamp`.

        Only samples within ``hit_window`` seconds of the query and inside the
        retention window qualify. Ties go to the earlier sample. The entry
        answers only when it shows the durable nearest sample: an exact match,
        cached samples on both sides of the query, or samples on one side
        ending at the asset's `newest` (or starting at its `oldest`) durable
        timestamp.

        Raises:
            CacheMiss: no entry for the asset, or it cannot vouch for the answer.
        """
        key = self.entry_key(asset)
        low = max(timestamp - self._window, self._retention_floor())
        high = timestamp + self._window
        if low > high:
            raise CacheMiss(
                f"Query for {asset} at {timestamp} is outside the retention window",
                context={"asset": asset, "timestamp": timestamp},
            )

        rows = await self._backend.range(key, low, high)
        samples = [decode_member(asset, m) for m, _score in rows]
        if not _covers(samples, timestamp, oldest, newest):
            raise CacheMiss(
                f"No cached sample for {asset} near {timestamp}",
                context={"asset": asset, "timestamp": timestamp},
            )

        await self._backend.expire(key, self._ttl)
        await self._touch(asset)
        return closest_sample(samples, timestamp)

    async def evict(self, asset: str) -> None:
        """Drop the asset's samples and its recency marker."""
        await self._backend.delete(self.entry_key(asset))
        await self._backend.remove(self.lru_key, asset)

    async def cached_assets(self) -> list[str]:
        """Assets ranked from least to most recently touched."""
        return await self._backend.members(self.lru_key)

    async def _touch(self, asset: str) -> None:
        async with self._lru_lock:
            score = max(self._clock(), self._last_touch + _TOUCH_EPSILON)
            self._last_touch = score
            await self._backend.add(self.lru_key, asset, score)

            overflow = await self._backend.count(self.lru_key) - self._max_assets
            if overflow <= 0:
                return
            for evicted in await self._backend.pop_lowest(self.lru_key, overflow):
                await self._backend.delete(self.entry_key(evicted))
                logger.info("Evicted least recently used asset %s from cache", evicted)
