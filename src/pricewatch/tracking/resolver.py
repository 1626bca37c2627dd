"""Price resolver: the read and write paths across cache and durable store."""

from __future__ import annotations

import logging

from pricewatch.cache.recency import RecencyCache
from pricewatch.core.exceptions import CacheError, CacheMiss, DurableWriteFailed, PriceNotFound
from pricewatch.core.models import Sample, closest_sample
from pricewatch.storage.store import SampleStore

logger = logging.getLogger(__name__)


class PriceResolver:
    """Resolves (asset, timestamp) queries, cache first.

    Write path: durable store, then cache. Read path: cache, then durable
    store with write-back into the cache. Neither path takes a lock; a read
    racing a write for the same asset may see either state.

    The resolver remembers, per asset, the oldest and newest durable
    timestamps it has seen. They let the cache answer queries that fall past
    either end of an asset's history. After a restart they are unknown until
    the next write or store lookup, and such queries go to the store.
    """

    def __init__(self, store: SampleStore, cache: RecencyCache) -> None:
        self._store = store
        self._cache = cache
        self._oldest: dict[str, int] = {}
        self._newest: dict[str, int] = {}

    async def write(self, sample: Sample) -> None:
        """Persist a fresh sample and add it to the cache.

        Failures are logged and swallowed: the collector that called us keeps
        running and the next tick tries again. A sample the store rejected
        is not cached either.
        """
        try:
            await self._store.insert_sample(sample)
        except DurableWriteFailed as e:
            logger.error("Failed to save sample for %s: %s", sample.asset, e)
            return

        asset = sample.asset
        previous = self._newest.get(asset)
        if previous is not None and sample.timestamp < previous:
            # Clock went backwards: the cached run may now have a gap
            logger.warning(
                "Out of order sample for %s at %d (newest %d)",
                asset, sample.timestamp, previous,
            )
            self._oldest.pop(asset, None)
            await self._cache_evict(asset)
            return

        self._newest[asset] = sample.timestamp
        try:
            await self._cache.put(sample, previous=previous)
        except CacheError as e:
            logger.warning("Cache update failed for %s: %s", asset, e)

    async def resolve(self, asset: str, timestamp: int) -> Sample:
        """Return the known sample closest to `timestamp`.

        Raises:
            PriceNotFound: no sample exists for the asset.
            StorageError: the durable store could not be queried.
        """
        try:
            sample = await self._cache.lookup(
                asset,
                timestamp,
                oldest=self._oldest.get(asset),
                newest=self._newest.get(asset),
            )
            logger.debug("Cache hit for %s at %d", asset, timestamp)
            return sample
        except CacheMiss:
            pass
        except CacheError as e:
            logger.warning("Cache read failed for %s, using durable store: %s", asset, e)

        before, after = await self._store.neighbours(asset, timestamp)
        if before is None and after is None:
            raise PriceNotFound(
                f"No price found for {asset}",
                context={"asset": asset, "timestamp": timestamp},
            )

        if after is None:
            self._newest[asset] = max(before.timestamp, self._newest.get(asset, before.timestamp))
        if before is None:
            self._oldest[asset] = after.timestamp

        run = [s for s in (before, after) if s is not None]
        if len(run) == 2 and before.timestamp == after.timestamp:
            run = [before]
        sample = closest_sample(run, timestamp)
        logger.debug(
            "Durable store hit for %s at %d (sample at %d)",
            asset, timestamp, sample.timestamp,
        )
        try:
            await self._cache.put_run(run)
        except CacheError as e:
            logger.warning("Cache update failed for %s: %s", asset, e)
        return sample

    async def _cache_evict(self, asset: str) -> None:
        try:
            await self._cache.evict(asset)
        except CacheError as e:
            logger.warning("Cache eviction failed for %s: %s", asset, e)
