"""Tracking registry: which assets have a live collector."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass

from pricewatch.cache.recency import RecencyCache
from pricewatch.core.exceptions import CacheError
from pricewatch.tracking.collector import Collector

logger = logging.getLogger(__name__)

CollectorFactory = Callable[[str, asyncio.Event], Collector]


@dataclass
class TrackedAsset:
    """Registry entry for one polled asset."""

    asset: str
    stop: asyncio.Event
    collector: Collector
    task: asyncio.Task


class TrackingRegistry:
    """Starts, stops and joins per-asset collectors.

    The lock covers map mutation only. Collectors are joined after the lock
    is released, and cache state is evicted only once the collector task has
    exited, so a late write cannot repopulate a removed entry.
    """

    def __init__(self, collector_factory: CollectorFactory, cache: RecencyCache) -> None:
        self._make_collector = collector_factory
        self._cache = cache
        self._tracked: dict[str, TrackedAsset] = {}
        self._lock = asyncio.Lock()

    def tracked(self) -> list[str]:
        return sorted(self._tracked)

    def is_tracked(self, asset: str) -> bool:
        return asset in self._tracked

    def get(self, asset: str) -> TrackedAsset | None:
        return self._tracked.get(asset)

    async def register(self, asset: str) -> bool:
        """Start collecting `asset`. Returns False if it was already tracked."""
        async with self._lock:
            if asset in self._tracked:
                return False
            stop = asyncio.Event()
            collector = self._make_collector(asset, stop)
            task = asyncio.create_task(collector.run(), name=f"collector:{asset}")
            self._tracked[asset] = TrackedAsset(
                asset=asset, stop=stop, collector=collector, task=task
            )
        logger.info("Tracking %s", asset)
        return True

    async def unregister(self, asset: str) -> bool:
        """Stop collecting `asset` and evict its cache entry.

        Returns False if the asset was not tracked.
        """
        async with self._lock:
            entry = self._tracked.pop(asset, None)
            if entry is None:
                return False
            entry.stop.set()

        await self._join(entry)
        try:
            await self._cache.evict(asset)
        except CacheError as e:
            logger.warning("Failed to evict cache entry for %s: %s", asset, e)
        logger.info("Stopped tracking %s", asset)
        return True

    async def shutdown_all(self) -> None:
        """Stop every collector and wait for all of them to exit."""
        async with self._lock:
            entries = list(self._tracked.values())
            self._tracked.clear()
            for entry in entries:
                entry.stop.set()

        if entries:
            logger.info("Stopping %d collectors", len(entries))
        await asyncio.gather(*(self._join(entry) for entry in entries))

    async def _join(self, entry: TrackedAsset) -> None:
        try:
            await entry.task
        except asyncio.CancelledError:
            if not entry.task.cancelled():
                raise
            logger.debug("Collector for %s was cancelled", entry.asset)
        except Exception:
            logger.exception("Collector for %s exited with an error", entry.asset)
