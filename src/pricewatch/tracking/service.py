"""Tracking service: the operations exposed to the HTTP layer and the CLI."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable

from pricewatch.cache.recency import RecencyCache
from pricewatch.core.config import TrackingConfig
from pricewatch.core.exceptions import SourceUnavailable
from pricewatch.core.models import PriceQuote, normalize_asset
from pricewatch.source.provider import PriceSource
from pricewatch.storage.store import SampleStore
from pricewatch.tracking.collector import Collector
from pricewatch.tracking.registry import TrackingRegistry
from pricewatch.tracking.resolver import PriceResolver

logger = logging.getLogger(__name__)


class TrackingService:
    """Wires source, store, cache, resolver and registry together.

    Components are passed in explicitly; there are no module-level
    singletons.
    """

    def __init__(
        self,
        source: PriceSource,
        store: SampleStore,
        cache: RecencyCache,
        config: TrackingConfig,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.source = source
        self.store = store
        self.cache = cache
        self.resolver = PriceResolver(store, cache)
        self._interval = config.poll_interval
        self._clock = clock
        self.registry = TrackingRegistry(self._make_collector, cache)

    def _make_collector(self, asset: str, stop: asyncio.Event) -> Collector:
        return Collector(
            asset=asset,
            source=self.source,
            resolver=self.resolver,
            interval=self._interval,
            stop=stop,
            clock=self._clock,
        )

    async def start_tracking(self, asset: str) -> bool:
        """Begin polling `asset`. Idempotent.

        Raises:
            UnsupportedAsset: the price source does not know the symbol.
        """
        asset = normalize_asset(asset)
        if self.registry.is_tracked(asset):
            return False
        try:
            await self.source.check_asset(asset)
        except SourceUnavailable as e:
            # Collection retries on every tick anyway
            logger.warning("Could not validate %s with price source: %s", asset, e)
        return await self.registry.register(asset)

    async def stop_tracking(self, asset: str) -> bool:
        """Stop polling `asset`. Idempotent. History is kept."""
        return await self.registry.unregister(normalize_asset(asset))

    async def query_price(self, asset: str, timestamp: int | None = None) -> PriceQuote:
        """Price of `asset` nearest to `timestamp` (default: now).

        Raises:
            PriceNotFound: no sample exists for the asset.
        """
        asset = normalize_asset(asset)
        if timestamp is None:
            timestamp = int(self._clock())
        sample = await self.resolver.resolve(asset, timestamp)
        return PriceQuote(
            asset=asset,
            price=sample.price,
            timestamp=timestamp,
            sample_timestamp=sample.timestamp,
        )

    def tracked_assets(self) -> list[str]:
        return self.registry.tracked()

    async def shutdown(self) -> None:
        await self.registry.shutdown_all()
