"""Per-asset background collector."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable

from pricewatch.core.exceptions import SourceError
from pricewatch.core.models import Sample
from pricewatch.source.provider import PriceSource
from pricewatch.tracking.resolver import PriceResolver

logger = logging.getLogger(__name__)


class Collector:
    """Polls the price source for one asset on a fixed interval.

    Lifecycle is ``Running -> Stopped``; the only way out is the stop event.
    The stop event is checked after every interval wait, before each fetch
    and again before the write, so a stop that arrives together with a tick
    always wins. A failed tick is logged and the loop carries on.

    Parameters
    ----------
    asset : str
        Canonical asset symbol.
    source : PriceSource
        Where prices come from.
    resolver : PriceResolver
        Write path for the samples.
    interval : float
        Seconds between ticks.
    stop : asyncio.Event
        Cancellation token owned by the tracking registry.
    clock : Callable[[], float]
        Unix-seconds clock used to timestamp samples.
    """

    def __init__(
        self,
        asset: str,
        source: PriceSource,
        resolver: PriceResolver,
        interval: float,
        stop: asyncio.Event,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.asset = asset
        self._source = source
        self._resolver = resolver
        self._interval = interval
        self._stop = stop
        self._clock = clock
        self.ticks = 0

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    async def run(self) -> None:
        """Tick until the stop event is set."""
        logger.info("Started collecting %s every %.1fs", self.asset, self._interval)
        while not await self._wait_for_tick():
            try:
                await self.tick()
            except Exception:
                logger.exception("Unexpected error while collecting %s", self.asset)
        logger.info("Stopped collecting %s", self.asset)

    async def _wait_for_tick(self) -> bool:
        """Sleep one interval. Returns True if the collector must stop."""
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=self._interval)
        except TimeoutError:
            pass
        return self._stop.is_set()

    async def tick(self) -> Sample | None:
        """Fetch one price and hand it to the write path."""
        if self.stopped:
            return None
        self.ticks += 1

        try:
            price = await self._source.get_price(self.asset)
        except SourceError as e:
            logger.warning("Failed to get price for %s: %s", self.asset, e)
            return None

        if self.stopped:
            return None

        sample = Sample(asset=self.asset, price=price, timestamp=int(self._clock()))
        logger.debug("%s: %f, %d", sample.asset, sample.price, sample.timestamp)
        await self._resolver.write(sample)
        return sample
