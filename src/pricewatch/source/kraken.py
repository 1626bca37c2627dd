"""Kraken price source — direct HTTP implementation.

Uses the unauthenticated ``/0/public/AssetPairs`` and ``/0/public/Ticker``
endpoints via httpx. The pair table is loaded lazily on first use and maps
friendly symbols (``BTC``) to Kraken pair ids (``XXBTZUSD``).
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx
from aiolimiter import AsyncLimiter

from pricewatch.core.config import SourceConfig
from pricewatch.core.exceptions import NoQuote, SourceUnavailable, UnsupportedAsset

logger = logging.getLogger(__name__)

_ASSET_PAIRS_PATH = "/0/public/AssetPairs"
_TICKER_PATH = "/0/public/Ticker"
_USER_AGENT = "pricewatch/0.1"

# Kraken's legacy base codes -> the symbols clients actually use
_SPECIAL_SYMBOLS: dict[str, str] = {
    "XBT": "BTC",
    "XDG": "DOGE",
}


def map_symbol(base: str) -> str:
    """Translate a Kraken base code into its friendly symbol."""
    return _SPECIAL_SYMBOLS.get(base, base)


def parse_asset_pairs(raw: dict[str, Any], quote_currency: str) -> dict[str, str]:
    """Build the {symbol: pair_id} table from an AssetPairs ``result`` object.

    Only online pairs quoted in `quote_currency` are kept.
    """
    suffix = f"/{quote_currency}"
    pairs: dict[str, str] = {}
    for pair_id, data in raw.items():
        if not isinstance(data, dict) or data.get("status") != "online":
            continue
        wsname = data.get("wsname") or ""
        if not wsname.endswith(suffix):
            continue
        parts = wsname.split("/")
        if len(parts) != 2:
            continue
        pairs[map_symbol(parts[0])] = pair_id
    return pairs


class KrakenPriceSource:
    """Fetches last-trade prices from Kraken's public REST API.

    Parameters
    ----------
    config : SourceConfig
        Base URL, quote currency, timeout and request rate.
    client : httpx.AsyncClient | None
        Custom client (useful for testing). Created from config if None.
    """

    def __init__(
        self,
        config: SourceConfig,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config
        self._limiter = AsyncLimiter(max_rate=config.rate_limit, time_period=1.0)
        self._client = client or httpx.AsyncClient(
            base_url=config.base_url,
            headers={"User-Agent": _USER_AGENT},
            timeout=httpx.Timeout(config.request_timeout),
        )
        self._pairs: dict[str, str] | None = None
        self._pairs_lock = asyncio.Lock()

    async def __aenter__(self) -> KrakenPriceSource:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    # --- Pair table ---

    async def _load_pairs(self) -> dict[str, str]:
        """Return the symbol table, fetching it on first use.

        A failed fetch is not remembered, so the next call tries again.
        """
        if self._pairs is not None:
            return self._pairs

        async with self._pairs_lock:
            if self._pairs is None:
                result = await self._get_result(_ASSET_PAIRS_PATH)
                self._pairs = parse_asset_pairs(result, self._config.quote_currency)
                logger.info(
                    "Loaded %d Kraken %s pairs",
                    len(self._pairs),
                    self._config.quote_currency,
                )
        return self._pairs

    async def _pair_id(self, asset: str) -> str:
        pairs = await self._load_pairs()
        pair_id = pairs.get(asset)
        if pair_id is None:
            raise UnsupportedAsset(
                f"Asset not supported by price source: {asset}",
                context={"asset": asset},
            )
        return pair_id

    async def check_asset(self, asset: str) -> None:
        await self._pair_id(asset)

    async def supported_assets(self) -> list[str]:
        return sorted(await self._load_pairs())

    # --- Quotes ---

    async def get_price(self, asset: str) -> float:
        """Return the last trade price of `asset` in the quote currency."""
        pair_id = await self._pair_id(asset)
        result = await self._get_result(_TICKER_PATH, params={"pair": pair_id})

        pair_data = result.get(pair_id)
        if not isinstance(pair_data, dict):
            raise NoQuote(
                f"No ticker data for pair {pair_id}",
                context={"asset": asset, "pair": pair_id},
            )

        last_trade = pair_data.get("c") or []
        if not last_trade:
            raise NoQuote(
                f"No price data in ticker response for {pair_id}",
                context={"asset": asset, "pair": pair_id},
            )

        try:
            return float(last_trade[0])
        except (TypeError, ValueError) as e:
            raise NoQuote(
                f"Invalid price format for {pair_id}: {last_trade[0]!r}",
                context={"asset": asset, "pair": pair_id},
            ) from e

    async def _get_result(
        self, path: str, params: dict[str, str] | None = None
    ) -> dict[str, Any]:
        """GET a Kraken public endpoint and return its ``result`` object.

        Raises:
            SourceUnavailable: transport error, non-200 status, invalid JSON,
                or a non-empty ``error`` array.
        """
        await self._limiter.acquire()
        try:
            response = await self._client.get(path, params=params)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise SourceUnavailable(
                f"Kraken HTTP {e.response.status_code} for {path}",
                context={"url": path, "status_code": e.response.status_code},
            ) from e
        except httpx.RequestError as e:
            raise SourceUnavailable(
                f"Kraken request error for {path}: {e}",
                context={"url": path, "status_code": None},
            ) from e
        except ValueError as e:
            raise SourceUnavailable(
                f"Kraken returned invalid JSON for {path}",
                context={"url": path, "status_code": response.status_code},
            ) from e

        if not isinstance(data, dict):
            raise SourceUnavailable(
                f"Unexpected Kraken payload for {path}",
                context={"url": path},
            )
        if data.get("error"):
            raise SourceUnavailable(
                f"Kraken API error for {path}: {data['error']}",
                context={"url": path, "errors": data["error"]},
            )
        result = data.get("result")
        if not isinstance(result, dict):
            raise SourceUnavailable(
                f"Kraken response for {path} has no result",
                context={"url": path},
            )
        return result
