"""Price source protocol — the boundary to external price feeds.

Collectors and the tracking service depend only on this interface, never
on a concrete exchange client.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class PriceSource(Protocol):
    """Consumer-facing interface for fetching the current price of an asset.

    Implementations raise the ``SourceError`` family:

    - ``UnsupportedAsset`` if the symbol cannot be mapped to a source id.
    - ``SourceUnavailable`` for network, HTTP or parse failures.
    - ``NoQuote`` if the source has no current quote.
    """

    async def get_price(self, asset: str) -> float:
        """Return the latest price for `asset`."""
        ...

    async def check_asset(self, asset: str) -> None:
        """Raise ``UnsupportedAsset`` if `asset` is unknown to the source."""
        ...

    async def supported_assets(self) -> list[str]:
        """Return the friendly symbols the source can quote, sorted."""
        ...

    async def close(self) -> None: ...
