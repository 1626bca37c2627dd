"""Price source layer: protocol plus the Kraken implementation."""

from pricewatch.source.kraken import KrakenPriceSource, map_symbol, parse_asset_pairs
from pricewatch.source.provider import PriceSource

__all__ = [
    "PriceSource",
    "KrakenPriceSource",
    "map_symbol",
    "parse_asset_pairs",
]
