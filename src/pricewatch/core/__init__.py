"""pricewatch.core — Foundation types, config, and exceptions."""

from pricewatch.core.config import (
    APIConfig,
    CacheConfig,
    PricewatchConfig,
    SourceConfig,
    StorageConfig,
    TrackingConfig,
    load_config,
)
from pricewatch.core.exceptions import (
    CacheError,
    CacheMiss,
    ConfigError,
    DurableWriteFailed,
    InvalidAsset,
    NoQuote,
    PriceNotFound,
    PricewatchError,
    SourceError,
    SourceUnavailable,
    StorageError,
    StoreUnreachable,
    UnsupportedAsset,
)
from pricewatch.core.models import (
    Asset,
    AssetCoverage,
    CacheBackendType,
    PriceQuote,
    Sample,
    StorageBackend,
    UnixSeconds,
    closest_sample,
    normalize_asset,
)

__all__ = [
    # Type aliases
    "Asset",
    "UnixSeconds",
    # Enums
    "StorageBackend",
    "CacheBackendType",
    # Models
    "Sample",
    "PriceQuote",
    "AssetCoverage",
    "closest_sample",
    "normalize_asset",
    # Config
    "PricewatchConfig",
    "SourceConfig",
    "TrackingConfig",
    "StorageConfig",
    "CacheConfig",
    "APIConfig",
    "load_config",
    # Exceptions
    "PricewatchError",
    "ConfigError",
    "InvalidAsset",
    "SourceError",
    "UnsupportedAsset",
    "SourceUnavailable",
    "NoQuote",
    "CacheError",
    "CacheMiss",
    "PriceNotFound",
    "StorageError",
    "DurableWriteFailed",
    "StoreUnreachable",
]
