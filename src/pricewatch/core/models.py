"""Domain models shared by every pricewatch layer."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, field_validator

from pricewatch.core.exceptions import InvalidAsset

# Type aliases
Asset = str
UnixSeconds = int


class StorageBackend(StrEnum):
    """Durable store engines."""

    SQLITE = "sqlite"


class CacheBackendType(StrEnum):
    """Cache engines the recency cache can run on."""

    REDIS = "redis"
    MEMORY = "memory"


def normalize_asset(value: str) -> str:
    """Canonical asset symbol: stripped, upper case."""
    symbol = value.strip().upper()
    if not symbol:
        raise InvalidAsset("asset must not be empty", context={"asset": value})
    return symbol


class Sample(BaseModel):
    """One (price, timestamp) observation for an asset.

    Immutable once written to the durable store.
    """

    model_config = ConfigDict(frozen=True)

    asset: Asset
    price: float
    timestamp: UnixSeconds

    @field_validator("asset")
    @classmethod
    def asset_not_empty(cls, v: str) -> str:
        if not v:
            raise ValueError("asset must not be empty")
        return v

    def distance(self, timestamp: UnixSeconds) -> int:
        """Absolute distance in seconds from `timestamp`."""
        return abs(self.timestamp - timestamp)


class PriceQuote(BaseModel):
    """Answer to a price query.

    `timestamp` echoes the queried time; `sample_timestamp` is the time of
    the sample that answered it.
    """

    model_config = ConfigDict(frozen=True)

    asset: Asset
    price: float
    timestamp: UnixSeconds
    sample_timestamp: UnixSeconds


class AssetCoverage(BaseModel):
    """Durable-store statistics for one asset."""

    model_config = ConfigDict(frozen=True)

    asset: Asset
    samples: int
    first_timestamp: UnixSeconds
    last_timestamp: UnixSeconds


def closest_sample(samples: list[Sample], timestamp: UnixSeconds) -> Sample | None:
    """Pick the sample nearest to `timestamp`.

    Ties are broken in favour of the smaller (earlier) timestamp.
    """
    if not samples:
        return None
    return min(samples, key=lambda s: (s.distance(timestamp), s.timestamp))
