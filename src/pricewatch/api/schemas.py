"""API-specific request/response schemas (Pydantic v2)."""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from pricewatch.core.models import normalize_asset


# -- Error --


class ErrorResponse(BaseModel):
    """Standard error envelope."""

    error: str
    detail: str | None = None


# -- Health --


class HealthResponse(BaseModel):
    """Service health summary."""

    status: str
    version: str
    store_ok: bool
    cache_ok: bool
    tracked_assets: int
    total_samples: int


# -- Tracking --


class TrackRequest(BaseModel):
    """Body of POST /api/assets."""

    asset: str = Field(..., min_length=1, max_length=32)

    @field_validator("asset")
    @classmethod
    def canonical_asset(cls, v: str) -> str:
        return normalize_asset(v)


class TrackingResponse(BaseModel):
    """Outcome of a start/stop request."""

    asset: str
    tracked: bool
    changed: bool


class TrackedAssetsResponse(BaseModel):
    """Assets with a live collector."""

    assets: list[str]


# -- Prices --


class PriceResponse(BaseModel):
    """Price nearest to the queried timestamp."""

    asset: str
    price: float
    timestamp: int
    sample_timestamp: int


# -- Original JSON-body endpoints --


class CoinRequest(BaseModel):
    """Body of POST /api/currency/add and /api/currency/remove."""

    coin: str = Field(..., min_length=1, max_length=32)

    @field_validator("coin")
    @classmethod
    def canonical_coin(cls, v: str) -> str:
        return normalize_asset(v)


class CoinPriceRequest(CoinRequest):
    """Body of POST /api/currency/price. Timestamp defaults to now."""

    timestamp: int | None = Field(None, ge=0)


class CoinPriceResponse(BaseModel):
    coin: str
    price: float
    timestamp: int
