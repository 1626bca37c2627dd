"""FastAPI route definitions for the pricewatch API."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

import pricewatch
from pricewatch.api.deps import AppState, get_app_state, get_service
from pricewatch.api.schemas import (
    CoinPriceRequest,
    CoinPriceResponse,
    CoinRequest,
    ErrorResponse,
    HealthResponse,
    PriceResponse,
    TrackedAssetsResponse,
    TrackingResponse,
    TrackRequest,
)
from pricewatch.core.models import normalize_asset
from pricewatch.tracking.service import TrackingService

router = APIRouter()


# -- Health --


@router.get("/health", response_model=HealthResponse)
async def health_check(state: AppState = Depends(get_app_state)):
    """Store and cache reachability plus basic counts."""
    service = state.service
    store_ok = await service.store.health_check()
    cache_ok = await state.cache_backend.ping()
    total = await service.store.count_samples() if store_ok else 0
    return HealthResponse(
        status="ok" if store_ok and cache_ok else "degraded",
        version=pricewatch.__version__,
        store_ok=store_ok,
        cache_ok=cache_ok,
        tracked_assets=len(service.tracked_assets()),
        total_samples=total,
    )


# -- Tracking --


@router.get("/assets", response_model=TrackedAssetsResponse)
async def list_tracked(service: TrackingService = Depends(get_service)):
    """Assets currently being collected."""
    return TrackedAssetsResponse(assets=service.tracked_assets())


@router.post(
    "/assets",
    response_model=TrackingResponse,
    responses={400: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
)
async def start_tracking(
    body: TrackRequest,
    service: TrackingService = Depends(get_service),
):
    """Start collecting prices for an asset. Idempotent."""
    changed = await service.start_tracking(body.asset)
    return TrackingResponse(asset=body.asset, tracked=True, changed=changed)


@router.delete("/assets/{asset}", response_model=TrackingResponse)
async def stop_tracking(
    asset: str,
    service: TrackingService = Depends(get_service),
):
    """Stop collecting prices for an asset. Idempotent; history is kept."""
    changed = await service.stop_tracking(asset)
    return TrackingResponse(asset=normalize_asset(asset), tracked=False, changed=changed)


# -- Prices --


@router.get(
    "/prices/{asset}",
    response_model=PriceResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_price(
    asset: str,
    timestamp: int | None = Query(None, ge=0, description="Unix seconds; default now"),
    service: TrackingService = Depends(get_service),
):
    """Price nearest to `timestamp`, from cache or durable store."""
    quote = await service.query_price(asset, timestamp)
    return PriceResponse(**quote.model_dump())


# -- Original JSON-body endpoints --


@router.post("/currency/add", status_code=200)
async def add_currency(
    body: CoinRequest,
    service: TrackingService = Depends(get_service),
):
    """Start collecting prices for a coin."""
    await service.start_tracking(body.coin)
    return {}


@router.post("/currency/remove", status_code=200)
async def remove_currency(
    body: CoinRequest,
    service: TrackingService = Depends(get_service),
):
    """Stop collecting prices for a coin."""
    await service.stop_tracking(body.coin)
    return {}


@router.post(
    "/currency/price",
    response_model=CoinPriceResponse,
    responses={404: {"model": ErrorResponse}},
)
async def currency_price(
    body: CoinPriceRequest,
    service: TrackingService = Depends(get_service),
):
    """Price at the requested time or the nearest available."""
    quote = await service.query_price(body.coin, body.timestamp)
    return CoinPriceResponse(coin=quote.asset, price=quote.price, timestamp=quote.timestamp)
