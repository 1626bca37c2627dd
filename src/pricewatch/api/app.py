"""FastAPI application factory."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from pricewatch.api.deps import AppState, api_key_middleware
from pricewatch.api.routes import router
from pricewatch.cache.backends import create_cache_backend
from pricewatch.cache.recency import RecencyCache
from pricewatch.core.config import PricewatchConfig, load_config
from pricewatch.core.exceptions import (
    ConfigError,
    InvalidAsset,
    PriceNotFound,
    PricewatchError,
    SourceError,
    StorageError,
    UnsupportedAsset,
)
from pricewatch.source.kraken import KrakenPriceSource
from pricewatch.source.provider import PriceSource
from pricewatch.storage.store import create_store
from pricewatch.tracking.service import TrackingService

logger = logging.getLogger(__name__)

# Checked in order; first isinstance match wins
_STATUS_MAP: list[tuple[type[PricewatchError], int]] = [
    (InvalidAsset, 400),
    (UnsupportedAsset, 400),
    (PriceNotFound, 404),
    (ConfigError, 400),
    (SourceError, 502),
    (StorageError, 500),
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup/shutdown lifecycle.

    Startup fails if the durable store or the cache engine is unreachable.
    Shutdown joins every collector before closing the connections.
    """
    config = app.state._pending_config or load_config()
    store = await create_store(config.storage)
    try:
        cache_backend = await create_cache_backend(config.cache)
    except Exception:
        await store.close()
        raise

    source: PriceSource = app.state._pending_source or KrakenPriceSource(config.source)
    service = TrackingService(
        source=source,
        store=store,
        cache=RecencyCache(cache_backend, config.cache),
        config=config.tracking,
    )
    app.state.app_state = AppState(config=config, service=service, cache_backend=cache_backend)
    logger.info("pricewatch ready (cache=%s)", config.cache.backend.value)

    yield

    logger.info("Shutting down pricewatch...")
    await service.shutdown()
    await source.close()
    await cache_backend.close()
    await store.close()


def create_app(
    config: PricewatchConfig | None = None,
    source: PriceSource | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    import pricewatch

    app = FastAPI(
        title="pricewatch API",
        description="Asset price tracking with nearest-timestamp lookup",
        version=pricewatch.__version__,
        lifespan=lifespan,
    )

    # Stash overrides so lifespan can retrieve them
    app.state._pending_config = config
    app.state._pending_source = source

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # No-op unless api.api_key is configured
    app.middleware("http")(api_key_middleware)

    app.include_router(router, prefix="/api")

    @app.exception_handler(PricewatchError)
    async def pricewatch_exception_handler(request: Request, exc: PricewatchError):
        status = next(
            (code for exc_type, code in _STATUS_MAP if isinstance(exc, exc_type)),
            500,
        )
        return JSONResponse(
            status_code=status,
            content={"error": type(exc).__name__, "detail": str(exc)},
        )

    return app
