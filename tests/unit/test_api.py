"""Tests for the FastAPI REST API module."""

from __future__ import annotations

import time

import pytest
from fastapi.testclient import TestClient

from pricewatch.api.app import create_app
from pricewatch.core.config import (
    APIConfig,
    CacheConfig,
    PricewatchConfig,
    StorageConfig,
    TrackingConfig,
)
from pricewatch.core.exceptions import SourceError, SourceUnavailable, StorageError
from pricewatch.core.models import CacheBackendType, Sample


# -- Fixtures --


def _make_config(tmp_path, api_key=None):
    """Create a test config: memory cache, file-backed SQLite, idle collectors."""
    return PricewatchConfig(
        tracking=TrackingConfig(poll_interval=3600),
        storage=StorageConfig(sqlite_path=str(tmp_path / "test.db")),
        cache=CacheConfig(backend=CacheBackendType.MEMORY),
        api=APIConfig(api_key=api_key),
    )


@pytest.fixture
def app(tmp_path, fake_source):
    return create_app(config=_make_config(tmp_path), source=fake_source)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def authed_client(tmp_path, fake_source):
    app = create_app(config=_make_config(tmp_path, api_key="test-secret-key"), source=fake_source)
    with TestClient(app) as c:
        yield c


def _service(client):
    return client.app.state.app_state.service


def _write(client, asset, price, timestamp):
    """Push a sample through the write path on the app's event loop."""
    sample = Sample(asset=asset, price=price, timestamp=timestamp)
    client.portal.call(_service(client).resolver.write, sample)


# -- Health --


class TestHealth:
    def test_health_ok(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ok"
        assert data["store_ok"] is True
        assert data["cache_ok"] is True
        assert data["tracked_assets"] == 0
        assert data["total_samples"] == 0

    def test_health_counts(self, client):
        client.post("/api/assets", json={"asset": "BTC"})
        _write(client, "BTC", 1.0, 1_000)
        data = client.get("/api/health").json()
        assert data["tracked_assets"] == 1
        assert data["total_samples"] == 1


# -- Tracking --


class TestTracking:
    def test_start_tracking(self, client):
        resp = client.post("/api/assets", json={"asset": "btc"})
        assert resp.status_code == 200
        assert resp.json() == {"asset": "BTC", "tracked": True, "changed": True}
        assert client.get("/api/assets").json() == {"assets": ["BTC"]}

    def test_start_tracking_twice(self, client):
        client.post("/api/assets", json={"asset": "BTC"})
        resp = client.post("/api/assets", json={"asset": "BTC"})
        assert resp.json()["changed"] is False

    def test_unsupported_asset_is_400(self, client):
        resp = client.post("/api/assets", json={"asset": "NOPE"})
        assert resp.status_code == 400
        assert resp.json()["error"] == "UnsupportedAsset"

    def test_empty_asset_is_422(self, client):
        assert client.post("/api/assets", json={"asset": ""}).status_code == 422
        assert client.post("/api/assets", json={"asset": "   "}).status_code == 422

    def test_stop_tracking(self, client):
        client.post("/api/assets", json={"asset": "BTC"})
        resp = client.delete("/api/assets/btc")
        assert resp.status_code == 200
        assert resp.json() == {"asset": "BTC", "tracked": False, "changed": True}
        assert client.get("/api/assets").json() == {"assets": []}

    def test_stop_untracked(self, client):
        resp = client.delete("/api/assets/BTC")
        assert resp.status_code == 200
        assert resp.json()["changed"] is False

    def test_blank_path_symbol_is_400(self, client):
        resp = client.delete("/api/assets/%20")
        assert resp.status_code == 400
        assert resp.json() == {"error": "InvalidAsset", "detail": "asset must not be empty"}


# -- Prices --


class TestPrices:
    def test_nearest_price(self, client):
        _write(client, "BTC", 50_000.0, 1_000)
        _write(client, "BTC", 50_100.0, 1_005)

        resp = client.get("/api/prices/BTC", params={"timestamp": 1_002})
        assert resp.status_code == 200
        assert resp.json() == {
            "asset": "BTC",
            "price": 50_000.0,
            "timestamp": 1_002,
            "sample_timestamp": 1_000,
        }
        assert client.get("/api/prices/btc?timestamp=1004").json()["price"] == 50_100.0

    def test_default_timestamp_is_now(self, client):
        now = int(time.time())
        _write(client, "ETH", 3_000.0, now)
        data = client.get("/api/prices/ETH").json()
        assert data["price"] == 3_000.0
        assert data["timestamp"] >= now

    def test_not_found_is_404(self, client):
        resp = client.get("/api/prices/BTC", params={"timestamp": 1_000})
        assert resp.status_code == 404
        assert resp.json()["error"] == "PriceNotFound"

    def test_negative_timestamp_is_422(self, client):
        assert client.get("/api/prices/BTC", params={"timestamp": -1}).status_code == 422

    def test_blank_symbol_is_400(self, client):
        resp = client.get("/api/prices/%20", params={"timestamp": 1_000})
        assert resp.status_code == 400
        assert resp.json()["error"] == "InvalidAsset"

    def test_storage_error_is_500(self, client, monkeypatch):
        async def broken(asset, timestamp):
            raise StorageError("database is locked")

        monkeypatch.setattr(_service(client).store, "neighbours", broken)
        resp = client.get("/api/prices/BTC", params={"timestamp": 1_000})
        assert resp.status_code == 500
        assert resp.json() == {"error": "StorageError", "detail": "database is locked"}

    def test_source_unavailable_does_not_block_tracking(self, client, monkeypatch):
        async def unreachable(asset):
            raise SourceUnavailable("Kraken down")

        monkeypatch.setattr(_service(client).source, "check_asset", unreachable)
        resp = client.post("/api/assets", json={"asset": "BTC"})
        assert resp.status_code == 200
        assert resp.json()["changed"] is True

    def test_other_source_error_is_502(self, client, monkeypatch):
        async def garbled(asset):
            raise SourceError("unexpected payload")

        monkeypatch.setattr(_service(client).source, "check_asset", garbled)
        resp = client.post("/api/assets", json={"asset": "BTC"})
        assert resp.status_code == 502
        assert resp.json()["error"] == "SourceError"


# -- Original JSON-body endpoints --


class TestCurrencyEndpoints:
    def test_add_and_remove(self, client):
        resp = client.post("/api/currency/add", json={"coin": "btc"})
        assert resp.status_code == 200
        assert resp.json() == {}
        assert client.get("/api/assets").json() == {"assets": ["BTC"]}

        resp = client.post("/api/currency/remove", json={"coin": "BTC"})
        assert resp.status_code == 200
        assert resp.json() == {}
        assert client.get("/api/assets").json() == {"assets": []}

    def test_add_unsupported(self, client):
        assert client.post("/api/currency/add", json={"coin": "NOPE"}).status_code == 400

    def test_price(self, client):
        _write(client, "BTC", 50_000.0, 1_000)
        resp = client.post("/api/currency/price", json={"coin": "BTC", "timestamp": 1_003})
        assert resp.status_code == 200
        assert resp.json() == {"coin": "BTC", "price": 50_000.0, "timestamp": 1_003}

    def test_price_missing_coin(self, client):
        assert client.post("/api/currency/price", json={"timestamp": 1}).status_code == 422

    def test_price_unknown(self, client):
        resp = client.post("/api/currency/price", json={"coin": "DOGE", "timestamp": 1})
        assert resp.status_code == 404


# -- Authentication --


class TestApiKey:
    def test_missing_key_rejected(self, authed_client):
        resp = authed_client.get("/api/assets")
        assert resp.status_code == 401
        assert resp.json()["error"] == "Unauthorized"

    def test_valid_key_accepted(self, authed_client):
        resp = authed_client.get("/api/assets", headers={"X-API-Key": "test-secret-key"})
        assert resp.status_code == 200

    def test_health_exempt(self, authed_client):
        assert authed_client.get("/api/health").status_code == 200


# -- Lifespan --


class TestLifespan:
    def test_shutdown_stops_collectors_and_closes_source(self, app, fake_source):
        with TestClient(app) as c:
            c.post("/api/assets", json={"asset": "BTC"})
            service = _service(c)
            task = service.registry.get("BTC").task
        assert task.done()
        assert service.tracked_assets() == []
        assert fake_source.closed is True

    def test_history_survives_restart(self, tmp_path, fake_source):
        config = _make_config(tmp_path)
        with TestClient(create_app(config=config, source=fake_source)) as c:
            _write(c, "BTC", 42.0, 1_000)
        with TestClient(create_app(config=config, source=fake_source)) as c:
            resp = c.get("/api/prices/BTC", params={"timestamp": 1_000})
        assert resp.json()["price"] == 42.0
