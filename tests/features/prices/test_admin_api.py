# tests/features/prices/test_admin_api.py
import os

import pytest
from fastapi.testclient import TestClient

from com.lingenhag.pricetrack.domain.errors import ConfigurationMissing
from com.lingenhag.pricetrack.features.prices.application.factories import PriceTrackerFactory
from com.lingenhag.pricetrack.features.prices.presentation.admin_api import PUBLIC_CACHE_CONTROL, create_app
from com.lingenhag.pricetrack.platform.config.settings import Settings
from com.lingenhag.pricetrack.platform.persistence.migrator import apply_migrations

MARKET_ID = "67400003"
DECIMAL_ID = "6861012"
GEM_ID = "auction_gem_test"

TOKEN = "s3cret"
AUTH = {"Authorization": f"Bearer {TOKEN}"}

CATALOG_CONFIG = {
    "items": [
        {"id": MARKET_ID, "display_name": "Marktitem", "source_kind": "market"},
        {"id": DECIMAL_ID, "display_name": "Dezimalitem", "source_kind": "market", "price_decimals": 1},
        {
            "id": GEM_ID,
            "display_name": "Testjuwel",
            "source_kind": "auction",
            "fetch_params": {"search_name": "Testjuwel", "category_code": 210000},
        },
    ]
}


def _factory(tmp_dir, source, store, edge, **config) -> PriceTrackerFactory:
    db_path = os.path.join(tmp_dir, "api.duckdb")
    apply_migrations(db_path)
    settings = Settings(config={"catalog": CATALOG_CONFIG, **config})
    return PriceTrackerFactory(config=settings, db_path=db_path, source=source, store=store, edge=edge)


@pytest.fixture
def factory(tmp_dir, mock_source, store, mock_edge):
    return _factory(tmp_dir, mock_source, store, mock_edge, admin={"token": TOKEN})


@pytest.fixture
def client(factory, kst):
    return TestClient(create_app(factory, now_fn=lambda: kst(2025, 6, 26, 12, 0)))


# ---- Auth ----
def test_admin_requires_bearer_token(client):
    assert client.post("/admin/sample").status_code == 401
    assert client.post("/admin/sample", headers={"Authorization": "Bearer wrong"}).status_code == 401
    assert client.get("/admin/status", headers={"Authorization": TOKEN}).status_code == 401


def test_production_without_token_is_fatal(tmp_dir, mock_source, store, mock_edge, monkeypatch):
    monkeypatch.delenv("ADMIN_TOKEN", raising=False)
    factory = _factory(tmp_dir, mock_source, store, mock_edge, app={"environment": "production"})
    with pytest.raises(ConfigurationMissing):
        create_app(factory)


def test_development_without_token_is_open(tmp_dir, mock_source, store, mock_edge, monkeypatch):
    monkeypatch.delenv("ADMIN_TOKEN", raising=False)
    factory = _factory(tmp_dir, mock_source, store, mock_edge, app={"environment": "development"})
    resp = TestClient(create_app(factory)).get("/admin/status")
    assert resp.status_code == 200


# ---- Admin-Operationen ----
def test_sample_returns_envelope_and_publishes_latest(client, fake_upstream, mock_edge):
    fake_upstream.prices = {MARKET_ID: 100, DECIMAL_ID: 12.34, GEM_ID: 5000}

    resp = client.post("/admin/sample", headers=AUTH)

    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["timestamp"] == "2025-06-26T03:00:00Z"
    assert body["message"] == "sample 2025-06-26: 3 ok, 0 failed"
    assert [r["itemId"] for r in body["results"]] == [MARKET_ID, DECIMAL_ID, GEM_ID]
    assert body["errors"] == []
    assert body["snapshots"] == {"latest_prices.json": "written"}
    mock_edge.purge.assert_called_once_with(("latest",))

    latest = client.get("/price-data/latest")
    assert latest.status_code == 200
    assert latest.headers["cache-control"] == PUBLIC_CACHE_CONTROL
    assert latest.headers["netlify-cache-tag"] == "latest"
    payload = latest.json()
    assert payload[MARKET_ID] == 100
    assert payload[DECIMAL_ID] == 12.3
    assert payload["_meta"]["date"] == "2025-06-26"


def test_sample_with_partial_failure(client, fake_upstream):
    fake_upstream.prices = {MARKET_ID: 100}

    body = client.post("/admin/sample", headers=AUTH, json={"itemIds": [MARKET_ID, GEM_ID]}).json()

    assert body["success"] is False
    assert len(body["results"]) == 1
    assert body["errors"][0]["itemId"] == GEM_ID
    assert body["errors"][0]["code"] == "upstream_unavailable"


def test_unknown_item_is_reported_next_to_valid_items(client, fake_upstream):
    fake_upstream.prices = {MARKET_ID: 95}

    resp = client.post("/admin/sample", headers=AUTH, json={"itemIds": [MARKET_ID, "typo"]})

    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is False
    assert [r["itemId"] for r in body["results"]] == [MARKET_ID]
    assert body["errors"] == [
        {"code": "unknown_item", "error": "Item 'typo' ist nicht im Katalog", "itemId": "typo"}
    ]


def test_finalize_explicit_date(client, fake_upstream):
    fake_upstream.prices = {MARKET_ID: 100}
    client.post("/admin/sample", headers=AUTH, json={"itemIds": [MARKET_ID]})

    body = client.post(
        "/admin/finalize", headers=AUTH, json={"date": "2025-06-26", "itemIds": [MARKET_ID]}
    ).json()

    assert body["success"] is True
    assert body["date"] == "2025-06-26"
    assert body["results"][0]["action"] == "finalized"
    assert body["results"][0]["price"] == 100

    history = client.get("/price-data/history")
    assert history.headers["netlify-cache-tag"] == "history"
    assert history.json() == {MARKET_ID: [{"date": "2025-06-26", "price": 100}]}


def test_repair_rejects_invalid_source(client):
    resp = client.post("/admin/repair", headers=AUTH, json={"date": "2025-06-25", "source": "guess"})
    assert resp.status_code == 400
    assert resp.json()["errors"][0]["code"] == "invalid_request"


def test_manual_repair_and_delete_record(client):
    body = client.post(
        "/admin/repair",
        headers=AUTH,
        json={"date": "2025-06-25", "source": "manual", "prices": {MARKET_ID: 95}},
    ).json()
    assert body["results"][0]["action"] == "repaired"

    deleted = client.delete(f"/admin/records/{MARKET_ID}/2025-06-25", headers=AUTH).json()
    assert deleted["results"][0]["action"] == "deleted"
    again = client.delete(f"/admin/records/{MARKET_ID}/2025-06-25", headers=AUTH).json()
    assert again["results"][0]["action"] == "not_found"


def test_backfill_requires_items(client):
    assert client.post("/admin/backfill", headers=AUTH, json={"itemIds": []}).status_code == 422


def test_cleanup_validates_keep_days(client):
    assert client.post("/admin/cleanup", headers=AUTH, json={"keepDays": 0}).status_code == 422
    body = client.post("/admin/cleanup", headers=AUTH, json={"keepDays": 3}).json()
    assert body["cutoff"] == "2025-06-23"
    assert body["deleted"] == 0


def test_status_lists_catalog(client):
    body = client.get("/admin/status", headers=AUTH).json()
    assert body["serviceDay"] == "2025-06-26"
    assert {r["itemId"] for r in body["results"]} == {MARKET_ID, DECIMAL_ID, GEM_ID}


# ---- Öffentliche Endpunkte ----
def test_missing_blob_is_500_without_caching(client):
    resp = client.get("/price-data/history")
    assert resp.status_code == 500
    assert resp.json() == {"error": "Internal Server Error"}
    assert resp.headers["cache-control"] == "no-store"


def test_health(client):
    assert client.get("/health").json() == {"status": "ok", "environment": "development"}
