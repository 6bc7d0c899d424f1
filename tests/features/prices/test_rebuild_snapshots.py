# tests/features/prices/test_rebuild_snapshots.py
from datetime import date, datetime, timedelta, timezone
from unittest.mock import Mock

import pytest

from com.lingenhag.pricetrack.domain.errors import StorageWriteFailure
from com.lingenhag.pricetrack.domain.models import BatchResult, DailyPriceRecord, SourceKind
from com.lingenhag.pricetrack.features.prices.application.price_reader import PriceDataReader
from com.lingenhag.pricetrack.features.prices.application.ports import ObjectStorePort
from com.lingenhag.pricetrack.features.prices.application.usecases.rebuild_snapshots import (
    RebuildSnapshots,
    publish_snapshots,
)
from com.lingenhag.pricetrack.features.prices.infrastructure.tag_cache import TagCache

MARKET_ID = "67400003"
DECIMAL_ID = "6861012"
GEM_ID = "auction_gem_test"

NOW = datetime(2025, 6, 26, 3, 0, tzinfo=timezone.utc)  # 12:00 KST
TODAY = date(2025, 6, 26)


def test_latest_uses_bucket_then_prior_record(snapshots, repo):
    repo.overwrite_value(MARKET_ID, TODAY, SourceKind.AGGREGATED, 95.4, NOW)
    repo.upsert_record(DailyPriceRecord(GEM_ID, TODAY - timedelta(days=1), 5000, recorded_at=NOW))

    snapshot = snapshots.build_latest(NOW)

    assert snapshot.as_of_date == TODAY
    assert snapshot.prices == {MARKET_ID: 95, GEM_ID: 5000}


def test_latest_payload_shape(snapshots, repo):
    repo.overwrite_value(DECIMAL_ID, TODAY, SourceKind.AGGREGATED, 12.35, NOW)

    outcome = snapshots.rebuild_latest(NOW)

    assert outcome.changed
    assert outcome.tag == "latest"
    assert outcome.payload == {
        DECIMAL_ID: 12.4,
        "_meta": {"date": "2025-06-26", "updatedAt": "2025-06-26T03:00:00Z"},
    }


def test_history_payload_is_date_sorted(snapshots, repo):
    for offset, price in ((0, 100), (2, 80), (1, 90)):
        repo.upsert_record(DailyPriceRecord(MARKET_ID, TODAY - timedelta(days=offset), price, recorded_at=NOW))

    payload = snapshots.build_history()

    assert payload == {MARKET_ID: [
        {"date": "2025-06-24", "price": 80},
        {"date": "2025-06-25", "price": 90},
        {"date": "2025-06-26", "price": 100},
    ]}


def test_unchanged_content_is_not_rewritten(snapshots, repo):
    repo.overwrite_value(MARKET_ID, TODAY, SourceKind.AGGREGATED, 95, NOW)
    assert snapshots.rebuild_latest(NOW).changed

    later = NOW + timedelta(minutes=30)
    second = snapshots.rebuild_latest(later)

    assert not second.changed
    assert snapshots.store.read_json("latest_prices.json")["_meta"]["updatedAt"] == "2025-06-26T03:00:00Z"
    assert snapshots.rebuild_latest(later, force=True).changed


def test_cold_cache_read_equals_written_blob(snapshots, repo, store):
    repo.overwrite_value(MARKET_ID, TODAY, SourceKind.AGGREGATED, 95, NOW)
    repo.upsert_record(DailyPriceRecord(GEM_ID, TODAY - timedelta(days=1), 5000, recorded_at=NOW))

    latest = snapshots.rebuild_latest(NOW)
    history = snapshots.rebuild_history()
    reader = PriceDataReader(store=store, cache=TagCache())

    assert reader.read_latest() == latest.payload
    assert reader.read_history() == history.payload


def test_cache_control_is_stored_per_blob(catalog, repo, store, clock):
    snapshots = RebuildSnapshots(
        catalog=catalog, accumulator=repo, history=repo, store=store, clock=clock,
        latest_cache_control="public, max-age=10", history_cache_control="public, max-age=600",
    )
    snapshots.rebuild_latest(NOW)
    snapshots.rebuild_history()

    assert store.metadata("latest_prices.json")["cacheControl"] == "public, max-age=10"
    assert store.metadata("history_all.json")["cacheControl"] == "public, max-age=600"


def test_publish_propagates_only_changed_tags(snapshots, coordinator, mock_edge, app_cache):
    app_cache.set("blob:history_all.json", {"x": 1}, tags=["history"], ttl=300)
    batch = BatchResult(operation="test")

    publish_snapshots(snapshots, coordinator, batch, now=NOW, include_history=True)
    assert batch.notes["snapshots"] == {"history_all.json": "written", "latest_prices.json": "written"}
    assert app_cache.get("blob:history_all.json") is None

    mock_edge.reset_mock()
    again = BatchResult(operation="test")
    publish_snapshots(snapshots, coordinator, again, now=NOW, include_history=True)
    assert "cache" not in again.notes
    mock_edge.purge.assert_not_called()


def test_publish_records_storage_failure_in_notes(catalog, repo, clock, coordinator):
    store = Mock(spec=ObjectStorePort)
    store.read_json.return_value = None
    store.write_json.side_effect = StorageWriteFailure("disk full")
    snapshots = RebuildSnapshots(catalog=catalog, accumulator=repo, history=repo, store=store, clock=clock)
    batch = BatchResult(operation="test")

    outcomes = publish_snapshots(snapshots, coordinator, batch, now=NOW, include_history=False)

    assert outcomes == []
    assert batch.notes["snapshots"]["latest_prices.json"].startswith("failed")
    assert batch.success
