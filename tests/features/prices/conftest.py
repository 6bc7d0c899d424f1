# tests/features/prices/conftest.py
import os
import tempfile
from datetime import date, datetime, timedelta, timezone
from unittest.mock import Mock

import pytest

from com.lingenhag.pricetrack.domain.errors import UpstreamUnavailable
from com.lingenhag.pricetrack.domain.models import (
    DailyStat,
    FetchResult,
    PriceQuote,
    SourceKind,
    TrackedItem,
)
from com.lingenhag.pricetrack.features.prices.application.cache_coordinator import CacheCoordinator
from com.lingenhag.pricetrack.features.prices.application.catalog import ItemCatalog
from com.lingenhag.pricetrack.features.prices.application.ports import EdgePurgePort, UpstreamPricePort
from com.lingenhag.pricetrack.features.prices.application.service_day import ServiceDayClock
from com.lingenhag.pricetrack.features.prices.application.usecases.rebuild_snapshots import RebuildSnapshots
from com.lingenhag.pricetrack.features.prices.infrastructure.object_store import LocalObjectStore
from com.lingenhag.pricetrack.features.prices.infrastructure.repositories.duckdb_price_repository import (
    DuckDBPriceRepository,
)
from com.lingenhag.pricetrack.features.prices.infrastructure.tag_cache import TagCache
from com.lingenhag.pricetrack.platform.persistence.migrator import apply_migrations

KST = timezone(timedelta(hours=9))

MARKET_ID = "67400003"
DECIMAL_ID = "6861012"
GEM_ID = "auction_gem_test"


def _kst(y, m, d, hh, mm=0) -> datetime:
    return datetime(y, m, d, hh, mm, tzinfo=KST).astimezone(timezone.utc)


@pytest.fixture
def kst():
    """KST-Wandzeit → UTC-aware datetime."""
    return _kst


@pytest.fixture
def catalog() -> ItemCatalog:
    return ItemCatalog(items=(
        TrackedItem(MARKET_ID, "Marktitem", SourceKind.AGGREGATED),
        TrackedItem(DECIMAL_ID, "Dezimalitem", SourceKind.AGGREGATED, price_decimals=1),
        TrackedItem(
            GEM_ID,
            "Testjuwel",
            SourceKind.RAW_SAMPLE,
            fetch_params={"search_name": "Testjuwel", "category_code": 210000},
        ),
    ))


@pytest.fixture
def clock() -> ServiceDayClock:
    return ServiceDayClock()


@pytest.fixture
def tmp_dir():
    tmpdir = tempfile.TemporaryDirectory()
    try:
        yield tmpdir.name
    finally:
        tmpdir.cleanup()


@pytest.fixture
def repo(tmp_dir) -> DuckDBPriceRepository:
    db_path = os.path.join(tmp_dir, "test.duckdb")
    apply_migrations(db_path)
    return DuckDBPriceRepository(db_path)


@pytest.fixture
def store(tmp_dir) -> LocalObjectStore:
    return LocalObjectStore(os.path.join(tmp_dir, "blobs"))


class FakeUpstream:
    """Steuerbare Upstream-Daten: prices[item_id] (Zahl oder Exception), stats[item_id] (Liste)."""

    def __init__(self):
        self.prices = {}
        self.stats = {}

    def fetch_price(self, item: TrackedItem) -> FetchResult:
        value = self.prices.get(item.id)
        if isinstance(value, Exception) or value is None:
            return FetchResult.failure(
                value if isinstance(value, Exception) else UpstreamUnavailable("HTTP 503", item_id=item.id)
            )
        return FetchResult.success(
            item.id,
            PriceQuote(item.id, float(value), "test", datetime.now(timezone.utc)),
        )

    def fetch_daily_stats(self, item: TrackedItem) -> FetchResult:
        stats = self.stats.get(item.id)
        if stats is None:
            return FetchResult.failure(UpstreamUnavailable("keine Stats", item_id=item.id))
        return FetchResult.success(item.id, [DailyStat(d, p) for d, p in stats])


@pytest.fixture
def fake_upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def mock_source(fake_upstream) -> UpstreamPricePort:
    source = Mock(spec=UpstreamPricePort)
    source.fetch_price.side_effect = fake_upstream.fetch_price
    source.fetch_daily_stats.side_effect = fake_upstream.fetch_daily_stats
    return source


@pytest.fixture
def mock_edge() -> EdgePurgePort:
    edge = Mock(spec=EdgePurgePort)
    edge.purge.return_value = (True, "ok")
    return edge


@pytest.fixture
def app_cache() -> TagCache:
    return TagCache()


@pytest.fixture
def coordinator(app_cache, mock_edge) -> CacheCoordinator:
    return CacheCoordinator(app_cache=app_cache, edge=mock_edge)


@pytest.fixture
def snapshots(catalog, repo, store, clock) -> RebuildSnapshots:
    return RebuildSnapshots(
        catalog=catalog,
        accumulator=repo,
        history=repo,
        store=store,
        clock=clock,
    )


@pytest.fixture
def day() -> date:
    return date(2025, 6, 26)
