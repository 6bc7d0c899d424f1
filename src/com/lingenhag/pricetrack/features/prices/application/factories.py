# src/com/lingenhag/pricetrack/features/prices/application/factories.py
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

from com.lingenhag.pricetrack.features.prices.application.cache_coordinator import CacheCoordinator
from com.lingenhag.pricetrack.features.prices.application.catalog import ItemCatalog
from com.lingenhag.pricetrack.features.prices.application.ports import (
    EdgePurgePort,
    ObjectStorePort,
    UpstreamPricePort,
)
from com.lingenhag.pricetrack.features.prices.application.price_reader import ClientPriceCache, PriceDataReader
from com.lingenhag.pricetrack.features.prices.application.service_day import (
    DEFAULT_BOUNDARY_HOUR,
    DEFAULT_GRACE_MINUTES,
    DEFAULT_TIMEZONE,
    ServiceDayClock,
)
from com.lingenhag.pricetrack.features.prices.application.usecases.backfill_items import BackfillItems
from com.lingenhag.pricetrack.features.prices.application.usecases.finalize_day import FinalizeDay
from com.lingenhag.pricetrack.features.prices.application.usecases.rebuild_snapshots import (
    DEFAULT_HISTORY_CACHE_CONTROL,
    DEFAULT_LATEST_CACHE_CONTROL,
    RebuildSnapshots,
)
from com.lingenhag.pricetrack.features.prices.application.usecases.repair_history import RepairHistory
from com.lingenhag.pricetrack.features.prices.application.usecases.sample_prices import SamplePrices
from com.lingenhag.pricetrack.features.prices.infrastructure.edge_purge import NetlifyEdgePurger, NullEdgePurger
from com.lingenhag.pricetrack.features.prices.infrastructure.lostark_client import DEFAULT_API_BASE, LostArkClient
from com.lingenhag.pricetrack.features.prices.infrastructure.object_store import LocalObjectStore, S3ObjectStore
from com.lingenhag.pricetrack.features.prices.infrastructure.repositories.duckdb_price_repository import (
    DuckDBPriceRepository,
)
from com.lingenhag.pricetrack.features.prices.infrastructure.tag_cache import TagCache
from com.lingenhag.pricetrack.platform.config.settings import Settings
from com.lingenhag.pricetrack.platform.monitoring.metrics import Metrics

_LOG = logging.getLogger(__name__)

DEFAULT_DB_PATH = "data/pricetrack.duckdb"


class PriceTrackerFactory:
    """
    Composition Root des Prices-Slices: baut Clients, Repositories, Caches und Use-Cases
    aus den Settings. Eine Factory-Instanz teilt Repository und Tag-Cache zwischen allen
    Use-Cases, damit Invalidierungen den Lesepfad derselben Instanz erreichen.
    """

    def __init__(
            self,
            config: Settings,
            metrics: Optional[Metrics] = None,
            db_path: Optional[str] = None,
            source: Optional[UpstreamPricePort] = None,
            store: Optional[ObjectStorePort] = None,
            edge: Optional[EdgePurgePort] = None,
    ) -> None:
        self.config = config
        self.metrics = metrics
        self.db_path = db_path or str(config.get("database", "default_path", DEFAULT_DB_PATH))
        self._source = source
        self._store = store
        self._edge = edge
        self._catalog: Optional[ItemCatalog] = None
        self._repo: Optional[DuckDBPriceRepository] = None
        self._app_cache: Optional[TagCache] = None
        self._reader: Optional[ClientPriceCache] = None

    # ---------- Basis ----------
    def clock(self) -> ServiceDayClock:
        return ServiceDayClock(
            boundary_hour=int(self.config.get("service_day", "boundary_hour", DEFAULT_BOUNDARY_HOUR)),
            tz=str(self.config.get("service_day", "timezone", DEFAULT_TIMEZONE)),
            grace_minutes=int(self.config.get("service_day", "grace_minutes", DEFAULT_GRACE_MINUTES)),
        )

    def catalog(self) -> ItemCatalog:
        if self._catalog is None:
            self._catalog = ItemCatalog.from_settings(self.config)
        return self._catalog

    def repository(self) -> DuckDBPriceRepository:
        if self._repo is None:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            self._repo = DuckDBPriceRepository(db_path=self.db_path)
        return self._repo

    def upstream(self) -> UpstreamPricePort:
        """Fehlender LOSTARK_API_KEY → ConfigurationMissing (fatal)."""
        if self._source is None:
            self._source = LostArkClient(
                api_key=self.config.require_secret("LOSTARK_API_KEY", "lostark"),
                api_base=str(self.config.get("lostark", "api_base", DEFAULT_API_BASE)),
                timeout=int(self.config.get("lostark", "timeout", 20)),
                throttle_seconds=float(self.config.get("lostark", "throttle_seconds", 0.3)),
                metrics=self.metrics,
            )
        return self._source

    def object_store(self) -> ObjectStorePort:
        if self._store is None:
            backend = str(self.config.get("storage", "backend", "local")).lower()
            if backend == "s3":
                self._store = S3ObjectStore(
                    bucket=self.config.get("storage", "s3_bucket", None) or os.getenv("PRICETRACK_S3_BUCKET", ""),
                    prefix=str(self.config.get("storage", "s3_prefix", "")),
                    public_read=bool(self.config.get("storage", "public_read", True)),
                )
            elif backend == "local":
                self._store = LocalObjectStore(self.config.get("storage", "local_dir", "data/blobs"))
            else:
                raise SystemExit(f"Ungültiges Storage-Backend '{backend}'. Erlaubt: local, s3")
        return self._store

    def app_cache(self) -> TagCache:
        if self._app_cache is None:
            self._app_cache = TagCache(max_size=int(self.config.get("cache", "max_entries", 256)))
        return self._app_cache

    def edge_purger(self) -> EdgePurgePort:
        if self._edge is None:
            token = self.config.get_api_key("NETLIFY_AUTH_TOKEN", "netlify")
            site_id = self.config.get("netlify", "site_id", None) or os.getenv("NETLIFY_SITE_ID")
            if token and site_id:
                self._edge = NetlifyEdgePurger(
                    api_token=token,
                    site_id=site_id,
                    timeout=int(self.config.get("netlify", "timeout", 10)),
                    metrics=self.metrics,
                )
            else:
                _LOG.info("Netlify nicht konfiguriert – Edge-Purge deaktiviert")
                self._edge = NullEdgePurger()
        return self._edge

    def coordinator(self) -> CacheCoordinator:
        return CacheCoordinator(app_cache=self.app_cache(), edge=self.edge_purger(), metrics=self.metrics)

    # ---------- Use-Cases ----------
    def snapshots(self) -> RebuildSnapshots:
        repo = self.repository()
        return RebuildSnapshots(
            catalog=self.catalog(),
            accumulator=repo,
            history=repo,
            store=self.object_store(),
            clock=self.clock(),
            latest_cache_control=str(
                self.config.get("storage", "latest_cache_control", DEFAULT_LATEST_CACHE_CONTROL)
            ),
            history_cache_control=str(
                self.config.get("storage", "history_cache_control", DEFAULT_HISTORY_CACHE_CONTROL)
            ),
            metrics=self.metrics,
        )

    def finalize_day(self) -> FinalizeDay:
        repo = self.repository()
        return FinalizeDay(
            catalog=self.catalog(),
            accumulator=repo,
            history=repo,
            source=self.upstream(),
            clock=self.clock(),
            snapshots=self.snapshots(),
            coordinator=self.coordinator(),
            metrics=self.metrics,
        )

    def sample_prices(self) -> SamplePrices:
        return SamplePrices(
            catalog=self.catalog(),
            accumulator=self.repository(),
            source=self.upstream(),
            clock=self.clock(),
            finalizer=self.finalize_day(),
            snapshots=self.snapshots(),
            coordinator=self.coordinator(),
            metrics=self.metrics,
        )

    def repair_history(self) -> RepairHistory:
        repo = self.repository()
        return RepairHistory(
            catalog=self.catalog(),
            accumulator=repo,
            history=repo,
            source=self.upstream(),
            clock=self.clock(),
            snapshots=self.snapshots(),
            coordinator=self.coordinator(),
        )

    def backfill_items(self) -> BackfillItems:
        repo = self.repository()
        return BackfillItems(
            catalog=self.catalog(),
            accumulator=repo,
            history=repo,
            source=self.upstream(),
            clock=self.clock(),
            snapshots=self.snapshots(),
            coordinator=self.coordinator(),
        )

    # ---------- Lesepfad ----------
    def reader(self) -> ClientPriceCache:
        if self._reader is None:
            server = PriceDataReader(
                store=self.object_store(),
                cache=self.app_cache(),
                ttl_seconds=float(self.config.get("cache", "app_ttl_seconds", 300)),
            )
            self._reader = ClientPriceCache(
                upstream=server,
                ttl_seconds=float(self.config.get("cache", "client_ttl_seconds", 30)),
            )
        return self._reader
