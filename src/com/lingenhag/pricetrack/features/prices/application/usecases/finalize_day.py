# src/com/lingenhag/pricetrack/features/prices/application/usecases/finalize_day.py
from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Iterable, Optional

from com.lingenhag.pricetrack.domain.errors import (
    DateAttributionError,
    PriceTrackError,
    UpstreamDataMissing,
)
from com.lingenhag.pricetrack.domain.models import BatchResult, DailyPriceRecord, ItemResult, Price, TrackedItem
from com.lingenhag.pricetrack.features.prices.application.cache_coordinator import CacheCoordinator
from com.lingenhag.pricetrack.features.prices.application.catalog import ItemCatalog
from com.lingenhag.pricetrack.features.prices.application.ports import (
    AccumulatorRepositoryPort,
    HistoryRepositoryPort,
    UpstreamPricePort,
)
from com.lingenhag.pricetrack.features.prices.application.pricing import (
    derive_bucket_price,
    round_price,
    stat_for_day,
)
from com.lingenhag.pricetrack.features.prices.application.service_day import ServiceDayClock
from com.lingenhag.pricetrack.features.prices.application.usecases.rebuild_snapshots import (
    RebuildSnapshots,
    publish_snapshots,
)
from com.lingenhag.pricetrack.platform.monitoring.metrics import Metrics

_LOG = logging.getLogger(__name__)


def same_price(a: Price, b: Price) -> bool:
    return abs(float(a) - float(b)) < 1e-9


class FinalizeDay:
    """
    Überführt die Buckets eines Service-Tags in unveränderliche Tagesrecords.

    Preisquelle je Item:
      - Aggregated: Upstream-Tagesstatistik für genau dieses Datum, sonst letzter Bucket-Wert
      - RawSample : Mittelwert aller Samples im Bucket
    Ein bestehender Record mit gleichem Preis ist ein No-op; ein abweichender Preis wird
    als DateAttributionError gemeldet und nie stillschweigend überschrieben (→ repair_day).
    Der Bucket wird erst nach erfolgreichem Schreiben (oder bestätigtem No-op) gelöscht.
    """

    def __init__(
            self,
            catalog: ItemCatalog,
            accumulator: AccumulatorRepositoryPort,
            history: HistoryRepositoryPort,
            source: UpstreamPricePort,
            clock: ServiceDayClock,
            snapshots: Optional[RebuildSnapshots] = None,
            coordinator: Optional[CacheCoordinator] = None,
            metrics: Optional[Metrics] = None,
    ) -> None:
        self.catalog = catalog
        self.accumulator = accumulator
        self.history = history
        self.source = source
        self.clock = clock
        self.snapshots = snapshots
        self.coordinator = coordinator
        self.metrics = metrics

    def _upstream_stat(self, item: TrackedItem, day: date) -> Optional[float]:
        if not item.is_aggregated:
            return None
        fetched = self.source.fetch_daily_stats(item)
        if not fetched.ok:
            _LOG.warning("Keine Upstream-Statistik für %s: %s", item.id, fetched.error)
            return None
        return stat_for_day(fetched.value or [], day)

    def finalize_item(self, item: TrackedItem, day: date, now: datetime) -> ItemResult:
        """Finalisiert ein Item; wirft PriceTrackError für Item-Fehler."""
        bucket = self.accumulator.get_bucket(item.id, day)
        existing = self.history.get_record(item.id, day)

        stat = self._upstream_stat(item, day)
        if stat is not None:
            price, origin = round_price(item, stat), "upstream"
        else:
            price, origin = derive_bucket_price(item, bucket), "bucket"

        if price is None:
            if existing is not None:
                return ItemResult(item.id, "already_finalized", price=existing.price, day=day)
            raise UpstreamDataMissing(
                f"Weder Bucket noch Upstream-Statistik für {day.isoformat()}", item_id=item.id
            )

        if existing is not None:
            if not same_price(existing.price, price):
                raise DateAttributionError(
                    f"Record {day.isoformat()} existiert bereits mit {existing.price} (neu berechnet: {price})",
                    item_id=item.id,
                )
            action = "unchanged"
        else:
            self.history.upsert_record(
                DailyPriceRecord(item_id=item.id, day=day, price=price, recorded_at=now, source=origin)
            )
            action = "finalized"

        if bucket is not None:
            self.accumulator.clear_bucket(item.id, day)
        detail = {"source": origin}
        if bucket is not None:
            detail["samples"] = bucket.sample_count
        return ItemResult(item.id, action, price=price, day=day, detail=detail)

    def execute(
            self,
            service_day: Optional[date] = None,
            item_ids: Optional[Iterable[str]] = None,
            now: Optional[datetime] = None,
            publish: bool = True,
            skip_finalized: bool = False,
    ) -> BatchResult:
        """
        skip_finalized=True (Grace-Fenster-Ticks): Items mit vorhandenem Record werden nicht neu
        berechnet, sondern als already_finalized gemeldet. Ein später veröffentlichter Upstream-Wert
        ist dann kein Konflikt; Korrekturen laufen über repair_day.
        """
        now = now or datetime.now(timezone.utc)
        day = service_day or self.clock.yesterday(now)
        result = BatchResult(operation=f"finalize {day.isoformat()}")
        result.notes["date"] = day.isoformat()

        items, unknown = self.catalog.select(item_ids)
        for error in unknown:
            result.fail(error)

        for item in items:
            try:
                existing = self.history.get_record(item.id, day) if skip_finalized else None
                if existing is not None:
                    item_result = ItemResult(
                        item.id, "already_finalized", price=existing.price, day=day,
                        detail={"source": existing.source},
                    )
                else:
                    item_result = self.finalize_item(item, day, now)
            except PriceTrackError as e:
                if e.item_id is None:
                    e.item_id = item.id
                _LOG.warning("Finalisierung %s/%s fehlgeschlagen: %s", item.id, day, e)
                result.fail(e)
                self._track(e.code)
                continue
            result.add(item_result)
            self._track(item_result.action)

        _LOG.info("Finalisierung %s: %s", day, result.message())
        if publish and self.snapshots is not None:
            publish_snapshots(self.snapshots, self.coordinator, result, now=now, include_history=True)
        return result

    def _track(self, outcome: str) -> None:
        if self.metrics:
            self.metrics.track_finalized_item(outcome)
