# src/com/lingenhag/pricetrack/features/prices/application/usecases/sample_prices.py
from __future__ import annotations

import logging
import time
from datetime import date, datetime, timezone
from typing import Iterable, Optional

from com.lingenhag.pricetrack.domain.errors import PriceTrackError
from com.lingenhag.pricetrack.domain.models import BatchResult, ItemResult, PriceQuote, TrackedItem
from com.lingenhag.pricetrack.features.prices.application.cache_coordinator import CacheCoordinator
from com.lingenhag.pricetrack.features.prices.application.catalog import ItemCatalog
from com.lingenhag.pricetrack.features.prices.application.ports import AccumulatorRepositoryPort, UpstreamPricePort
from com.lingenhag.pricetrack.features.prices.application.service_day import ServiceDayClock
from com.lingenhag.pricetrack.features.prices.application.usecases.finalize_day import FinalizeDay
from com.lingenhag.pricetrack.features.prices.application.usecases.rebuild_snapshots import (
    RebuildSnapshots,
    publish_snapshots,
)
from com.lingenhag.pricetrack.platform.monitoring.metrics import Metrics

_LOG = logging.getLogger(__name__)


class SamplePrices:
    """
    Ein Sampling-Tick: holt für jedes Item den aktuellen Preis und schreibt ihn in den
    Bucket des laufenden Service-Tags (Aggregated → überschreiben, RawSample → anhängen).
    Im Grace-Fenster nach der Tagesgrenze wird zuerst der Vortag finalisiert.
    """

    def __init__(
            self,
            catalog: ItemCatalog,
            accumulator: AccumulatorRepositoryPort,
            source: UpstreamPricePort,
            clock: ServiceDayClock,
            finalizer: Optional[FinalizeDay] = None,
            snapshots: Optional[RebuildSnapshots] = None,
            coordinator: Optional[CacheCoordinator] = None,
            metrics: Optional[Metrics] = None,
    ) -> None:
        self.catalog = catalog
        self.accumulator = accumulator
        self.source = source
        self.clock = clock
        self.finalizer = finalizer
        self.snapshots = snapshots
        self.coordinator = coordinator
        self.metrics = metrics

    def _apply(self, item: TrackedItem, quote: PriceQuote, day: date, now: datetime) -> ItemResult:
        if item.is_aggregated:
            bucket = self.accumulator.overwrite_value(item.id, day, item.source_kind, quote.price, now)
            action = "overwritten"
        else:
            bucket = self.accumulator.append_value(item.id, day, item.source_kind, quote.price, now)
            action = "appended"
        return ItemResult(
            item.id,
            action,
            price=quote.price,
            day=day,
            detail={"basis": quote.basis, "samples": bucket.sample_count},
        )

    def execute(self, now: Optional[datetime] = None, item_ids: Optional[Iterable[str]] = None) -> BatchResult:
        now = now or datetime.now(timezone.utc)
        start_time = time.time()
        day = self.clock.service_day(now)
        result = BatchResult(operation=f"sample {day.isoformat()}")
        result.notes["date"] = day.isoformat()

        finalized = False
        if self.finalizer is not None and self.clock.in_grace_window(now):
            outgoing = self.clock.yesterday(now)
            _LOG.info("Grace-Fenster: finalisiere %s vor dem Sampling", outgoing)
            fin = self.finalizer.execute(service_day=outgoing, now=now, publish=False, skip_finalized=True)
            result.notes["finalization"] = fin.to_dict()
            for error in fin.errors:
                result.fail(error)
            finalized = True

        items, unknown = self.catalog.select(item_ids)
        for error in unknown:
            result.fail(error)

        for item in items:
            fetched = self.source.fetch_price(item)
            if not fetched.ok:
                _LOG.warning("Preisabruf %s fehlgeschlagen: %s", item.id, fetched.error)
                result.fail(fetched.error)
                self._track(item, "failed")
                continue
            try:
                result.add(self._apply(item, fetched.value, day, now))
            except PriceTrackError as e:
                if e.item_id is None:
                    e.item_id = item.id
                _LOG.error("Bucket-Update %s fehlgeschlagen: %s", item.id, e)
                result.fail(e)
                self._track(item, "failed")
                continue
            self._track(item, "success")

        if self.metrics:
            self.metrics.track_sampling_duration(time.time() - start_time)
        _LOG.info("Sampling %s: %s", day, result.message())

        if self.snapshots is not None:
            publish_snapshots(self.snapshots, self.coordinator, result, now=now, include_history=finalized)
        return result

    def _track(self, item: TrackedItem, outcome: str) -> None:
        if self.metrics:
            self.metrics.track_sampling_item(source_kind=item.source_kind.value, outcome=outcome)
