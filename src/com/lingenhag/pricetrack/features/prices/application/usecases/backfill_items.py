# src/com/lingenhag/pricetrack/features/prices/application/usecases/backfill_items.py
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from com.lingenhag.pricetrack.domain.errors import PriceTrackError, UpstreamDataMissing
from com.lingenhag.pricetrack.domain.models import BatchResult, DailyPriceRecord, DailyStat, ItemResult
from com.lingenhag.pricetrack.features.prices.application.cache_coordinator import CacheCoordinator
from com.lingenhag.pricetrack.features.prices.application.catalog import ItemCatalog
from com.lingenhag.pricetrack.features.prices.application.ports import (
    AccumulatorRepositoryPort,
    HistoryRepositoryPort,
    UpstreamPricePort,
)
from com.lingenhag.pricetrack.features.prices.application.pricing import round_price
from com.lingenhag.pricetrack.features.prices.application.service_day import ServiceDayClock
from com.lingenhag.pricetrack.features.prices.application.usecases.rebuild_snapshots import (
    RebuildSnapshots,
    publish_snapshots,
)

_LOG = logging.getLogger(__name__)


class BackfillItems:
    """
    Initialbefüllung neu aufgenommener Items aus dem Upstream-Fenster (neuester Eintrag zuerst):
      - Stats[0]     → Bucket des laufenden Service-Tags
      - Stats[1..K)  → Historie (aufsteigend, nur fehlende Tage)
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
    ) -> None:
        self.catalog = catalog
        self.accumulator = accumulator
        self.history = history
        self.source = source
        self.clock = clock
        self.snapshots = snapshots
        self.coordinator = coordinator

    def execute(self, item_ids: Iterable[str], now: Optional[datetime] = None) -> BatchResult:
        now = now or datetime.now(timezone.utc)
        today = self.clock.service_day(now)
        result = BatchResult(operation="backfill")

        items, unknown = self.catalog.select(list(item_ids))
        for error in unknown:
            result.fail(error)

        for item in items:
            try:
                fetched = self.source.fetch_daily_stats(item)
                if not fetched.ok:
                    raise fetched.error
                stats: List[DailyStat] = list(fetched.value or [])
                if not any(s.is_valid for s in stats):
                    raise UpstreamDataMissing("Leeres Statistik-Fenster", item_id=item.id)

                head, rest = stats[0], stats[1:]
                if head.is_valid:
                    self.accumulator.overwrite_value(item.id, today, item.source_kind, head.price, now)

                records = [
                    DailyPriceRecord(
                        item_id=item.id,
                        day=s.day,
                        price=round_price(item, s.price),
                        recorded_at=now,
                        source="backfill",
                    )
                    for s in sorted(rest, key=lambda s: s.day)
                    if s.is_valid
                ]
                inserted, skipped = self.history.insert_if_absent(records)
            except PriceTrackError as e:
                if e.item_id is None:
                    e.item_id = item.id
                _LOG.warning("Backfill %s fehlgeschlagen: %s", item.id, e)
                result.fail(e)
                continue

            detail: Dict[str, Any] = {"historyInserted": inserted, "historySkipped": skipped, "window": len(stats)}
            missing = [s.day.isoformat() for s in stats if not s.is_valid]
            if missing:
                # Tage ohne Durchschnitt bleiben Lücken; Reparatur über repair_day
                detail["missingDates"] = sorted(missing)
                _LOG.warning("Backfill %s: Fenster ohne Preis für %s", item.id, ", ".join(sorted(missing)))
            _LOG.info("Backfill %s: Bucket=%s, History +%d (übersprungen %d)", item.id, head.price, inserted, skipped)
            result.add(ItemResult(
                item.id,
                "backfilled",
                price=round_price(item, head.price) if head.is_valid else None,
                day=today,
                detail=detail,
            ))

        if self.snapshots is not None:
            publish_snapshots(self.snapshots, self.coordinator, result, now=now, include_history=True)
        return result
