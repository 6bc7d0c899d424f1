# src/com/lingenhag/pricetrack/features/prices/application/usecases/repair_history.py
from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Iterable, List, Mapping, Optional, Tuple

from com.lingenhag.pricetrack.domain.errors import (
    OverwriteNotConfirmed,
    PriceTrackError,
    StorageWriteFailure,
    UpstreamDataMissing,
)
from com.lingenhag.pricetrack.domain.models import (
    BatchResult,
    DailyPriceRecord,
    ItemResult,
    ItemStatus,
    Price,
    TrackedItem,
)
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
from com.lingenhag.pricetrack.features.prices.application.usecases.finalize_day import same_price
from com.lingenhag.pricetrack.features.prices.application.usecases.rebuild_snapshots import (
    HISTORY_BLOB,
    RebuildSnapshots,
    publish_snapshots,
)

_LOG = logging.getLogger(__name__)

REPAIR_SOURCES = ("auto", "bucket", "upstream", "manual")
DEFAULT_BUCKET_RETENTION_DAYS = 7


class RepairHistory:
    """
    Parametrisierte Reparatur-Werkzeuge für die Tageshistorie:
      - repair_day          : Records eines Datums neu berechnen (Bucket / Upstream / manuell)
      - delete_wrong_date   : alle Records eines falsch zugeordneten Datums entfernen
      - delete_record       : einzelnen Record entfernen
      - regenerate_history  : History-Snapshot erzwungen neu schreiben
      - purge_stale_buckets : alte Buckets jenseits der Aufbewahrung löschen
      - describe_status     : Überblick je Item
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

    def _publish(self, result: BatchResult, now: datetime) -> None:
        if self.snapshots is not None:
            publish_snapshots(self.snapshots, self.coordinator, result, now=now, include_history=True)

    # ---------- repair_day ----------
    def _upstream_price(self, item: TrackedItem, day: date) -> Optional[float]:
        fetched = self.source.fetch_daily_stats(item)
        if not fetched.ok:
            raise fetched.error
        return stat_for_day(fetched.value or [], day)

    def _candidate(
            self,
            item: TrackedItem,
            day: date,
            source: str,
            manual_prices: Mapping[str, float],
    ) -> Tuple[Optional[Price], str]:
        if source in ("auto", "manual") and item.id in manual_prices:
            return round_price(item, float(manual_prices[item.id])), "manual"
        if source == "manual":
            return None, "manual"
        if source in ("auto", "upstream") and item.is_aggregated:
            try:
                stat = self._upstream_price(item, day)
            except PriceTrackError:
                if source == "upstream":
                    raise
                stat = None
            if stat is not None:
                return round_price(item, stat), "upstream"
            if source == "upstream":
                return None, "upstream"
        if source in ("auto", "bucket"):
            return derive_bucket_price(item, self.accumulator.get_bucket(item.id, day)), "bucket"
        return None, source

    def repair_day(
            self,
            day: date,
            item_ids: Optional[Iterable[str]] = None,
            manual_prices: Optional[Mapping[str, float]] = None,
            source: str = "auto",
            confirm_overwrite: bool = False,
            now: Optional[datetime] = None,
    ) -> BatchResult:
        if source not in REPAIR_SOURCES:
            raise ValueError(f"Ungültige Quelle '{source}'. Erlaubt: {', '.join(REPAIR_SOURCES)}")
        now = now or datetime.now(timezone.utc)
        manual_prices = dict(manual_prices or {})
        if item_ids is None and source == "manual":
            item_ids = list(manual_prices)
        result = BatchResult(operation=f"repair {day.isoformat()}")
        result.notes["date"] = day.isoformat()

        items, unknown = self.catalog.select(item_ids)
        for error in unknown:
            result.fail(error)

        for item in items:
            try:
                price, origin = self._candidate(item, day, source, manual_prices)
                if price is None:
                    raise UpstreamDataMissing(
                        f"Keine Preisquelle ({origin}) für {day.isoformat()}", item_id=item.id
                    )
                existing = self.history.get_record(item.id, day)
                if existing is not None and same_price(existing.price, price):
                    action = "unchanged"
                elif existing is not None and not confirm_overwrite:
                    raise OverwriteNotConfirmed(
                        f"Record {day.isoformat()} existiert ({existing.price}); Überschreiben mit {price} "
                        f"erfordert confirm_overwrite",
                        item_id=item.id,
                    )
                else:
                    self.history.upsert_record(
                        DailyPriceRecord(item_id=item.id, day=day, price=price, recorded_at=now, source=origin)
                    )
                    action = "overwritten" if existing is not None else "repaired"
                if origin == "bucket":
                    self.accumulator.clear_bucket(item.id, day)
            except PriceTrackError as e:
                if e.item_id is None:
                    e.item_id = item.id
                _LOG.warning("Reparatur %s/%s fehlgeschlagen: %s", item.id, day, e)
                result.fail(e)
                continue
            result.add(ItemResult(item.id, action, price=price, day=day, detail={"source": origin}))

        self._publish(result, now)
        return result

    # ---------- Löschungen ----------
    def delete_wrong_date(self, day: date, now: Optional[datetime] = None) -> BatchResult:
        now = now or datetime.now(timezone.utc)
        result = BatchResult(operation=f"delete-wrong-date {day.isoformat()}")
        for item_id in self.history.delete_date(day):
            result.add(ItemResult(item_id, "deleted", day=day))
        _LOG.info("Records für %s gelöscht: %d", day, len(result.results))
        self._publish(result, now)
        return result

    def delete_record(self, item_id: str, day: date, now: Optional[datetime] = None) -> BatchResult:
        now = now or datetime.now(timezone.utc)
        result = BatchResult(operation=f"delete-record {item_id} {day.isoformat()}")
        deleted = self.history.delete_record(item_id, day)
        result.add(ItemResult(item_id, "deleted" if deleted else "not_found", day=day))
        if deleted:
            self._publish(result, now)
        return result

    # ---------- Snapshots ----------
    def regenerate_history(self, now: Optional[datetime] = None) -> BatchResult:
        now = now or datetime.now(timezone.utc)
        result = BatchResult(operation="regenerate-history")
        if self.snapshots is None:
            return result
        outcomes = publish_snapshots(
            self.snapshots, self.coordinator, result, now=now, include_history=True, force=True
        )
        for outcome in outcomes:
            if outcome.blob == HISTORY_BLOB:
                result.notes["series"] = len(outcome.payload)
        for blob, status in result.notes["snapshots"].items():
            if status.startswith("failed"):
                result.fail(StorageWriteFailure(f"{blob}: {status}"))
        return result

    # ---------- Wartung ----------
    def purge_stale_buckets(
            self, keep_days: int = DEFAULT_BUCKET_RETENTION_DAYS, now: Optional[datetime] = None
    ) -> BatchResult:
        if keep_days < 1:
            raise ValueError("keep_days muss >= 1 sein")
        now = now or datetime.now(timezone.utc)
        cutoff = self.clock.service_day(now) - timedelta(days=keep_days)
        deleted = self.accumulator.delete_buckets_before(cutoff)
        _LOG.info("Veraltete Buckets vor %s gelöscht: %d", cutoff, deleted)
        result = BatchResult(operation="cleanup")
        result.notes.update({"cutoff": cutoff.isoformat(), "deleted": deleted})
        return result

    def describe_status(self, now: Optional[datetime] = None) -> List[ItemStatus]:
        now = now or datetime.now(timezone.utc)
        today = self.clock.service_day(now)
        series = self.history.fetch_all_series()
        out: List[ItemStatus] = []
        for item in self.catalog:
            records = series.get(item.id, [])
            bucket = self.accumulator.get_bucket(item.id, today)
            out.append(ItemStatus(
                item_id=item.id,
                display_name=item.display_name,
                source_kind=item.source_kind,
                last_finalized=records[-1].day if records else None,
                record_count=len(records),
                current_samples=bucket.sample_count if bucket else 0,
            ))
        return out
