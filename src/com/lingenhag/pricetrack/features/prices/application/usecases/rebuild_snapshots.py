# src/com/lingenhag/pricetrack/features/prices/application/usecases/rebuild_snapshots.py
from __future__ import annotations

import copy
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from com.lingenhag.pricetrack.domain.errors import PriceTrackError, StorageReadFailure
from com.lingenhag.pricetrack.domain.models import BatchResult, LatestSnapshot, Price, RebuildOutcome
from com.lingenhag.pricetrack.features.prices.application.cache_coordinator import (
    TAG_HISTORY,
    TAG_LATEST,
    CacheCoordinator,
)
from com.lingenhag.pricetrack.features.prices.application.catalog import ItemCatalog
from com.lingenhag.pricetrack.features.prices.application.ports import (
    AccumulatorRepositoryPort,
    HistoryRepositoryPort,
    ObjectStorePort,
)
from com.lingenhag.pricetrack.features.prices.application.pricing import derive_bucket_price
from com.lingenhag.pricetrack.features.prices.application.service_day import ServiceDayClock
from com.lingenhag.pricetrack.platform.monitoring.metrics import Metrics

_LOG = logging.getLogger(__name__)

LATEST_BLOB = "latest_prices.json"
HISTORY_BLOB = "history_all.json"

DEFAULT_LATEST_CACHE_CONTROL = "public, max-age=60"
DEFAULT_HISTORY_CACHE_CONTROL = "public, max-age=300"


def _comparable(payload: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    # _meta.updatedAt ändert sich bei jedem Lauf und zählt nicht als Inhaltsänderung
    if payload is None:
        return None
    out = copy.deepcopy(payload)
    meta = out.get("_meta")
    if isinstance(meta, dict):
        meta.pop("updatedAt", None)
    return out


class RebuildSnapshots:
    """
    Regeneriert die beiden Lese-Artefakte komplett aus dem Datenbestand:
      - latest_prices.json : aktueller Tageswert je Item (Bucket, sonst letzter finalisierter Record)
      - history_all.json   : vollständige Tagesreihen je Item
    Schreibt nur bei inhaltlicher Änderung (oder force=True).
    """

    def __init__(
            self,
            catalog: ItemCatalog,
            accumulator: AccumulatorRepositoryPort,
            history: HistoryRepositoryPort,
            store: ObjectStorePort,
            clock: ServiceDayClock,
            latest_cache_control: str = DEFAULT_LATEST_CACHE_CONTROL,
            history_cache_control: str = DEFAULT_HISTORY_CACHE_CONTROL,
            metrics: Optional[Metrics] = None,
    ) -> None:
        self.catalog = catalog
        self.accumulator = accumulator
        self.history = history
        self.store = store
        self.clock = clock
        self.latest_cache_control = latest_cache_control
        self.history_cache_control = history_cache_control
        self.metrics = metrics

    # ---------- Payloads ----------
    def build_latest(self, now: datetime) -> LatestSnapshot:
        today = self.clock.service_day(now)
        prices: Dict[str, Price] = {}
        for item in self.catalog:
            price = derive_bucket_price(item, self.accumulator.get_bucket(item.id, today))
            if price is None:
                record = self.history.latest_record(item.id)
                if record is None:
                    _LOG.info("Kein Preis für %s verfügbar – nicht im Latest-Snapshot", item.id)
                    continue
                price = record.price
            prices[item.id] = price
        return LatestSnapshot(as_of_date=today, generated_at=now, prices=prices)

    def build_history(self) -> Dict[str, Any]:
        series = self.history.fetch_all_series()
        return {item_id: [r.to_entry() for r in records] for item_id, records in sorted(series.items())}

    # ---------- Writes ----------
    def _write_if_changed(
            self, blob: str, tag: str, payload: Dict[str, Any], cache_control: str, force: bool
    ) -> RebuildOutcome:
        if not force:
            try:
                stored = self.store.read_json(blob)
            except StorageReadFailure as e:
                _LOG.warning("Gespeicherter Blob %s nicht lesbar (%s) – schreibe neu", blob, e)
                stored = None
            if stored is not None and _comparable(stored) == _comparable(payload):
                _LOG.info("Snapshot %s unverändert – kein Schreibvorgang", blob)
                self._track(blob, "unchanged")
                return RebuildOutcome(blob=blob, tag=tag, changed=False, payload=stored)

        try:
            self.store.write_json(blob, payload, cache_control=cache_control)
        except PriceTrackError:
            self._track(blob, "failed")
            raise
        self._track(blob, "written")
        return RebuildOutcome(
            blob=blob, tag=tag, changed=True, payload=payload, written_at=datetime.now(timezone.utc)
        )

    def rebuild_latest(self, now: Optional[datetime] = None, force: bool = False) -> RebuildOutcome:
        now = now or datetime.now(timezone.utc)
        payload = self.build_latest(now).to_payload()
        return self._write_if_changed(LATEST_BLOB, TAG_LATEST, payload, self.latest_cache_control, force)

    def rebuild_history(self, force: bool = False) -> RebuildOutcome:
        payload = self.build_history()
        return self._write_if_changed(HISTORY_BLOB, TAG_HISTORY, payload, self.history_cache_control, force)

    def _track(self, blob: str, outcome: str) -> None:
        if self.metrics:
            self.metrics.track_snapshot_rebuild(blob=blob, outcome=outcome)


def publish_snapshots(
        snapshots: RebuildSnapshots,
        coordinator: Optional[CacheCoordinator],
        batch: BatchResult,
        *,
        now: datetime,
        include_history: bool,
        force: bool = False,
) -> List[RebuildOutcome]:
    """
    Rebuild (History zuerst, dann Latest) + Cache-Propagation für geänderte Blobs.
    Snapshot-Fehler landen in batch.notes["snapshots"], nicht in den Item-Fehlern.
    """
    outcomes: List[RebuildOutcome] = []
    status: Dict[str, str] = {}
    steps = []
    if include_history:
        steps.append((HISTORY_BLOB, lambda: snapshots.rebuild_history(force=force)))
    steps.append((LATEST_BLOB, lambda: snapshots.rebuild_latest(now, force=force)))

    for blob, step in steps:
        try:
            outcome = step()
        except PriceTrackError as e:
            _LOG.error("Snapshot %s fehlgeschlagen: %s", blob, e)
            status[blob] = f"failed: {e.message}"
            continue
        outcomes.append(outcome)
        status[blob] = "written" if outcome.changed else "unchanged"
    batch.notes["snapshots"] = status

    changed_tags = [o.tag for o in outcomes if o.changed]
    if changed_tags and coordinator is not None:
        batch.notes["cache"] = coordinator.propagate(changed_tags).to_dict()
    return outcomes
