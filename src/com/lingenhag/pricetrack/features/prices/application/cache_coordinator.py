# src/com/lingenhag/pricetrack/features/prices/application/cache_coordinator.py
from __future__ import annotations

import logging
from typing import Optional, Sequence

from com.lingenhag.pricetrack.domain.models import CachePropagation
from com.lingenhag.pricetrack.features.prices.application.ports import EdgePurgePort, TagCachePort
from com.lingenhag.pricetrack.platform.monitoring.metrics import Metrics

_LOG = logging.getLogger(__name__)

TAG_LATEST = "latest"
TAG_HISTORY = "history"
KNOWN_TAGS = (TAG_LATEST, TAG_HISTORY)


class CacheCoordinator:
    """
    Propagiert erfolgreiche Snapshot-Rebuilds in die Cache-Hierarchie:
      1) Application-Tag-Cache invalidieren (synchron, lokal)
      2) Edge-Cache-Purge für dieselben Tags (best-effort; Fehler nur loggen)
    Die TTLs der Cache-Schichten begrenzen die Staleness, falls der Purge fehlschlägt.
    """

    def __init__(self, app_cache: TagCachePort, edge: EdgePurgePort, metrics: Optional[Metrics] = None) -> None:
        self.app_cache = app_cache
        self.edge = edge
        self.metrics = metrics

    def propagate(self, tags: Sequence[str]) -> CachePropagation:
        wanted = tuple(t for t in dict.fromkeys(tags) if t in KNOWN_TAGS)
        unknown = [t for t in tags if t not in KNOWN_TAGS]
        if unknown:
            _LOG.warning("Unbekannte Cache-Tags ignoriert: %s", unknown)
        if not wanted:
            return CachePropagation(invalidated=(), purged=False, message="Keine Tags zu invalidieren")

        for tag in wanted:
            dropped = self.app_cache.invalidate_tag(tag)
            _LOG.info("[cache] Tag '%s' invalidiert (%d Einträge)", tag, dropped)

        try:
            purged, message = self.edge.purge(wanted)
        except Exception as e:  # noqa: BLE001 – Purge darf den Lauf nie abbrechen
            purged, message = False, f"Purge-Ausnahme: {e}"
        if purged:
            _LOG.info("[cache] Edge-Purge ok: %s", message)
        else:
            _LOG.warning("[cache] Edge-Purge fehlgeschlagen/übersprungen: %s", message)
        if self.metrics:
            self.metrics.track_cache_purge("success" if purged else "failed")
        return CachePropagation(invalidated=wanted, purged=purged, message=message)
