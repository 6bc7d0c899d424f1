# src/com/lingenhag/pricetrack/features/prices/application/price_reader.py
from __future__ import annotations

import copy
import logging
import time
from threading import Lock
from typing import Any, Callable, Dict, Optional, Tuple

from com.lingenhag.pricetrack.domain.errors import StorageReadFailure
from com.lingenhag.pricetrack.features.prices.application.cache_coordinator import TAG_HISTORY, TAG_LATEST
from com.lingenhag.pricetrack.features.prices.application.ports import (
    ObjectStorePort,
    PriceReaderPort,
    TagCachePort,
)
from com.lingenhag.pricetrack.features.prices.application.usecases.rebuild_snapshots import HISTORY_BLOB, LATEST_BLOB

_LOG = logging.getLogger(__name__)


class PriceDataReader(PriceReaderPort):
    """
    Server-seitiger Lesepfad: Application-Cache (Tag + TTL) vor dem Objektspeicher.
    Wird nur über Tag-Invalidierung aktualisiert, nie durch den Schreibpfad blockiert.
    """

    def __init__(self, store: ObjectStorePort, cache: TagCachePort, ttl_seconds: float = 300.0) -> None:
        self.store = store
        self.cache = cache
        self.ttl_seconds = ttl_seconds

    def _read(self, blob: str, tag: str) -> Dict[str, Any]:
        key = f"blob:{blob}"
        cached = self.cache.get(key)
        if cached is not None:
            return copy.deepcopy(cached)
        data = self.store.read_json(blob)
        if data is None:
            raise StorageReadFailure(f"Blob {blob} nicht vorhanden")
        self.cache.set(key, data, tags=[tag], ttl=self.ttl_seconds)
        return copy.deepcopy(data)

    def read_latest(self) -> Dict[str, Any]:
        return self._read(LATEST_BLOB, TAG_LATEST)

    def read_history(self) -> Dict[str, Any]:
        return self._read(HISTORY_BLOB, TAG_HISTORY)


class ClientPriceCache(PriceReaderPort):
    """
    Prozess-lokale Client-Schicht mit kurzer TTL (~30 s), um Request-Bursts zu bündeln.
    Bei Lesefehlern wird – falls vorhanden – der letzte Stand ausgeliefert (stale > Fehler).
    """

    def __init__(
            self,
            upstream: PriceReaderPort,
            ttl_seconds: float = 30.0,
            clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.upstream = upstream
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[Dict[str, Any], float]] = {}
        self._lock = Lock()

    def _get(self, name: str, loader: Callable[[], Dict[str, Any]]) -> Dict[str, Any]:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(name)
        if entry is not None and now - entry[1] < self.ttl_seconds:
            return entry[0]
        try:
            data = loader()
        except StorageReadFailure:
            if entry is not None:
                _LOG.warning("Lesefehler für %s – liefere veralteten Cache-Stand aus", name)
                return entry[0]
            raise
        with self._lock:
            self._entries[name] = (data, now)
        return data

    def read_latest(self) -> Dict[str, Any]:
        return self._get(TAG_LATEST, self.upstream.read_latest)

    def read_history(self) -> Dict[str, Any]:
        return self._get(TAG_HISTORY, self.upstream.read_history)

    def age(self, name: str) -> Optional[float]:
        with self._lock:
            entry = self._entries.get(name)
        return None if entry is None else self._clock() - entry[1]
