# src/com/lingenhag/pricetrack/features/prices/infrastructure/tag_cache.py
from __future__ import annotations

import time
from collections import OrderedDict
from threading import Lock
from typing import Any, Callable, Dict, Iterable, Optional, Set, Tuple

from com.lingenhag.pricetrack.features.prices.application.ports import TagCachePort


class TagCache(TagCachePort):
    """
    Thread-sicherer TTL/LRU-Cache mit Tag-basierter Invalidierung (Application-Cache).
    Einträge tragen einen oder mehrere Tags; invalidate_tag() entfernt alle Einträge eines Tags.
    """

    def __init__(self, max_size: int = 256, clock: Callable[[], float] = time.monotonic) -> None:
        self.max_size = max_size
        self._clock = clock
        self._entries: "OrderedDict[str, Tuple[Any, float, Set[str]]]" = OrderedDict()
        self._lock = Lock()

    def get(self, key: str) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expiry, _ = entry
            if self._clock() >= expiry:
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return value

    def set(self, key: str, value: Any, *, tags: Iterable[str], ttl: float) -> None:
        expiry = self._clock() + float(ttl)
        with self._lock:
            if key in self._entries:
                del self._entries[key]
            while len(self._entries) >= self.max_size and self._entries:
                self._entries.popitem(last=False)
            self._entries[key] = (value, expiry, set(tags))

    def invalidate_tag(self, tag: str) -> int:
        with self._lock:
            doomed = [k for k, (_, _, tags) in self._entries.items() if tag in tags]
            for k in doomed:
                del self._entries[k]
            return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def stats(self) -> Dict[str, Optional[int]]:
        with self._lock:
            return {"entries": len(self._entries), "max_size": self.max_size}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
