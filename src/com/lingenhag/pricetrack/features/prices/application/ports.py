# src/com/lingenhag/pricetrack/features/prices/application/ports.py
from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence, Tuple

from com.lingenhag.pricetrack.domain.models import (
    AccumulatorBucket,
    DailyPriceRecord,
    FetchResult,
    SourceKind,
    TrackedItem,
)


class UpstreamPricePort(Protocol):
    def fetch_price(self, item: TrackedItem) -> FetchResult:
        """FetchResult.value: PriceQuote. Wirft nie für Per-Item-Fehler."""
        ...

    def fetch_daily_stats(self, item: TrackedItem) -> FetchResult:
        """FetchResult.value: List[DailyStat], neuester Eintrag zuerst."""
        ...


class AccumulatorRepositoryPort(Protocol):
    def get_bucket(self, item_id: str, service_day: date) -> Optional[AccumulatorBucket]:
        ...

    def overwrite_value(
            self, item_id: str, service_day: date, source_kind: SourceKind, value: float, at: datetime
    ) -> AccumulatorBucket:
        ...

    def append_value(
            self, item_id: str, service_day: date, source_kind: SourceKind, value: float, at: datetime
    ) -> AccumulatorBucket:
        ...

    def clear_bucket(self, item_id: str, service_day: date) -> bool:
        ...

    def list_buckets(self, service_day: Optional[date] = None) -> List[AccumulatorBucket]:
        ...

    def delete_buckets_before(self, cutoff: date) -> int:
        ...


class HistoryRepositoryPort(Protocol):
    def get_record(self, item_id: str, day: date) -> Optional[DailyPriceRecord]:
        ...

    def upsert_record(self, record: DailyPriceRecord) -> Tuple[int, int]:
        """Upsert per (item_id, date). Rückgabe: (inserted, updated)."""
        ...

    def insert_if_absent(self, records: Sequence[DailyPriceRecord]) -> Tuple[int, int]:
        """Rückgabe: (inserted, skipped)."""
        ...

    def delete_record(self, item_id: str, day: date) -> int:
        ...

    def delete_date(self, day: date) -> List[str]:
        """Löscht alle Records eines Datums. Rückgabe: betroffene Item-IDs."""
        ...

    def latest_record(self, item_id: str, before: Optional[date] = None) -> Optional[DailyPriceRecord]:
        ...

    def fetch_series(self, item_id: str) -> List[DailyPriceRecord]:
        ...

    def fetch_all_series(self) -> Dict[str, List[DailyPriceRecord]]:
        ...


class ObjectStorePort(Protocol):
    def write_json(self, name: str, payload: Dict[str, Any], *, cache_control: str) -> None:
        """Atomarer Voll-Ersatz des Blobs."""
        ...

    def read_json(self, name: str) -> Optional[Dict[str, Any]]:
        ...


class TagCachePort(Protocol):
    def get(self, key: str) -> Any:
        ...

    def set(self, key: str, value: Any, *, tags: Iterable[str], ttl: float) -> None:
        ...

    def invalidate_tag(self, tag: str) -> int:
        ...


class EdgePurgePort(Protocol):
    def purge(self, tags: Sequence[str]) -> Tuple[bool, str]:
        """Best-effort. Rückgabe: (success, message); wirft nicht."""
        ...


class PriceReaderPort(Protocol):
    def read_latest(self) -> Dict[str, Any]:
        ...

    def read_history(self) -> Dict[str, Any]:
        ...

