# src/com/lingenhag/pricetrack/domain/models.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from com.lingenhag.pricetrack.domain.errors import PriceTrackError

Price = Union[int, float]


# -----------------------------
# Catalog
# -----------------------------
class SourceKind(str, Enum):
    AGGREGATED = "aggregated"  # Upstream liefert bereits einen Durchschnitt (Markt)
    RAW_SAMPLE = "raw_sample"  # nur Momentaufnahmen (Auktionshaus) → lokal mitteln


@dataclass(frozen=True)
class TrackedItem:
    id: str
    display_name: str
    source_kind: SourceKind
    fetch_params: Dict[str, Any] = field(default_factory=dict)
    price_decimals: int = 0

    def __post_init__(self):
        if not self.id or not self.id.strip():
            raise ValueError("TrackedItem.id must not be empty")
        if self.price_decimals not in (0, 1):
            raise ValueError("price_decimals must be 0 or 1")

    @property
    def is_aggregated(self) -> bool:
        return self.source_kind is SourceKind.AGGREGATED


# -----------------------------
# Samples & Accumulator
# -----------------------------
@dataclass(frozen=True)
class PriceQuote:
    item_id: str
    price: float
    basis: str  # e.g. "yday_avg", "stats_avg", "current_min", "lowest_listing"
    observed_at: datetime


@dataclass(frozen=True)
class DailyStat:
    day: date
    price: float  # 0.0 = Tag im Fenster, aber ohne gültigen Durchschnitt

    @property
    def is_valid(self) -> bool:
        return self.price > 0


@dataclass(frozen=True)
class AccumulatorBucket:
    item_id: str
    service_day: date
    source_kind: SourceKind
    values: Tuple[float, ...]
    updated_at: Optional[datetime] = None

    @property
    def sample_count(self) -> int:
        return len(self.values)

    @property
    def is_empty(self) -> bool:
        return not self.values


@dataclass(frozen=True)
class DailyPriceRecord:
    item_id: str
    day: date
    price: Price
    recorded_at: Optional[datetime] = None
    source: str = "bucket"

    def to_entry(self) -> Dict[str, Any]:
        return {"date": self.day.isoformat(), "price": self.price}


# -----------------------------
# Results
# -----------------------------
@dataclass(frozen=True)
class FetchResult:
    """Explicit per-item result of an upstream call (no exceptions for control flow)."""

    item_id: str
    value: Any = None
    error: Optional[PriceTrackError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, item_id: str, value: Any) -> "FetchResult":
        return cls(item_id=item_id, value=value)

    @classmethod
    def failure(cls, error: PriceTrackError) -> "FetchResult":
        return cls(item_id=error.item_id or "", error=error)


@dataclass(frozen=True)
class ItemResult:
    item_id: str
    action: str
    price: Optional[Price] = None
    day: Optional[date] = None
    detail: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"itemId": self.item_id, "action": self.action}
        if self.price is not None:
            out["price"] = self.price
        if self.day is not None:
            out["date"] = self.day.isoformat()
        out.update(self.detail)
        return out


@dataclass
class BatchResult:
    """Aggregiertes Ergebnis eines Batch-Laufs: Erfolge und Fehler pro Item."""

    operation: str
    results: List[ItemResult] = field(default_factory=list)
    errors: List[PriceTrackError] = field(default_factory=list)
    notes: Dict[str, Any] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return not self.errors

    def add(self, result: ItemResult) -> None:
        self.results.append(result)

    def fail(self, error: PriceTrackError) -> None:
        self.errors.append(error)

    def message(self) -> str:
        return f"{self.operation}: {len(self.results)} ok, {len(self.errors)} failed"

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "success": self.success,
            "message": self.message(),
            "results": [r.to_dict() for r in self.results],
            "errors": [e.to_dict() for e in self.errors],
        }
        out.update(self.notes)
        return out


# -----------------------------
# Snapshots & Cache
# -----------------------------
@dataclass(frozen=True)
class LatestSnapshot:
    as_of_date: date
    generated_at: datetime
    prices: Dict[str, Price]

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = dict(sorted(self.prices.items()))
        payload["_meta"] = {
            "date": self.as_of_date.isoformat(),
            "updatedAt": self.generated_at.isoformat().replace("+00:00", "Z"),
        }
        return payload


@dataclass(frozen=True)
class RebuildOutcome:
    blob: str
    tag: str
    changed: bool
    payload: Dict[str, Any]
    written_at: Optional[datetime] = None


@dataclass(frozen=True)
class CachePropagation:
    invalidated: Tuple[str, ...]
    purged: bool
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"invalidated": list(self.invalidated), "purged": self.purged, "message": self.message}


@dataclass(frozen=True)
class ItemStatus:
    item_id: str
    display_name: str
    source_kind: SourceKind
    last_finalized: Optional[date]
    record_count: int
    current_samples: int
