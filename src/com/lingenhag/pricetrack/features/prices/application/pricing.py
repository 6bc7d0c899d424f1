# src/com/lingenhag/pricetrack/features/prices/application/pricing.py
from __future__ import annotations

from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional, Sequence

from com.lingenhag.pricetrack.domain.models import AccumulatorBucket, DailyStat, Price, SourceKind, TrackedItem


def round_price(item: TrackedItem, value: float) -> Price:
    """
    Rundung (kaufmännisch, half-up):
      - price_decimals == 1 → eine Nachkommastelle (float)
      - sonst → ganze Zahl (int)
    """
    quantum = Decimal("0.1") if item.price_decimals == 1 else Decimal("1")
    rounded = Decimal(repr(float(value))).quantize(quantum, rounding=ROUND_HALF_UP)
    if item.price_decimals == 1:
        return float(rounded)
    return int(rounded)


def mean(values: Sequence[float]) -> float:
    if not values:
        raise ValueError("mean() of empty sequence")
    return sum(values) / len(values)


def derive_bucket_price(item: TrackedItem, bucket: Optional[AccumulatorBucket]) -> Optional[Price]:
    """
    Leitet den Tageswert aus einem Bucket ab (ohne Upstream-Korrektur).
      - Aggregated: letzter überschriebener Wert
      - RawSample : arithmetisches Mittel aller Samples
    """
    if bucket is None or bucket.is_empty:
        return None
    if item.source_kind is SourceKind.AGGREGATED:
        return round_price(item, bucket.values[-1])
    return round_price(item, mean(bucket.values))


def stat_for_day(stats: Iterable[DailyStat], day: date) -> Optional[float]:
    for stat in stats:
        if stat.day == day and stat.is_valid:
            return stat.price
    return None
