# tests/features/prices/test_pricing.py
from datetime import date

import pytest

from com.lingenhag.pricetrack.domain.models import AccumulatorBucket, DailyStat, SourceKind, TrackedItem
from com.lingenhag.pricetrack.features.prices.application.pricing import (
    derive_bucket_price,
    mean,
    round_price,
    stat_for_day,
)

INT_ITEM = TrackedItem("67400003", "Int", SourceKind.AGGREGATED)
DEC_ITEM = TrackedItem("6861012", "Dec", SourceKind.AGGREGATED, price_decimals=1)
RAW_ITEM = TrackedItem("gem", "Gem", SourceKind.RAW_SAMPLE)


@pytest.mark.parametrize("value, expected", [(2.5, 3), (3.5, 4), (110.0, 110), (99.49, 99), (0.5, 1)])
def test_round_price_integer_items_half_up(value, expected):
    result = round_price(INT_ITEM, value)
    assert result == expected
    assert isinstance(result, int)


@pytest.mark.parametrize("value, expected", [(12.35, 12.4), (12.34, 12.3), (7.05, 7.1), (8.0, 8.0)])
def test_round_price_designated_item_one_decimal(value, expected):
    result = round_price(DEC_ITEM, value)
    assert result == expected
    assert len(repr(result).split(".")[1]) <= 1


def test_mean_of_empty_raises():
    with pytest.raises(ValueError):
        mean([])


def test_raw_sample_bucket_is_averaged():
    bucket = AccumulatorBucket("gem", date(2025, 6, 26), SourceKind.RAW_SAMPLE, (100.0, 110.0, 120.0))
    assert derive_bucket_price(RAW_ITEM, bucket) == 110


def test_aggregated_bucket_uses_last_value():
    bucket = AccumulatorBucket("67400003", date(2025, 6, 26), SourceKind.AGGREGATED, (95.4,))
    assert derive_bucket_price(INT_ITEM, bucket) == 95


def test_empty_or_missing_bucket_yields_none():
    empty = AccumulatorBucket("gem", date(2025, 6, 26), SourceKind.RAW_SAMPLE, ())
    assert derive_bucket_price(RAW_ITEM, empty) is None
    assert derive_bucket_price(RAW_ITEM, None) is None


def test_stat_for_day_matches_exact_date_only():
    stats = [DailyStat(date(2025, 6, 27), 101.0), DailyStat(date(2025, 6, 26), 99.0)]
    assert stat_for_day(stats, date(2025, 6, 26)) == 99.0
    assert stat_for_day(stats, date(2025, 6, 25)) is None
