# tests/features/prices/test_service_day.py
from datetime import date, datetime, timedelta, timezone

import pytest

from com.lingenhag.pricetrack.features.prices.application.service_day import (
    ServiceDayClock,
    previous_service_day,
    resolve_service_day,
)


@pytest.mark.parametrize("hour", range(0, 24))
def test_resolve_service_day_boundary_for_every_hour(hour, kst):
    instant = kst(2025, 6, 27, hour, 30)
    expected = date(2025, 6, 26) if hour < 6 else date(2025, 6, 27)
    assert resolve_service_day(instant) == expected


def test_tick_at_0550_belongs_to_yesterday_and_0610_to_today(kst):
    assert resolve_service_day(kst(2025, 6, 27, 5, 50)) == date(2025, 6, 26)
    assert resolve_service_day(kst(2025, 6, 27, 6, 10)) == date(2025, 6, 27)


def test_exact_boundary_starts_new_day(kst):
    assert resolve_service_day(kst(2025, 6, 27, 6, 0)) == date(2025, 6, 27)
    assert resolve_service_day(kst(2025, 6, 27, 5, 59)) == date(2025, 6, 26)


def test_naive_instant_is_interpreted_as_utc():
    # 21:00 UTC = 06:00 KST am Folgetag
    naive = datetime(2025, 6, 26, 21, 0)
    assert resolve_service_day(naive) == date(2025, 6, 27)
    assert resolve_service_day(naive - timedelta(minutes=1)) == date(2025, 6, 26)


def test_custom_timezone_and_boundary():
    instant = datetime(2025, 1, 1, 3, 0, tzinfo=timezone.utc)
    assert resolve_service_day(instant, boundary_hour=4, tz="UTC") == date(2024, 12, 31)
    assert resolve_service_day(instant, boundary_hour=0, tz="UTC") == date(2025, 1, 1)


def test_previous_service_day_crosses_month():
    assert previous_service_day(date(2025, 7, 1)) == date(2025, 6, 30)


def test_clock_bounds_are_utc():
    start, end = ServiceDayClock().bounds(date(2025, 6, 26))
    assert start == datetime(2025, 6, 25, 21, 0, tzinfo=timezone.utc)
    assert end == datetime(2025, 6, 26, 21, 0, tzinfo=timezone.utc)


def test_grace_window_is_half_open(kst):
    clock = ServiceDayClock(grace_minutes=90)
    assert clock.in_grace_window(kst(2025, 6, 27, 6, 0))
    assert clock.in_grace_window(kst(2025, 6, 27, 7, 29))
    assert not clock.in_grace_window(kst(2025, 6, 27, 7, 30))
    assert not clock.in_grace_window(kst(2025, 6, 27, 5, 59))


def test_grace_window_disabled_with_zero_minutes(kst):
    assert not ServiceDayClock(grace_minutes=0).in_grace_window(kst(2025, 6, 27, 6, 0))


def test_clock_yesterday(kst):
    assert ServiceDayClock().yesterday(kst(2025, 6, 27, 6, 10)) == date(2025, 6, 26)


def test_clock_rejects_invalid_configuration():
    with pytest.raises(ValueError):
        ServiceDayClock(boundary_hour=24)
    with pytest.raises(ValueError):
        ServiceDayClock(grace_minutes=-1)
