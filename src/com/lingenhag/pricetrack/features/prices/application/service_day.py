# src/com/lingenhag/pricetrack/features/prices/application/service_day.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Tuple
from zoneinfo import ZoneInfo

DEFAULT_TIMEZONE = "Asia/Seoul"
DEFAULT_BOUNDARY_HOUR = 6
DEFAULT_GRACE_MINUTES = 90


def _as_aware(instant: datetime) -> datetime:
    # Naive Zeitstempel gelten als UTC
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant


def resolve_service_day(
        instant: datetime,
        boundary_hour: int = DEFAULT_BOUNDARY_HOUR,
        tz: str = DEFAULT_TIMEZONE,
) -> date:
    """
    Bildet einen Zeitpunkt auf den Service-Tag ab.
    Vor der Grenzstunde (lokal) zählt der Zeitpunkt zum Vortag, z. B. 26. 06:00 bis 27. 05:59 → 26.
    """
    local = _as_aware(instant).astimezone(ZoneInfo(tz))
    if local.hour < boundary_hour:
        return local.date() - timedelta(days=1)
    return local.date()


def previous_service_day(day: date) -> date:
    return day - timedelta(days=1)


@dataclass(frozen=True)
class ServiceDayClock:
    """Konfigurierte Sicht auf die Tagesgrenze (Zeitzone, Grenzstunde, Grace-Fenster)."""

    boundary_hour: int = DEFAULT_BOUNDARY_HOUR
    tz: str = DEFAULT_TIMEZONE
    grace_minutes: int = DEFAULT_GRACE_MINUTES

    def __post_init__(self):
        if not 0 <= self.boundary_hour <= 23:
            raise ValueError("boundary_hour must be in [0, 23]")
        if self.grace_minutes < 0:
            raise ValueError("grace_minutes must be >= 0")
        ZoneInfo(self.tz)

    def service_day(self, instant: datetime) -> date:
        return resolve_service_day(instant, boundary_hour=self.boundary_hour, tz=self.tz)

    def yesterday(self, instant: datetime) -> date:
        return previous_service_day(self.service_day(instant))

    def bounds(self, day: date) -> Tuple[datetime, datetime]:
        """UTC start (inkl.) und Ende (exkl.) eines Service-Tags."""
        zone = ZoneInfo(self.tz)
        start_local = datetime.combine(day, time(hour=self.boundary_hour), tzinfo=zone)
        end_local = datetime.combine(day + timedelta(days=1), time(hour=self.boundary_hour), tzinfo=zone)
        return start_local.astimezone(timezone.utc), end_local.astimezone(timezone.utc)

    def in_grace_window(self, instant: datetime) -> bool:
        if self.grace_minutes == 0:
            return False
        start, _ = self.bounds(self.service_day(instant))
        return start <= _as_aware(instant).astimezone(timezone.utc) < start + timedelta(minutes=self.grace_minutes)
