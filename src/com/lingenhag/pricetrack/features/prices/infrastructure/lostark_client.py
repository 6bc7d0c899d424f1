# src/com/lingenhag/pricetrack/features/prices/infrastructure/lostark_client.py
from __future__ import annotations

import logging
import time
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import requests

from com.lingenhag.pricetrack.domain.errors import (
    PriceTrackError,
    UpstreamDataMissing,
    UpstreamUnavailable,
)
from com.lingenhag.pricetrack.domain.models import DailyStat, FetchResult, PriceQuote, SourceKind, TrackedItem
from com.lingenhag.pricetrack.features.prices.application.ports import UpstreamPricePort
from com.lingenhag.pricetrack.platform.monitoring.metrics import Metrics

_LOG = logging.getLogger(__name__)

DEFAULT_API_BASE = "https://developer-lostark.game.onstove.com"


def _positive(v: Any) -> Optional[float]:
    """Zahl > 0 oder None. Null/fehlend zählt als nicht verfügbar."""
    if isinstance(v, bool) or v is None:
        return None
    try:
        f = float(v)
    except (TypeError, ValueError):
        return None
    return f if f > 0 else None


def _parse_stat_date(v: Any) -> Optional[date]:
    if not isinstance(v, str) or not v.strip():
        return None
    try:
        return date.fromisoformat(v.strip()[:10])
    except ValueError:
        return None


# -----------------------------
# Tagged-variant decode per source kind (fail closed)
# -----------------------------
def _pick_market_variant(item_id: str, payload: Any) -> Dict[str, Any]:
    if not isinstance(payload, list) or not payload:
        raise UpstreamDataMissing("Markt-Antwort enthält keine Item-Varianten", item_id=item_id)
    variants = [v for v in payload if isinstance(v, dict)]
    if not variants:
        raise UpstreamDataMissing("Markt-Antwort enthält keine Item-Objekte", item_id=item_id)
    # Handelbare Variante bevorzugen (Stats[0].AvgPrice > 0)
    for variant in variants:
        stats = variant.get("Stats")
        if isinstance(stats, list) and stats and isinstance(stats[0], dict) and _positive(stats[0].get("AvgPrice")):
            return variant
    return variants[0]


def decode_market_price(item_id: str, payload: Any) -> tuple[float, str]:
    """
    Aggregated: YDayAvgPrice > Stats[0].AvgPrice > CurrentMinPrice.
    Rückgabe: (price, basis)
    """
    variant = _pick_market_variant(item_id, payload)
    yday = _positive(variant.get("YDayAvgPrice"))
    if yday is not None:
        return yday, "yday_avg"
    stats = variant.get("Stats")
    if isinstance(stats, list) and stats and isinstance(stats[0], dict):
        avg = _positive(stats[0].get("AvgPrice"))
        if avg is not None:
            return avg, "stats_avg"
    current = _positive(variant.get("CurrentMinPrice"))
    if current is not None:
        return current, "current_min"
    raise UpstreamDataMissing("Kein gültiger Preis (YDayAvgPrice/Stats/CurrentMinPrice)", item_id=item_id)


def decode_market_stats(item_id: str, payload: Any) -> List[DailyStat]:
    variant = _pick_market_variant(item_id, payload)
    stats = variant.get("Stats")
    if not isinstance(stats, list) or not stats:
        raise UpstreamDataMissing("Stats-Fenster fehlt", item_id=item_id)
    out: List[DailyStat] = []
    for raw in stats:
        if not isinstance(raw, dict):
            continue
        day = _parse_stat_date(raw.get("Date"))
        if day is None:
            continue
        # Tage ohne gültigen AvgPrice bleiben als Lücke (0.0) sichtbar
        out.append(DailyStat(day=day, price=_positive(raw.get("AvgPrice")) or 0.0))
    if not any(s.is_valid for s in out):
        raise UpstreamDataMissing("Stats-Fenster ohne gültige Einträge", item_id=item_id)
    # neuester Eintrag zuerst, wie vom Upstream geliefert
    out.sort(key=lambda s: s.day, reverse=True)
    return out


def decode_lowest_listing(item_id: str, payload: Any) -> float:
    """RawSample: niedrigster aktueller Sofortkaufpreis (Fallback: Startgebot) über alle Listings."""
    if not isinstance(payload, dict):
        raise UpstreamDataMissing("Auktions-Antwort ist kein Objekt", item_id=item_id)
    listings = payload.get("Items")
    if not isinstance(listings, list) or not listings:
        raise UpstreamDataMissing("Keine Listings im Auktionshaus", item_id=item_id)
    candidates: List[float] = []
    for listing in listings:
        info = listing.get("AuctionInfo") if isinstance(listing, dict) else None
        if not isinstance(info, dict):
            continue
        price = _positive(info.get("BuyPrice")) or _positive(info.get("BidStartPrice"))
        if price is not None:
            candidates.append(price)
    if not candidates:
        raise UpstreamDataMissing("Listings ohne gültigen Preis", item_id=item_id)
    return min(candidates)


def auction_request_body(item: TrackedItem) -> Dict[str, Any]:
    params = item.fetch_params or {}
    body: Dict[str, Any] = {
        "ItemName": params.get("search_name") or "",
        "CategoryCode": params.get("category_code"),
        "PageNo": 0,
        "Sort": "BUY_PRICE",
        "SortCondition": "ASC",
    }
    body.update(params.get("filters") or {})
    return body


class LostArkClient(UpstreamPricePort):
    """
    Read-only Client für die Lost-Ark-Developer-API.
    - Kein Retry/Backoff: Fehler werden mit Item-ID getaggt als FetchResult zurückgegeben.
    - Selbst-Drosselung: fester Mindestabstand zwischen zwei Requests.
    """

    def __init__(
            self,
            api_key: str,
            api_base: str = DEFAULT_API_BASE,
            timeout: int = 20,
            throttle_seconds: float = 0.3,
            metrics: Optional[Metrics] = None,
            session: Optional[requests.Session] = None,
            sleep: Callable[[float], None] = time.sleep,
            monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        if not api_key:
            raise ValueError("api_key darf nicht leer sein")
        self.api_key = api_key
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self.throttle_seconds = max(0.0, float(throttle_seconds))
        self.metrics = metrics
        self.session = session or requests.Session()
        self._sleep = sleep
        self._monotonic = monotonic
        self._last_call: Optional[float] = None

    def _headers(self) -> Dict[str, str]:
        return {
            "User-Agent": "com.lingenhag.pricetrack/1.0 lostark-client",
            "Accept": "application/json",
            "Authorization": f"bearer {self.api_key}",
        }

    def _throttle(self) -> None:
        if self._last_call is not None and self.throttle_seconds > 0:
            wait = self.throttle_seconds - (self._monotonic() - self._last_call)
            if wait > 0:
                self._sleep(wait)
        self._last_call = self._monotonic()

    def _request(self, method: str, path: str, *, item_id: str, json_body: Optional[Dict[str, Any]] = None) -> Any:
        self._throttle()
        url = f"{self.api_base}/{path.lstrip('/')}"
        start_time = time.time()
        try:
            resp = self.session.request(
                method=method,
                url=url,
                json=json_body,
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            self._track("error", start_time)
            raise UpstreamUnavailable(f"Request fehlgeschlagen: {e}", item_id=item_id) from e

        if resp.status_code >= 400:
            self._track("error", start_time)
            body_text = resp.text[:300].replace("\n", " ") if resp.text else "<no body>"
            _LOG.error("LostArk error %s for %s %s: %s", resp.status_code, method, url, body_text)
            raise UpstreamUnavailable(f"HTTP {resp.status_code}", item_id=item_id)
        try:
            data = resp.json()
        except ValueError as e:
            self._track("error", start_time)
            raise UpstreamDataMissing("Antwort ist kein gültiges JSON", item_id=item_id) from e
        self._track("success", start_time)
        return data

    def _track(self, status: str, start_time: float) -> None:
        if self.metrics:
            self.metrics.track_api_request("lostark", status)
            self.metrics.track_api_duration("lostark", time.time() - start_time)

    # ---- Port ----
    def fetch_price(self, item: TrackedItem) -> FetchResult:
        try:
            if item.source_kind is SourceKind.AGGREGATED:
                payload = self._request("GET", f"/markets/items/{item.id}", item_id=item.id)
                price, basis = decode_market_price(item.id, payload)
            else:
                payload = self._request("POST", "/auctions/items", item_id=item.id, json_body=auction_request_body(item))
                price, basis = decode_lowest_listing(item.id, payload), "lowest_listing"
        except PriceTrackError as e:
            _LOG.warning("fetch_price(%s) failed: %s", item.id, e.message)
            return FetchResult.failure(e)
        _LOG.debug("fetch_price(%s) = %s (%s)", item.id, price, basis)
        return FetchResult.success(
            item.id,
            PriceQuote(item_id=item.id, price=price, basis=basis, observed_at=datetime.now(timezone.utc)),
        )

    def fetch_daily_stats(self, item: TrackedItem) -> FetchResult:
        if item.source_kind is not SourceKind.AGGREGATED:
            return FetchResult.failure(
                UpstreamDataMissing("RawSample-Items haben kein Upstream-Stats-Fenster", item_id=item.id)
            )
        try:
            payload = self._request("GET", f"/markets/items/{item.id}", item_id=item.id)
            stats = decode_market_stats(item.id, payload)
        except PriceTrackError as e:
            _LOG.warning("fetch_daily_stats(%s) failed: %s", item.id, e.message)
            return FetchResult.failure(e)
        return FetchResult.success(item.id, stats)
