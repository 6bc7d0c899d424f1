# src/com/lingenhag/pricetrack/features/prices/presentation/admin_api.py
"""
HTTP-Oberfläche des Prices-Slices (FastAPI).

Admin-Endpunkte (Bearer-Token, in Produktion Pflicht) lösen Sampling, Finalisierung,
Reparatur und Backfill aus und liefern immer {success, message, timestamp, results, errors}.
Die öffentlichen Lese-Endpunkte gehen über ClientPriceCache → PriceDataReader → Objektspeicher
und setzen CDN-Cache-Header samt Cache-Tag für den tag-basierten Purge.
"""
from __future__ import annotations

import datetime as dt
import hmac
import logging
import os
from typing import Any, Callable, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from com.lingenhag.pricetrack.domain.errors import (
    ConfigurationMissing,
    PriceTrackError,
    StorageReadFailure,
    UnknownItem,
)
from com.lingenhag.pricetrack.domain.models import BatchResult, ItemResult
from com.lingenhag.pricetrack.features.prices.application.cache_coordinator import TAG_HISTORY, TAG_LATEST
from com.lingenhag.pricetrack.features.prices.application.factories import PriceTrackerFactory
from com.lingenhag.pricetrack.features.prices.application.usecases.repair_history import (
    DEFAULT_BUCKET_RETENTION_DAYS,
)

_LOG = logging.getLogger(__name__)

PUBLIC_CACHE_CONTROL = "public, s-maxage=31536000, max-age=30"


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def _iso_z(ts: dt.datetime) -> str:
    return ts.astimezone(dt.timezone.utc).isoformat().replace("+00:00", "Z")


# ---------- Request-Modelle ----------
class ItemSelection(BaseModel):
    item_ids: Optional[List[str]] = Field(default=None, alias="itemIds")

    model_config = ConfigDict(populate_by_name=True)


class FinalizeRequest(ItemSelection):
    day: Optional[dt.date] = Field(default=None, alias="date")


class DateRequest(BaseModel):
    day: dt.date = Field(alias="date")

    model_config = ConfigDict(populate_by_name=True)


class RepairRequest(ItemSelection):
    day: dt.date = Field(alias="date")
    source: str = "auto"
    prices: Dict[str, float] = Field(default_factory=dict)
    confirm_overwrite: bool = Field(default=False, alias="confirmOverwrite")


class BackfillRequest(BaseModel):
    item_ids: List[str] = Field(alias="itemIds", min_length=1)

    model_config = ConfigDict(populate_by_name=True)


class CleanupRequest(BaseModel):
    keep_days: Optional[int] = Field(default=None, alias="keepDays", ge=1)

    model_config = ConfigDict(populate_by_name=True)


# ---------- Hilfsfunktionen ----------
def envelope(batch: BatchResult, now: dt.datetime) -> Dict[str, Any]:
    out = batch.to_dict()
    out["timestamp"] = _iso_z(now)
    return out


def resolve_admin_token(factory: PriceTrackerFactory) -> Optional[str]:
    """admin.token → ADMIN_TOKEN. In Produktion Pflicht (ConfigurationMissing)."""
    token = factory.config.get("admin", "token", None) or os.getenv("ADMIN_TOKEN")
    if token and str(token).strip():
        return str(token).strip()
    if factory.config.is_production:
        raise ConfigurationMissing("ADMIN_TOKEN fehlt (admin.token oder Umgebungsvariable) – in Produktion Pflicht.")
    _LOG.warning("Kein Admin-Token konfiguriert – Admin-Endpunkte sind ungeschützt (nur Entwicklung!)")
    return None


def bearer_auth(expected: Optional[str]) -> Callable[..., None]:
    def dependency(authorization: Optional[str] = Header(default=None)) -> None:
        if expected is None:
            return
        if not authorization or not authorization.startswith("Bearer "):
            raise HTTPException(status_code=401, detail="Missing or invalid Authorization header.")
        token = authorization.split(" ", 1)[1].strip()
        if not hmac.compare_digest(token, expected):
            raise HTTPException(status_code=401, detail="Unauthorized")

    return dependency


def _public_json(payload: Dict[str, Any], tag: str) -> JSONResponse:
    return JSONResponse(
        content=payload,
        headers={"Cache-Control": PUBLIC_CACHE_CONTROL, "Netlify-Cache-Tag": tag},
    )


# ---------- App ----------
def create_app(
        factory: PriceTrackerFactory,
        now_fn: Callable[[], dt.datetime] = _utcnow,
) -> FastAPI:
    app = FastAPI(title="pricetrack – Preis-Tracking API", version="1.0.0")
    app.state.factory = factory

    admin = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(bearer_auth(resolve_admin_token(factory)))])

    @admin.post("/sample")
    def sample(body: Optional[ItemSelection] = None) -> Dict[str, Any]:
        now = now_fn()
        batch = factory.sample_prices().execute(now=now, item_ids=body.item_ids if body else None)
        return envelope(batch, now)

    @admin.post("/finalize")
    def finalize(body: Optional[FinalizeRequest] = None) -> Dict[str, Any]:
        now = now_fn()
        batch = factory.finalize_day().execute(
            service_day=body.day if body else None,
            item_ids=body.item_ids if body else None,
            now=now,
        )
        return envelope(batch, now)

    @admin.post("/regenerate-history")
    def regenerate_history() -> Dict[str, Any]:
        now = now_fn()
        return envelope(factory.repair_history().regenerate_history(now=now), now)

    @admin.delete("/records/{item_id}/{date}")
    def delete_record(item_id: str, date: dt.date) -> Dict[str, Any]:
        now = now_fn()
        return envelope(factory.repair_history().delete_record(item_id, date, now=now), now)

    @admin.post("/delete-wrong-date")
    def delete_wrong_date(body: DateRequest) -> Dict[str, Any]:
        now = now_fn()
        return envelope(factory.repair_history().delete_wrong_date(body.day, now=now), now)

    @admin.post("/repair")
    def repair(body: RepairRequest) -> Dict[str, Any]:
        now = now_fn()
        batch = factory.repair_history().repair_day(
            body.day,
            item_ids=body.item_ids,
            manual_prices=body.prices,
            source=body.source,
            confirm_overwrite=body.confirm_overwrite,
            now=now,
        )
        return envelope(batch, now)

    @admin.post("/backfill")
    def backfill(body: BackfillRequest) -> Dict[str, Any]:
        now = now_fn()
        return envelope(factory.backfill_items().execute(body.item_ids, now=now), now)

    @admin.post("/cleanup")
    def cleanup(body: Optional[CleanupRequest] = None) -> Dict[str, Any]:
        now = now_fn()
        keep_days = (body.keep_days if body else None) or int(
            factory.config.get("maintenance", "bucket_retention_days", DEFAULT_BUCKET_RETENTION_DAYS)
        )
        return envelope(factory.repair_history().purge_stale_buckets(keep_days=keep_days, now=now), now)

    @admin.get("/status")
    def status() -> Dict[str, Any]:
        now = now_fn()
        batch = BatchResult(operation="status")
        for s in factory.repair_history().describe_status(now=now):
            batch.add(ItemResult(
                s.item_id,
                "status",
                day=s.last_finalized,
                detail={
                    "name": s.display_name,
                    "sourceKind": s.source_kind.value,
                    "recordCount": s.record_count,
                    "currentSamples": s.current_samples,
                },
            ))
        batch.notes["serviceDay"] = factory.clock().service_day(now).isoformat()
        return envelope(batch, now)

    app.include_router(admin)

    @app.get("/price-data/latest")
    def latest() -> JSONResponse:
        return _public_json(factory.reader().read_latest(), TAG_LATEST)

    @app.get("/price-data/history")
    def history() -> JSONResponse:
        return _public_json(factory.reader().read_history(), TAG_HISTORY)

    @app.get("/health")
    def health() -> Dict[str, Any]:
        return {"status": "ok", "environment": factory.config.environment}

    _setup_exception_handlers(app, now_fn)
    return app


def _setup_exception_handlers(app: FastAPI, now_fn: Callable[[], dt.datetime]) -> None:
    @app.exception_handler(StorageReadFailure)
    async def storage_read_handler(request: Request, exc: StorageReadFailure) -> JSONResponse:
        _LOG.error("Lesefehler für %s: %s", request.url.path, exc)
        return JSONResponse(
            status_code=500,
            content={"error": "Internal Server Error"},
            headers={"Cache-Control": "no-store"},
        )

    @app.exception_handler(PriceTrackError)
    async def price_track_handler(request: Request, exc: PriceTrackError) -> JSONResponse:
        if isinstance(exc, UnknownItem):
            status_code = 404
        elif isinstance(exc, ConfigurationMissing):
            status_code = 500
        else:
            status_code = 502
        _LOG.error("%s bei %s: %s", exc.code, request.url.path, exc)
        return JSONResponse(
            status_code=status_code,
            content={
                "success": False,
                "message": exc.message,
                "timestamp": _iso_z(now_fn()),
                "results": [],
                "errors": [exc.to_dict()],
            },
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={
                "success": False,
                "message": str(exc),
                "timestamp": _iso_z(now_fn()),
                "results": [],
                "errors": [{"code": "invalid_request", "error": str(exc)}],
            },
        )
