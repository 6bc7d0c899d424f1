# src/com/lingenhag/pricetrack/domain/errors.py
from __future__ import annotations

from typing import Any, Dict, Optional


class PriceTrackError(Exception):
    """
    Basisklasse aller fachlichen Fehler.
    Per-Item-Fehler werden nicht geworfen, sondern in ItemResult/BatchResult gesammelt;
    nur ConfigurationMissing bricht einen Lauf hart ab.
    """

    code = "price_track_error"

    def __init__(self, message: str, *, item_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.item_id = item_id

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"code": self.code, "error": self.message}
        if self.item_id is not None:
            out["itemId"] = self.item_id
        return out


class UpstreamUnavailable(PriceTrackError):
    """Network/HTTP failure while talking to the upstream item API."""

    code = "upstream_unavailable"


class UpstreamDataMissing(PriceTrackError):
    """Well-formed upstream response without a usable price field."""

    code = "upstream_data_missing"


class StorageWriteFailure(PriceTrackError):
    """Object store, database or cache write rejected."""

    code = "storage_write_failure"


class StorageReadFailure(PriceTrackError):
    code = "storage_read_failure"


class ConfigurationMissing(PriceTrackError):
    """Required credential/config value absent at startup. Fatal."""

    code = "configuration_missing"


class DateAttributionError(PriceTrackError):
    """A record exists for the service day with a different value (wrong day computed earlier)."""

    code = "date_attribution_error"


class OverwriteNotConfirmed(PriceTrackError):
    code = "overwrite_not_confirmed"


class UnknownItem(PriceTrackError):
    code = "unknown_item"
