# src/com/lingenhag/pricetrack/features/prices/infrastructure/edge_purge.py
from __future__ import annotations

import logging
import time
from typing import Optional, Sequence, Tuple

import requests

from com.lingenhag.pricetrack.features.prices.application.ports import EdgePurgePort
from com.lingenhag.pricetrack.platform.monitoring.metrics import Metrics

_LOG = logging.getLogger(__name__)

NETLIFY_PURGE_URL = "https://api.netlify.com/api/v1/purge"


class NetlifyEdgePurger(EdgePurgePort):
    """Tag-basierter CDN-Purge über die Netlify API. Best-effort: wirft nie."""

    def __init__(
            self,
            api_token: str,
            site_id: str,
            timeout: int = 10,
            purge_url: str = NETLIFY_PURGE_URL,
            metrics: Optional[Metrics] = None,
            session: Optional[requests.Session] = None,
    ) -> None:
        self.api_token = api_token
        self.site_id = site_id
        self.timeout = timeout
        self.purge_url = purge_url
        self.metrics = metrics
        self.session = session or requests.Session()

    def purge(self, tags: Sequence[str]) -> Tuple[bool, str]:
        start_time = time.time()
        try:
            resp = self.session.post(
                self.purge_url,
                json={"site_id": self.site_id, "cache_tags": list(tags)},
                headers={"Authorization": f"Bearer {self.api_token}", "Content-Type": "application/json"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            self._track("error", start_time)
            return False, f"Purge-Request fehlgeschlagen: {e}"
        if resp.status_code >= 400:
            self._track("error", start_time)
            return False, f"Netlify API Fehler: HTTP {resp.status_code}"
        self._track("success", start_time)
        return True, f"CDN-Purge ok für Tags {', '.join(tags)}"

    def _track(self, status: str, start_time: float) -> None:
        if self.metrics:
            self.metrics.track_api_request("netlify", status)
            self.metrics.track_api_duration("netlify", time.time() - start_time)


class NullEdgePurger(EdgePurgePort):
    """Kein CDN konfiguriert: Purge wird übersprungen (TTL begrenzt die Staleness)."""

    def purge(self, tags: Sequence[str]) -> Tuple[bool, str]:
        return False, "Kein Edge-Cache konfiguriert"
