# src/com/lingenhag/pricetrack/platform/monitoring/metrics.py
from __future__ import annotations

import logging
from typing import Optional

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Histogram, start_http_server

_LOG = logging.getLogger(__name__)


class Metrics:
    def __init__(self, port: int = 8000, registry: Optional[CollectorRegistry] = None):
        # Eigene Registry für Tests, sonst globale Default-Registry
        self._registry = registry if registry is not None else REGISTRY

        # ---- Upstream API ----
        self.api_requests_total = Counter(
            "api_requests_total",
            "Total number of API requests",
            ["client", "status"],
            registry=self._registry,
        )
        self.api_request_duration_seconds = Histogram(
            "api_request_duration_seconds",
            "API request duration in seconds",
            ["client"],
            buckets=(0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, float("inf")),
            registry=self._registry,
        )

        # ---- Pipeline ----
        self.sampling_items_total = Counter(
            "sampling_items_total",
            "Per-item outcome of sampling passes.",
            ["source_kind", "outcome"],
            registry=self._registry,
        )
        self.sampling_pass_duration_seconds = Histogram(
            "sampling_pass_duration_seconds",
            "Duration of a full sampling pass in seconds",
            buckets=(0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, float("inf")),
            registry=self._registry,
        )
        self.finalized_items_total = Counter(
            "finalized_items_total",
            "Per-item outcome of daily finalization.",
            ["outcome"],
            registry=self._registry,
        )
        self.snapshot_rebuilds_total = Counter(
            "snapshot_rebuilds_total",
            "Snapshot rebuilds per blob (written/unchanged/error).",
            ["blob", "outcome"],
            registry=self._registry,
        )
        self.cache_purges_total = Counter(
            "cache_purges_total",
            "Edge cache purge attempts.",
            ["outcome"],
            registry=self._registry,
        )

        self._port = port
        self._started = False

    # ---- Server lifecycle ----
    def start_server(self) -> None:
        if not self._started:
            start_http_server(self._port, registry=self._registry)
            self._started = True
            _LOG.info("[monitoring] Prometheus metrics server started on port %s", self._port)

    # ---- Helpers ----
    def track_api_request(self, client: str, status: str) -> None:
        self.api_requests_total.labels(client=client, status=status).inc()

    def track_api_duration(self, client: str, duration: float) -> None:
        self.api_request_duration_seconds.labels(client=client).observe(duration)

    def track_sampling_item(self, *, source_kind: str, outcome: str) -> None:
        self.sampling_items_total.labels(source_kind=source_kind, outcome=outcome).inc()

    def track_sampling_duration(self, duration: float) -> None:
        self.sampling_pass_duration_seconds.observe(duration)

    def track_finalized_item(self, outcome: str) -> None:
        self.finalized_items_total.labels(outcome=outcome).inc()

    def track_snapshot_rebuild(self, *, blob: str, outcome: str) -> None:
        self.snapshot_rebuilds_total.labels(blob=blob, outcome=outcome).inc()

    def track_cache_purge(self, outcome: str) -> None:
        self.cache_purges_total.labels(outcome=outcome).inc()
