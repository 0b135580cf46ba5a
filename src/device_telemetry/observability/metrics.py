"""Prometheus metrics for device collection.

Collectors are created lazily on first use so importing this module
never registers anything. Set ENABLE_COLLECTION_METRICS=false to turn
recording off.
"""
from __future__ import annotations

import logging
import os
from typing import Optional

from prometheus_client import Counter, Histogram, start_http_server

logger = logging.getLogger(__name__)

_DEVICE_COLLECTIONS: Optional[Counter] = None
_DEVICE_DURATION: Optional[Histogram] = None
_METRICS_PERSISTED: Optional[Counter] = None
_INTEGRATION_RUNS: Optional[Counter] = None


def metrics_enabled() -> bool:
    return os.getenv("ENABLE_COLLECTION_METRICS", "true").lower() == "true"


def _get_metrics():
    global _DEVICE_COLLECTIONS, _DEVICE_DURATION, _METRICS_PERSISTED, _INTEGRATION_RUNS
    if _DEVICE_COLLECTIONS is None:
        _DEVICE_COLLECTIONS = Counter(
            "telemetry_device_collections_total",
            "Device collection attempts",
            ["vendor", "outcome"],
        )
        _DEVICE_DURATION = Histogram(
            "telemetry_device_collection_seconds",
            "Vendor response time per device collection",
            ["vendor"],
            buckets=(0.1, 0.25, 0.5, 1, 2, 5, 10, 30, 60, 120),
        )
        _METRICS_PERSISTED = Counter(
            "telemetry_metrics_persisted_total",
            "Metric rows written",
            ["vendor"],
        )
        _INTEGRATION_RUNS = Counter(
            "telemetry_integration_runs_total",
            "Integration collection runs by outcome",
            ["vendor", "status"],
        )
    return _DEVICE_COLLECTIONS, _DEVICE_DURATION, _METRICS_PERSISTED, _INTEGRATION_RUNS


def record_device_collection(vendor: str, success: bool, response_time_ms: int, metrics_written: int = 0) -> None:
    if not metrics_enabled():
        return
    collections, duration, persisted, _ = _get_metrics()
    collections.labels(vendor=vendor, outcome="success" if success else "failure").inc()
    duration.labels(vendor=vendor).observe(response_time_ms / 1000.0)
    if metrics_written:
        persisted.labels(vendor=vendor).inc(metrics_written)


def record_integration_run(vendor: str, status: str) -> None:
    if not metrics_enabled():
        return
    _, _, _, runs = _get_metrics()
    runs.labels(vendor=vendor, status=status).inc()


def start_metrics_server(port: Optional[int] = None) -> bool:
    """Expose /metrics when METRICS_PORT (or port) is set."""
    port = port or int(os.getenv("METRICS_PORT", "0") or 0)
    if not port or not metrics_enabled():
        return False
    start_http_server(port)
    logger.info("Prometheus metrics exposed on port %s", port)
    return True
