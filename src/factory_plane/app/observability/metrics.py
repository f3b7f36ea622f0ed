"""Prometheus metrics for the platform factory.

Counters are registered on the default global registry so the built-in
process collectors are exported alongside them from ``/metrics``.

Usage::

    from factory_plane.app.observability.metrics import PROVISION_TRANSITIONS_TOTAL

    PROVISION_TRANSITIONS_TOTAL.labels(state="SUPABASE_READY").inc()
"""

from __future__ import annotations

from prometheus_client import (
    REGISTRY,
    Counter,
    Histogram,
    generate_latest,
    CONTENT_TYPE_LATEST,
)

# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------

HTTP_REQUESTS_TOTAL = Counter(
    "factory_http_requests_total",
    "HTTP requests by method, path and status code.",
    labelnames=["method", "path", "status"],
    registry=REGISTRY,
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "factory_http_request_duration_seconds",
    "HTTP request latency in seconds.",
    labelnames=["method", "path"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
    registry=REGISTRY,
)

# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

PROVISION_TRANSITIONS_TOTAL = Counter(
    "factory_provision_transitions_total",
    "Provision runs entering each state.",
    labelnames=["state"],
    registry=REGISTRY,
)

PROVISION_RETRIES_TOTAL = Counter(
    "factory_provision_retries_total",
    "Transient failures retried, by external system.",
    labelnames=["system"],
    registry=REGISTRY,
)

PROVISION_FAILURES_TOTAL = Counter(
    "factory_provision_failures_total",
    "Runs moved to FAILED, by failing state and error code.",
    labelnames=["state", "error_code"],
    registry=REGISTRY,
)

# ---------------------------------------------------------------------------
# Alerting
# ---------------------------------------------------------------------------

ALERTS_SENT_TOTAL = Counter(
    "factory_alerts_sent_total",
    "Alert delivery attempts by channel and outcome (sent, error, skipped).",
    labelnames=["channel", "outcome"],
    registry=REGISTRY,
)


def metrics_text() -> tuple[bytes, str]:
    """Generate Prometheus exposition text and content-type header."""
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST
