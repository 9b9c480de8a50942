"""Prometheus metrics for sharegate.

Counters cover the engine's decisions (access outcomes, recorded downloads,
approval transitions) plus collaborator failures that are swallowed by the
best-effort paths. HTTP metric names match the fleet-wide http_server_*
series.

Usage::

    from sharegate.observability.metrics import ACCESS_DECISIONS_TOTAL

    ACCESS_DECISIONS_TOTAL.labels(result='OK').inc()
"""

from __future__ import annotations

from prometheus_client import (
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
    CONTENT_TYPE_LATEST,
)

# ---------------------------------------------------------------------------
# HTTP request metrics
# ---------------------------------------------------------------------------

HTTP_REQUESTS_TOTAL = Counter(
    'http_server_requests_total',
    'Total HTTP requests by method, path pattern, and status code.',
    labelnames=['method', 'path', 'status'],
    registry=REGISTRY,
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    'http_server_request_duration_seconds',
    'HTTP request latency in seconds.',
    labelnames=['method', 'path'],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
    registry=REGISTRY,
)

HTTP_REQUESTS_IN_FLIGHT = Gauge(
    'http_server_requests_in_flight',
    'Number of HTTP requests currently being processed.',
    registry=REGISTRY,
)

# ---------------------------------------------------------------------------
# Transfer lifecycle
# ---------------------------------------------------------------------------

TRANSFERS_CREATED_TOTAL = Counter(
    'sharegate_transfers_created_total',
    'Transfers successfully created.',
    registry=REGISTRY,
)

TRANSFERS_REVOKED_TOTAL = Counter(
    'sharegate_transfers_revoked_total',
    'Transfers moved from ACTIVE to REVOKED (idempotent repeats excluded).',
    registry=REGISTRY,
)

TRANSFERS_EXPIRED_MARKED_TOTAL = Counter(
    'sharegate_transfers_expired_marked_total',
    'Transfers marked EXPIRED by the advisory sweep.',
    registry=REGISTRY,
)

EXPIRY_SWEEP_FAILURES_TOTAL = Counter(
    'sharegate_expiry_sweep_failures_total',
    'Expiry sweep runs that failed; the loop keeps going.',
    registry=REGISTRY,
)

# ---------------------------------------------------------------------------
# Access and downloads
# ---------------------------------------------------------------------------

ACCESS_DECISIONS_TOTAL = Counter(
    'sharegate_access_decisions_total',
    'Access evaluations by result kind.',
    labelnames=['result'],
    registry=REGISTRY,
)

DOWNLOADS_RECORDED_TOTAL = Counter(
    'sharegate_downloads_recorded_total',
    'Downloads counted against a transfer, by tracking mode.',
    labelnames=['tracking'],
    registry=REGISTRY,
)

# ---------------------------------------------------------------------------
# Approvals
# ---------------------------------------------------------------------------

APPROVAL_DECISIONS_TOTAL = Counter(
    'sharegate_approval_decisions_total',
    'Owner decisions on approval requests; applied=false for no-op repeats.',
    labelnames=['outcome', 'applied'],
    registry=REGISTRY,
)

# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------

COLLABORATOR_FAILURES_TOTAL = Counter(
    'sharegate_collaborator_failures_total',
    'Best-effort collaborator failures that did not fail the operation.',
    labelnames=['collaborator'],
    registry=REGISTRY,
)


def metrics_text() -> tuple[bytes, str]:
    """Generate Prometheus exposition text and content-type header."""
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST
