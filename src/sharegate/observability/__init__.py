"""Observability infrastructure for sharegate.

Structured logging with secret scrubbing, Prometheus metrics, and
request-ID correlation middleware.

Quick start::

    from sharegate.observability import configure_logging, get_logger
    from sharegate.observability.middleware import (
        MetricsMiddleware,
        RequestIdMiddleware,
        RequestLoggingMiddleware,
    )

    configure_logging()
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIdMiddleware)
"""

from .logging import configure_logging, get_logger, redact_token, request_id_ctx
from .metrics import metrics_text

__all__ = [
    'configure_logging',
    'get_logger',
    'metrics_text',
    'redact_token',
    'request_id_ctx',
]
