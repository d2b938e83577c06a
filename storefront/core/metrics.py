from __future__ import annotations

from typing import Any

from prometheus_client import Counter, Histogram, generate_latest
from prometheus_client.exposition import CONTENT_TYPE_LATEST

from storefront.core.config import settings


class _NoOpMetric:
    def labels(self, *args: Any, **kwargs: Any) -> "_NoOpMetric":
        return self

    def observe(self, *_: Any, **__: Any) -> None:
        return None

    def inc(self, *_: Any, **__: Any) -> None:
        return None


def _metric(factory, *args: Any, **kwargs: Any) -> Any:
    if not settings.METRICS_ENABLED:
        return _NoOpMetric()
    return factory(*args, **kwargs)


_NS = settings.METRICS_NAMESPACE

REQUEST_LATENCY = _metric(
    Histogram,
    f"{_NS}_http_request_duration_seconds",
    "HTTP request latency in seconds.",
    ["method", "path", "status_code"],
    buckets=settings.METRICS_LATENCY_BUCKETS,
)

REQUEST_COUNT = _metric(
    Counter,
    f"{_NS}_http_requests_total",
    "Total HTTP requests processed.",
    ["method", "path", "status_code"],
)

REQUEST_ERRORS = _metric(
    Counter,
    f"{_NS}_http_errors_total",
    "Total HTTP requests resulting in 4xx/5xx.",
    ["method", "path", "status_code"],
)

LOGIN_ATTEMPTS = _metric(
    Counter,
    f"{_NS}_auth_login_attempts_total",
    "Authentication attempts partitioned by outcome.",
    ["outcome"],
)

CHECKOUTS = _metric(
    Counter,
    f"{_NS}_checkouts_total",
    "Checkout initiations partitioned by outcome.",
    ["outcome"],
)

RECONCILIATIONS = _metric(
    Counter,
    f"{_NS}_payment_reconciliations_total",
    "Payment reconciliations partitioned by outcome.",
    ["outcome"],
)

ORDER_TRANSITIONS = _metric(
    Counter,
    f"{_NS}_order_transitions_total",
    "Applied order status transitions.",
    ["from_status", "to_status"],
)

GATEWAY_LATENCY = _metric(
    Histogram,
    f"{_NS}_payment_gateway_duration_seconds",
    "Payment gateway call latency in seconds.",
    ["operation", "outcome"],
    buckets=settings.METRICS_LATENCY_BUCKETS,
)


def normalize_path(request) -> str:
    route = request.scope.get("route")
    path = getattr(route, "path", None)
    if path:
        return path
    return request.url.path


def record_request_metrics(request, status_code: int, elapsed: float) -> None:
    labels = (request.method, normalize_path(request), str(status_code))
    REQUEST_COUNT.labels(*labels).inc()
    REQUEST_LATENCY.labels(*labels).observe(elapsed)
    if status_code >= 400:
        REQUEST_ERRORS.labels(*labels).inc()


def record_login_attempt(outcome: str) -> None:
    LOGIN_ATTEMPTS.labels(outcome=outcome).inc()


def record_checkout(outcome: str) -> None:
    CHECKOUTS.labels(outcome=outcome).inc()


def record_reconciliation(outcome: str) -> None:
    RECONCILIATIONS.labels(outcome=outcome).inc()


def record_order_transition(from_status: str, to_status: str) -> None:
    ORDER_TRANSITIONS.labels(from_status=from_status, to_status=to_status).inc()


def record_gateway_call(operation: str, outcome: str, elapsed: float) -> None:
    GATEWAY_LATENCY.labels(operation=operation, outcome=outcome).observe(elapsed)


def export_metrics() -> tuple[bytes, str]:
    if not settings.METRICS_ENABLED:
        return b"", "text/plain; charset=utf-8"
    return generate_latest(), CONTENT_TYPE_LATEST
