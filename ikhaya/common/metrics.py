"""Prometheus metric definitions shared across services."""

from prometheus_client import Counter, Histogram, generate_latest
from starlette.responses import Response


checkout_requests_total = Counter("checkout_requests_total", "Total checkout initiations", ["service"])
checkout_failures_total = Counter(
    "checkout_failures_total",
    "Checkout initiations aborted before redirect",
    ["service", "reason"],
)
checkout_latency_seconds = Histogram("checkout_latency_seconds", "Checkout initiation latency seconds", ["service"])
webhook_notifications_total = Counter(
    "webhook_notifications_total",
    "PayFast notifications received by outcome",
    ["service", "outcome"],
)
duplicate_notifications_total = Counter(
    "duplicate_notifications_total",
    "Notifications acknowledged as idempotent replays",
    ["service"],
)
orders_created_total = Counter("orders_created_total", "Confirmed orders created", ["service", "source"])
order_rollbacks_total = Counter(
    "order_rollbacks_total",
    "Orders removed by compensation after item insert failure",
    ["service"],
)
pending_orders_purged_total = Counter(
    "pending_orders_purged_total",
    "Pending orders removed by the expiry sweep",
    ["service", "reason"],
)
order_creation_seconds = Histogram(
    "order_creation_seconds",
    "Time spent promoting a pending order into a confirmed order",
    ["service", "source"],
)
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["service", "route", "method", "status_code"],
)
http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration seconds",
    ["service", "route", "method"],
)


def metrics_response() -> Response:
    """Expose all registered Prometheus metrics in text format."""

    return Response(content=generate_latest(), media_type="text/plain")
