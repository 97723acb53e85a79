"""Prometheus metric definitions for the API process."""

from prometheus_client import Counter, Histogram, generate_latest
from starlette.responses import Response


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
handler_outcomes_total = Counter(
    "handler_outcomes_total",
    "Terminal request handler outcomes (success, validation_failure, fatal)",
    ["handler", "outcome"],
)
collaborator_call_seconds = Histogram(
    "collaborator_call_seconds",
    "Duration of the single collaborator call made by a request handler",
    ["handler"],
)
webhook_events_total = Counter(
    "webhook_events_total",
    "Verified Stripe webhook events by type and whether an order was updated",
    ["event_type", "applied"],
)


def metrics_response() -> Response:
    """Expose all registered Prometheus metrics in text format."""

    return Response(content=generate_latest(), media_type="text/plain")
