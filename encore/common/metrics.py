"""Prometheus metric definitions for the notification service."""

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
notifications_scheduled_total = Counter(
    "notifications_scheduled_total",
    "Scheduled notifications accepted from producers",
    ["service"],
)
notification_deliveries_total = Counter(
    "notification_deliveries_total",
    "Delivery job outcomes",
    ["service", "outcome"],
)
duplicate_jobs_skipped_total = Counter(
    "duplicate_jobs_skipped_total",
    "Delivery jobs skipped because the notification was no longer pending",
    ["service"],
)
invalid_tokens_cleared_total = Counter(
    "invalid_tokens_cleared_total",
    "Device tokens cleared after the push gateway rejected them",
    ["service"],
)
retries_total = Counter("retries_total", "Retry count", ["service", "dependency"])
push_gateway_latency_seconds = Histogram(
    "push_gateway_latency_seconds",
    "Push gateway send latency seconds",
    ["service"],
)
notification_schedule_delay_seconds = Histogram(
    "notification_schedule_delay_seconds",
    "Delay seconds between scheduled_at and the delivery attempt",
    ["service"],
)
jobs_recovered_total = Counter(
    "jobs_recovered_total",
    "Queue jobs re-created from pending notifications at startup",
    ["service", "kind"],
)


def metrics_response() -> Response:
    """Expose all registered Prometheus metrics in text format."""

    return Response(content=generate_latest(), media_type="text/plain")
