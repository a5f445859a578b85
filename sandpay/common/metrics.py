"""Prometheus metric definitions for the gateway."""

from prometheus_client import Counter, Histogram, generate_latest
from starlette.responses import Response


sessions_created_total = Counter("sessions_created_total", "Total checkout sessions created", ["service"])
checkout_attempts_total = Counter("checkout_attempts_total", "Total checkout confirmations started", ["service"])
payment_success_total = Counter("payment_success_total", "Total successful payments", ["service", "method"])
payment_failure_total = Counter(
    "payment_failure_total",
    "Total failed payments",
    ["service", "method", "reason"],
)
checkout_latency_seconds = Histogram(
    "checkout_latency_seconds",
    "Checkout confirmation latency seconds",
    ["service"],
)
fraud_flags_total = Counter("fraud_flags_total", "Fraud flags raised", ["service", "reason"])
auth_failures_total = Counter("auth_failures_total", "Rejected API-key authentications", ["service", "code"])
webhook_events_total = Counter("webhook_events_total", "Webhook events recorded", ["service", "type"])
webhook_deliveries_total = Counter(
    "webhook_deliveries_total",
    "Webhook delivery attempts by outcome",
    ["service", "outcome"],
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
