"""Prometheus metric definitions for the gateway."""

from prometheus_client import Counter, Gauge, Histogram, generate_latest
from starlette.responses import Response


payment_requests_total = Counter("payment_requests_total", "Total payment initiation requests", ["service"])
payment_initiated_total = Counter(
    "payment_initiated_total",
    "Initiations accepted by the provider with a correlation key",
    ["service"],
)
payment_success_total = Counter("payment_success_total", "Total successful payment callbacks", ["service"])
payment_failure_total = Counter("payment_failure_total", "Total failed payment callbacks", ["service"])
payment_latency_seconds = Histogram("payment_latency_seconds", "Payment initiation latency seconds", ["service"])
callbacks_total = Counter(
    "callbacks_total",
    "Provider callbacks by kind and match outcome",
    ["service", "kind", "outcome"],
)
token_acquisitions_total = Counter(
    "token_acquisitions_total",
    "Access tokens handed out by source",
    ["service", "source"],
)
rate_limited_total = Counter("rate_limited_total", "Requests rejected by the attempt limiter", ["service", "action"])
pending_transactions = Gauge("pending_transactions", "Entries currently in the pending hot store", ["service"])
pending_expired_total = Counter("pending_expired_total", "Pending entries removed by expiry", ["service", "path"])
events_flushed_total = Counter("events_flushed_total", "Analytics events delivered to the sink", ["service"])
events_requeued_total = Counter("events_requeued_total", "Analytics events re-queued after a failed flush", ["service"])
events_dropped_total = Counter("events_dropped_total", "Analytics events dropped on a full queue", ["service"])
retries_total = Counter("retries_total", "Retry count", ["service", "dependency"])
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
