"""Prometheus metric definitions for the payments service."""

from prometheus_client import Counter, Gauge, Histogram, generate_latest
from starlette.responses import Response


payment_requests_total = Counter("payment_requests_total", "Total payment requests", ["service"])
payment_success_total = Counter("payment_success_total", "Total successful payments", ["service"])
payment_failure_total = Counter(
    "payment_failure_total",
    "Total failed payments",
    ["service", "reason"],
)
payment_latency_seconds = Histogram("payment_latency_seconds", "Payment latency seconds", ["service"])
processor_attempts_total = Counter(
    "processor_attempts_total",
    "Processor attempts by outcome",
    ["service", "processor", "status"],
)
processor_attempt_seconds = Histogram(
    "processor_attempt_seconds",
    "Duration of a single processor attempt",
    ["service", "processor"],
)
fallbacks_total = Counter(
    "fallbacks_total",
    "Payments that succeeded only after at least one failed processor",
    ["service"],
)
ledger_writes_total = Counter(
    "ledger_writes_total",
    "Ledger upserts by final status",
    ["service", "final_status"],
)
ledger_write_errors_total = Counter("ledger_write_errors_total", "Failed ledger upserts", ["service"])
outbox_pending_total = Gauge(
    "outbox_pending_total",
    "Current count of outbox events not yet sent",
    ["service"],
)
outbox_oldest_pending_age_seconds = Gauge(
    "outbox_oldest_pending_age_seconds",
    "Age in seconds of the oldest pending outbox event",
    ["service"],
)
retries_total = Counter("retries_total", "Retry count", ["service", "dependency"])


def metrics_response() -> Response:
    """Expose all registered Prometheus metrics in text format."""

    return Response(content=generate_latest(), media_type="text/plain")
