"""Prometheus metric definitions shared across FitPay components."""

from prometheus_client import Counter, Histogram, generate_latest
from starlette.responses import Response


gateway_requests_total = Counter(
    "gateway_requests_total",
    "Outbound gateway calls by operation and outcome",
    ["operation", "outcome"],
)
gateway_request_duration_seconds = Histogram(
    "gateway_request_duration_seconds",
    "Gateway call duration seconds including retries",
    ["operation"],
)
retries_total = Counter("retries_total", "Retry count", ["service", "dependency"])
rate_limited_total = Counter("rate_limited_total", "Gateway calls rejected by the local rate limiter", ["service"])
idempotency_hits_total = Counter(
    "idempotency_hits_total",
    "Gateway operations answered from the idempotency cache",
    ["operation"],
)
audit_write_failures_total = Counter(
    "audit_write_failures_total",
    "Best-effort audit/log writes that failed and were swallowed",
    ["target"],
)
purchase_requests_total = Counter("purchase_requests_total", "Total subscription purchases started", ["service"])
purchase_success_total = Counter("purchase_success_total", "Total completed subscription purchases", ["service"])
purchase_failure_total = Counter(
    "purchase_failure_total",
    "Total failed subscription purchases",
    ["service", "error_kind"],
)
purchase_latency_seconds = Histogram("purchase_latency_seconds", "Purchase saga latency seconds", ["service"])
sessions_expired_total = Counter("sessions_expired_total", "Payment sessions moved to EXPIRED", ["service"])
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
