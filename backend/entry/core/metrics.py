# Centralized Prometheus metrics. Middleware below records timing
# and counts for every request; the domain counters are bumped by
# the order, payment, email and rep services.

from time import monotonic

from fastapi import Request
from prometheus_client import Counter, Histogram
from starlette.middleware.base import BaseHTTPMiddleware


REQUEST_DURATION_MS = Histogram(
    "request_duration_ms",
    "API request duration in milliseconds",
    ["method", "route"],
    buckets=[5, 10, 25, 50, 100, 250, 500, 1000, 2000, 5000, 10000],
)
REQUESTS_TOTAL = Counter(
    "requests_total",
    "Total API requests",
    ["method", "route", "status_code"],
)

# Orders by how they were created (stripe, test, free, manual).
ORDERS_CREATED_TOTAL = Counter(
    "orders_created_total",
    "Orders created",
    ["payment_method"],
)
ORDER_NUMBER_RETRIES_TOTAL = Counter(
    "order_number_retries_total",
    "Order number unique collisions that forced a retry",
)
REFUNDS_TOTAL = Counter(
    "refunds_total",
    "Orders refunded",
    ["payment_method"],
)
TICKET_SCANS_TOTAL = Counter(
    "ticket_scans_total",
    "Ticket scan attempts",
    ["outcome"],
)

PAYMENT_EVENTS_TOTAL = Counter(
    "payment_events_total",
    "Payment monitor events",
    ["type", "severity"],
)
WEBHOOK_EVENTS_TOTAL = Counter(
    "stripe_webhook_events_total",
    "Stripe webhook deliveries",
    ["event_type", "outcome"],
)

EMAILS_TOTAL = Counter(
    "emails_total",
    "Transactional emails",
    ["template", "status"],
)

REP_POINTS_AWARDED_TOTAL = Counter(
    "rep_points_awarded_total",
    "Rep points granted (negative adjustments excluded)",
    ["source_type"],
)

RATE_LIMIT_BLOCKS_TOTAL = Counter(
    "rate_limit_blocks_total",
    "Requests rejected by a rate limiter",
    ["limiter"],
)

JOB_RUNS_TOTAL = Counter(
    "job_runs_total",
    "Scheduled job executions",
    ["job", "outcome"],
)


def record_job_run(*, job_name: str, success: bool) -> None:
    JOB_RUNS_TOTAL.labels(job_name, "success" if success else "failure").inc()


class MetricsMiddleware(BaseHTTPMiddleware):
    # Wraps every request to capture latency and a labeled count.
    async def dispatch(self, request: Request, call_next):
        start = monotonic()
        response = await call_next(request)
        duration_ms = (monotonic() - start) * 1000.0

        route = request.scope.get("route")
        route_path = getattr(route, "path", None) or request.url.path
        REQUEST_DURATION_MS.labels(request.method, route_path).observe(duration_ms)
        REQUESTS_TOTAL.labels(request.method, route_path, str(response.status_code)).inc()
        return response
