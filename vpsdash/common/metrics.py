"""Prometheus metric definitions shared across services."""

from time import perf_counter

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
provider_requests_total = Counter(
    "provider_requests_total",
    "Outbound cloud provider / payment gateway calls",
    ["dependency", "operation", "outcome"],
)
provider_latency_seconds = Histogram(
    "provider_latency_seconds",
    "Outbound cloud provider / payment gateway call latency seconds",
    ["dependency", "operation"],
)
server_operations_total = Counter(
    "server_operations_total",
    "Server lifecycle operations by outcome",
    ["service", "operation", "outcome"],
)
webhook_callbacks_total = Counter(
    "webhook_callbacks_total",
    "Payment gateway callbacks by outcome",
    ["service", "outcome"],
)
wallet_credits_total = Counter(
    "wallet_credits_total",
    "Wallet credits applied from deposit callbacks",
    ["service", "kind"],
)
deposits_created_total = Counter("deposits_created_total", "Deposits created", ["service", "currency"])
rate_limited_total = Counter("rate_limited_total", "Requests rejected by rate limiter", ["service"])
duplicate_events_skipped_total = Counter(
    "duplicate_events_skipped_total",
    "Duplicate inbox events skipped",
    ["service", "topic"],
)


def metrics_response() -> Response:
    """Expose all registered Prometheus metrics in text format."""

    return Response(content=generate_latest(), media_type="text/plain")


def install_http_metrics(app, service_name: str) -> None:
    """Record request count and latency for every HTTP call on `app`."""

    @app.middleware("http")
    async def metrics_middleware(request, call_next):
        start = perf_counter()
        route = request.url.path
        method = request.method
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            route_obj = request.scope.get("route")
            if route_obj is not None and getattr(route_obj, "path", None):
                route = route_obj.path
            return response
        finally:
            elapsed = max(0.0, perf_counter() - start)
            http_request_duration_seconds.labels(service=service_name, route=route, method=method).observe(elapsed)
            http_requests_total.labels(
                service=service_name,
                route=route,
                method=method,
                status_code=str(status_code),
            ).inc()
