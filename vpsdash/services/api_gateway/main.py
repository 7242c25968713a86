"""Public entrypoint for the dashboard backend.

Checks the API key and the caller id, applies a per-user fixed-window rate
limit in Redis, then forwards to the owning service with identity and trace
headers. The payment gateway callback bypasses all of that and is forwarded
byte-for-byte, since its signature covers the raw body.
"""

import hmac
from uuid import uuid4

import httpx
import redis
from fastapi import FastAPI, Header, Request
from fastapi.responses import Response

from vpsdash.common.config import settings
from vpsdash.common.errors import (
    AuthenticationError,
    NotFoundError,
    ProviderError,
    RateLimited,
    register_error_handlers,
)
from vpsdash.common.logging import configure_logging, logger, trace_id_ctx, user_id_ctx
from vpsdash.common.metrics import install_http_metrics, metrics_response, rate_limited_total
from vpsdash.common.ratelimit import FixedWindowRateLimiter
from vpsdash.common.startup import log_startup_config
from vpsdash.common.tracing import instrument_app, setup_tracing

configure_logging()
setup_tracing(settings.service_name)
log_startup_config(
    settings.service_name,
    [
        "SERVICE_NAME",
        "SERVERS_URL",
        "PAYMENTS_URL",
        "REDIS_URL",
        "RATE_LIMIT_PER_MINUTE",
        "API_KEY",
        "ADMIN_API_KEY",
    ],
)
app = FastAPI(title="vpsdash API Gateway")
instrument_app(app)
install_http_metrics(app, settings.service_name)
register_error_handlers(app)
rdb = redis.Redis.from_url(settings.redis_url, decode_responses=True)
limiter = FixedWindowRateLimiter(rdb, limit=settings.rate_limit_per_minute, window_seconds=60)

PROXY_TIMEOUT_SECONDS = 60.0
CALLBACK_PATH = "/deposits/callback"
SIGNATURE_HEADER = "x-nowpayments-sig"
FORWARDED_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE"]


def upstream_for(path: str) -> str | None:
    """Base URL of the service owning `path`."""

    if path.startswith(("/servers", "/admin/servers", "/health/provider")):
        return settings.servers_url
    if path.startswith(("/deposits", "/wallet", "/admin/wallets")):
        return settings.payments_url
    return None


def enforce_api_key(x_api_key: str | None) -> str:
    """Return the caller role granted by `x_api_key`; reject unknown keys.

    The role is never taken from client headers.
    """

    if not x_api_key:
        raise AuthenticationError("invalid API key")
    if settings.admin_api_key and hmac.compare_digest(x_api_key.encode(), settings.admin_api_key.encode()):
        return "admin"
    if hmac.compare_digest(x_api_key.encode(), settings.api_key.encode()):
        return "user"
    raise AuthenticationError("invalid API key")


def enforce_rate_limit(user_id: str) -> None:
    if not limiter.hit(f"user:{user_id}"):
        rate_limited_total.labels(service=settings.service_name).inc()
        raise RateLimited("rate limit exceeded")


async def _forward(method: str, url: str, headers: dict, content: bytes, params=None) -> Response:
    try:
        async with httpx.AsyncClient(timeout=PROXY_TIMEOUT_SECONDS) as client:
            upstream = await client.request(method, url, headers=headers, content=content, params=params)
    except httpx.HTTPError as exc:
        logger.error("upstream unreachable url=%s error=%s", url, exc)
        raise ProviderError("Upstream service unavailable", retryable=True) from exc
    return Response(
        content=upstream.content,
        status_code=upstream.status_code,
        media_type=upstream.headers.get("content-type"),
    )


@app.get("/metrics")
def metrics():
    """Prometheus scrape endpoint."""

    return metrics_response()


@app.get("/health")
def health():
    """Container health check endpoint."""

    return {"ok": True}


@app.post(CALLBACK_PATH)
async def deposit_callback(request: Request):
    """Payment gateway IPN; authenticated downstream by signature only."""

    headers = {"content-type": request.headers.get("content-type", "application/json")}
    signature = request.headers.get(SIGNATURE_HEADER)
    if signature is not None:
        headers[SIGNATURE_HEADER] = signature
    return await _forward("POST", f"{settings.payments_url}{CALLBACK_PATH}", headers, await request.body())


@app.api_route("/{path:path}", methods=FORWARDED_METHODS)
async def proxy(
    path: str,
    request: Request,
    x_api_key: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
    x_correlation_id: str | None = Header(default=None),
):
    """Authenticate, rate limit and forward one dashboard request."""

    role = enforce_api_key(x_api_key)
    if not x_user_id:
        raise AuthenticationError("missing x-user-id")
    trace_id = x_correlation_id or str(uuid4())
    trace_id_ctx.set(trace_id)
    user_id_ctx.set(x_user_id)
    enforce_rate_limit(x_user_id)

    route = f"/{path}"
    base_url = upstream_for(route)
    if base_url is None:
        raise NotFoundError("Not found")

    headers = {
        "x-user-id": x_user_id,
        "x-user-role": role,
        "x-trace-id": trace_id,
        "content-type": request.headers.get("content-type", "application/json"),
    }
    return await _forward(
        request.method, f"{base_url}{route}", headers, await request.body(), params=request.query_params
    )
