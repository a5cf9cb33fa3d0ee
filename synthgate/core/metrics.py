"""Prometheus metrics for the application."""

import time

from prometheus_client import Counter, Gauge, Histogram, Info, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

# --- Metrics ---

APP_INFO = Info("synthgate", "Generation gateway info")
APP_INFO.info({"version": "0.1.0", "name": "synthgate"})

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30],
)

PROVIDER_CALLS = Counter(
    "provider_calls_total",
    "Provider call attempts by outcome",
    ["kind", "outcome"],
)

CACHE_LOOKUPS = Counter(
    "cache_lookups_total",
    "Response cache lookups",
    ["tier", "result"],
)

RETRY_WAIT = Histogram(
    "retry_wait_seconds",
    "Time spent waiting before a retry",
    ["error_class"],
    buckets=[0.1, 0.5, 1, 2, 5, 10, 20, 30, 60, 120],
)

ADAPTIVE_DELAY = Gauge(
    "throttle_adaptive_delay_seconds",
    "Current adaptive inter-call delay",
)

CREDENTIALS_AVAILABLE = Gauge(
    "credentials_available",
    "Credentials not currently cooling down",
)


# --- Middleware ---

_PATH_PREFIXES = ("/api/v1/gateway/credentials/",)


def _normalize_path(path: str) -> str:
    """Replace credential ids in paths with {id} to avoid high cardinality."""
    for prefix in _PATH_PREFIXES:
        if path.startswith(prefix):
            rest = path[len(prefix) :]
            parts = rest.split("/", 1)
            tail = f"/{parts[1]}" if len(parts) > 1 else ""
            return f"{prefix}{{id}}{tail}"
    return path


class PrometheusMiddleware(BaseHTTPMiddleware):
    """Collect HTTP request metrics for Prometheus."""

    async def dispatch(self, request: Request, call_next) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        method = request.method
        path = _normalize_path(request.url.path)

        start = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start

        REQUEST_COUNT.labels(method=method, path=path, status=response.status_code).inc()
        REQUEST_DURATION.labels(method=method, path=path).observe(duration)

        return response


def metrics_response() -> Response:
    """Generate Prometheus /metrics response."""
    return Response(
        content=generate_latest(),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
