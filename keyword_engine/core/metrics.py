"""Prometheus metrics for the application."""

import time

from prometheus_client import Counter, Histogram, Info, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

# --- Metrics ---

APP_INFO = Info("keyword_engine", "Keyword discovery engine info")
APP_INFO.info({"version": "1.0.0", "name": "keyword_engine"})

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

DISCOVERY_JOBS = Counter(
    "discovery_jobs_total",
    "Discovery jobs reaching a terminal state",
    ["status", "reason"],
)

CANDIDATE_RESULTS = Counter(
    "discovery_candidates_total",
    "Per-candidate outcomes inside discovery jobs",
    ["status", "reason"],
)

SERP_FETCHES = Counter(
    "serp_fetches_total",
    "SERP fetch attempts by outcome",
    ["region", "outcome"],
)

SERP_FETCH_DURATION = Histogram(
    "serp_fetch_duration_seconds",
    "SERP fetch latency in seconds",
    ["region"],
    buckets=[0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30],
)

RATE_LIMIT_WAITS = Counter(
    "rate_limit_waits_total",
    "Reservations that were told to wait",
    ["region"],
)

REGION_COOLDOWNS = Counter(
    "region_cooldowns_total",
    "Region-wide cooldowns triggered by blocked fetches",
    ["region"],
)


# --- Middleware ---

# Normalize dynamic path segments to reduce cardinality
_PATH_PREFIXES = ("/api/v1/discovery/jobs/", "/api/v1/keywords/", "/api/v1/apps/")


def _normalize_path(path: str) -> str:
    """Replace ids in paths with {id} to avoid high cardinality."""
    for prefix in _PATH_PREFIXES:
        if path.startswith(prefix):
            rest = path[len(prefix) :]
            parts = rest.split("/", 1)
            if parts[0]:
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
