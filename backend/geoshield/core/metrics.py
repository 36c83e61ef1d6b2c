"""
Prometheus metrics for observability.

Exposes metrics for:
- HTTP request latency and counts
- Location search outcomes (allowed, rate limited, suspicious)
- Geocoding provider calls
- Cache hit rates
- Dependency health
"""

import time

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
)
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from geoshield.core.config import settings

# ============================================================
# HTTP Metrics
# ============================================================

HTTP_REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint", "status_code"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

HTTP_REQUEST_TOTAL = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)

HTTP_REQUEST_IN_PROGRESS = Gauge(
    "http_requests_in_progress",
    "HTTP requests currently in progress",
    ["method", "endpoint"],
)


# ============================================================
# Location Security Metrics
# ============================================================

LOCATION_SEARCHES_TOTAL = Counter(
    "location_searches_total",
    "Location search authorization outcomes",
    ["search_type", "outcome"],
)

LOCATION_SEARCH_RESULTS = Histogram(
    "location_search_results",
    "Number of items returned per proximity search",
    ["search_type"],
    buckets=[0, 1, 5, 10, 25, 50, 100],
)


# ============================================================
# Geocoding Metrics
# ============================================================

GEOCODING_REQUEST_DURATION = Histogram(
    "geocoding_request_duration_seconds",
    "Geocoding provider request duration",
    ["provider", "operation"],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0],
)

GEOCODING_REQUESTS_TOTAL = Counter(
    "geocoding_requests_total",
    "Total geocoding provider requests",
    ["provider", "operation", "status"],
)


# ============================================================
# Cache Metrics
# ============================================================

CACHE_HITS = Counter(
    "cache_hits_total",
    "Cache hits",
    ["cache_type"],
)

CACHE_MISSES = Counter(
    "cache_misses_total",
    "Cache misses",
    ["cache_type"],
)


# ============================================================
# Service Health
# ============================================================

SERVICE_HEALTH = Gauge(
    "service_health",
    "Dependency health (1=healthy, 0=unhealthy)",
    ["service"],
)


# ============================================================
# Application Info
# ============================================================

APP_INFO = Info(
    "app",
    "Application information",
)
APP_INFO.info(
    {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
    }
)


# ============================================================
# Middleware
# ============================================================


class PrometheusMiddleware(BaseHTTPMiddleware):
    """
    Middleware to collect HTTP request metrics.

    Tracks:
    - Request duration
    - Request count by endpoint and status
    - In-progress requests
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        if request.url.path == settings.METRICS_PATH:
            return await call_next(request)

        method = request.method
        endpoint = self._normalize_path(request.url.path)

        HTTP_REQUEST_IN_PROGRESS.labels(method=method, endpoint=endpoint).inc()

        start_time = time.perf_counter()
        status_code = "500"
        try:
            response = await call_next(request)
            status_code = str(response.status_code)
        finally:
            duration = time.perf_counter() - start_time

            HTTP_REQUEST_DURATION.labels(
                method=method,
                endpoint=endpoint,
                status_code=status_code,
            ).observe(duration)

            HTTP_REQUEST_TOTAL.labels(
                method=method,
                endpoint=endpoint,
                status_code=status_code,
            ).inc()

            HTTP_REQUEST_IN_PROGRESS.labels(method=method, endpoint=endpoint).dec()

        return response

    def _normalize_path(self, path: str) -> str:
        """
        Normalize path by replacing dynamic segments with placeholders.

        /api/v1/locations/nearby/3f2a...-... -> /api/v1/locations/nearby/{id}
        """
        parts = [p for p in path.split("/") if p]
        normalized = ["{id}" if self._is_id(p) else p for p in parts]
        return "/" + "/".join(normalized) if normalized else "/"

    def _is_id(self, part: str) -> bool:
        """Check if path part is likely an ID."""
        if len(part) == 36 and part.count("-") == 4:
            return True
        return part.isdigit()


# ============================================================
# Helper Functions
# ============================================================


def track_location_search(search_type: str, outcome: str) -> None:
    """Record a location search decision (allowed, rate_limited, suspicious, ...)."""
    LOCATION_SEARCHES_TOTAL.labels(search_type=search_type, outcome=outcome).inc()


def track_geocoding_request(provider: str, operation: str, status: str, duration: float) -> None:
    """Record one geocoding provider call."""
    GEOCODING_REQUESTS_TOTAL.labels(provider=provider, operation=operation, status=status).inc()
    GEOCODING_REQUEST_DURATION.labels(provider=provider, operation=operation).observe(duration)


def track_cache(cache_type: str, hit: bool):
    """Record cache hit or miss."""
    if hit:
        CACHE_HITS.labels(cache_type=cache_type).inc()
    else:
        CACHE_MISSES.labels(cache_type=cache_type).inc()


def update_service_health(service: str, healthy: bool):
    """Update dependency health status."""
    SERVICE_HEALTH.labels(service=service).set(1 if healthy else 0)


# ============================================================
# Metrics Endpoint
# ============================================================


async def metrics_endpoint(request: Request) -> Response:
    """
    Prometheus metrics endpoint.

    Returns metrics in Prometheus text format.
    """
    return Response(
        content=generate_latest(REGISTRY),
        media_type=CONTENT_TYPE_LATEST,
    )
