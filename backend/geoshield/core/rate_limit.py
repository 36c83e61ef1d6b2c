"""
Rate limiting configuration for API endpoints.

Uses slowapi for request throttling based on client IP or user ID.
This is the only per-caller throttle anonymous traffic gets; identified
users are additionally limited by the audit-log based location security
checks.
"""

import re

from fastapi import Request
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.responses import JSONResponse

from geoshield.core.config import settings


def get_rate_limit_key(request: Request) -> str:
    """
    Get rate limit key from request.

    Uses authenticated user ID if available, otherwise client IP.
    """
    user = getattr(request.state, "user", None)
    if user is not None:
        return f"user:{getattr(user, 'id', user)}"

    return get_remote_address(request)


limiter = Limiter(
    key_func=get_rate_limit_key,
    default_limits=[settings.RATE_LIMIT_DEFAULT],
    storage_uri=settings.RATE_LIMIT_STORAGE_URI,
    strategy="fixed-window",
    enabled=settings.RATE_LIMIT_ENABLED,
)


class RateLimits:
    """Rate limit presets for different endpoint types."""

    # Geocoding endpoints - upstream providers have their own quotas
    GEOCODE_SEARCH = "30/minute"
    GEOCODE_REVERSE = "30/minute"
    SUGGESTIONS = "60/minute"
    POPULAR = "60/minute"

    # Proximity endpoints - distance revealing
    NEARBY_SEARCH = "20/minute"

    # Pure computation
    CLUSTERS = "30/minute"
    DISTANCE = "60/minute"

    HEALTH = "60/minute"


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """
    Custom handler for rate limit exceeded errors.

    Returns a JSON response with retry information.
    """
    retry_after = 60
    if getattr(exc, "detail", None):
        match = re.search(r"(\d+)\s*second", str(exc.detail))
        if match:
            retry_after = int(match.group(1))
        elif "minute" in str(exc.detail):
            retry_after = 60
        elif "hour" in str(exc.detail):
            retry_after = 3600

    return JSONResponse(
        status_code=429,
        content={
            "detail": "Rate limit exceeded",
            "message": str(exc.detail) if exc.detail else "Too many requests",
            "retry_after_seconds": retry_after,
        },
        headers={"Retry-After": str(retry_after)},
    )
