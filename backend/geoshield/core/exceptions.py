"""
Standardized exception handling for the location API.

Provides consistent error responses across all endpoints with:
- Unique error codes for client-side handling
- Request tracking via request_id
- HTTP status code alignment
"""
import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import uuid4

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

logger = logging.getLogger(__name__)


class ErrorDetail(BaseModel):
    """Standardized error response format."""
    code: str
    message: str
    status_code: int
    timestamp: str
    request_id: Optional[str] = None
    details: Optional[Dict[str, Any]] = None


class ErrorResponse(BaseModel):
    """Wrapper for error responses."""
    error: ErrorDetail


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).replace(tzinfo=None).isoformat() + "Z"


# =============================================================================
# Base Exception Classes
# =============================================================================

class AppException(Exception):
    """Base exception for all application errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_code: str = "INTERNAL_ERROR"
    message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None,
    ):
        self.message = message or self.message
        self.details = details
        if error_code:
            self.error_code = error_code
        super().__init__(self.message)

    def to_response(self, request_id: Optional[str] = None) -> ErrorResponse:
        """Convert exception to standardized error response."""
        return ErrorResponse(
            error=ErrorDetail(
                code=self.error_code,
                message=self.message,
                status_code=self.status_code,
                timestamp=_utc_timestamp(),
                request_id=request_id,
                details=self.details,
            )
        )


# =============================================================================
# Client Errors (4xx)
# =============================================================================

class ValidationException(AppException):
    """Invalid input data."""
    status_code = status.HTTP_400_BAD_REQUEST
    error_code = "VALIDATION_ERROR"
    message = "Invalid input data"


class NotFoundException(AppException):
    """Resource not found."""
    status_code = status.HTTP_404_NOT_FOUND
    error_code = "NOT_FOUND"
    message = "Resource not found"


class RateLimitException(AppException):
    """Rate limit exceeded."""
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    error_code = "RATE_LIMIT_EXCEEDED"
    message = "Rate limit exceeded. Please retry later."


# =============================================================================
# Location-Specific Exceptions
# =============================================================================

def _json_safe(value: Any) -> Any:
    """NaN and infinity cannot be rendered in a JSON error body."""
    if isinstance(value, float) and not math.isfinite(value):
        return str(value)
    return value


class InvalidLocationException(ValidationException):
    """Coordinates outside the valid latitude/longitude range."""
    error_code = "INVALID_LOCATION"
    message = "Invalid coordinates"

    def __init__(self, latitude: Any, longitude: Any):
        super().__init__(
            message=(
                f"Invalid coordinates ({latitude}, {longitude}): latitude must be "
                "between -90 and 90 and longitude between -180 and 180"
            ),
            details={"latitude": _json_safe(latitude), "longitude": _json_safe(longitude)},
        )


class InvalidRadiusException(ValidationException):
    """Search radius outside the accepted range."""
    error_code = "INVALID_RADIUS"
    message = "Invalid search radius"

    def __init__(self, radius_km: float, max_radius_km: float):
        super().__init__(
            message=f"Search radius must be greater than 0 and at most {max_radius_km} km",
            details={"radius_km": _json_safe(radius_km), "max_radius_km": max_radius_km},
        )


class LocationRateLimitException(RateLimitException):
    """Too many location searches for this user or target."""
    error_code = "LOCATION_RATE_LIMIT_EXCEEDED"
    message = "Too many location searches. Please try again later."


class SuspiciousSearchPatternException(AppException):
    """
    Search refused by abuse detection.

    The message is deliberately generic and carries no details.
    """
    status_code = status.HTTP_400_BAD_REQUEST
    error_code = "SEARCH_REJECTED"
    message = "Unable to complete this search"

    def __init__(self):
        super().__init__()


# =============================================================================
# External Service / Store Exceptions (5xx)
# =============================================================================

class ExternalServiceException(AppException):
    """External service error."""
    status_code = status.HTTP_502_BAD_GATEWAY
    error_code = "EXTERNAL_SERVICE_ERROR"
    message = "External service unavailable"


class GeocodingProviderException(ExternalServiceException):
    """Geocoding provider failed (network, auth or malformed response)."""
    error_code = "GEOCODING_PROVIDER_ERROR"
    message = "Geocoding provider unavailable"

    def __init__(self, provider: str, message: Optional[str] = None):
        self.provider = provider
        super().__init__(
            message=message or f"Geocoding provider '{provider}' unavailable",
            details={"provider": provider},
        )


class SearchStoreException(AppException):
    """Audit log or item store I/O failure."""
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    error_code = "SEARCH_STORE_UNAVAILABLE"
    message = "Location search is temporarily unavailable"


# =============================================================================
# Configuration Exception
# =============================================================================

class ConfigurationException(AppException):
    """Configuration error - should fail at startup."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_code = "CONFIGURATION_ERROR"
    message = "Application configuration error"


# =============================================================================
# Exception Handler Registration
# =============================================================================

def get_request_id(request: Request) -> str:
    """Extract or generate request ID."""
    return getattr(request.state, "request_id", None) or str(uuid4())


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handle all application exceptions with standardized format."""
    request_id = get_request_id(request)
    response = exc.to_response(request_id=request_id)

    return JSONResponse(
        status_code=exc.status_code,
        content=response.model_dump(),
        headers={"X-Request-ID": request_id},
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    request_id = get_request_id(request)

    logger.exception(f"Unhandled exception: {exc}", extra={"request_id": request_id})

    error = ErrorResponse(
        error=ErrorDetail(
            code="INTERNAL_ERROR",
            message="An unexpected error occurred",
            status_code=500,
            timestamp=_utc_timestamp(),
            request_id=request_id,
        )
    )

    return JSONResponse(
        status_code=500,
        content=error.model_dump(),
        headers={"X-Request-ID": request_id},
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI app."""
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
