"""
Shared Pydantic validators for coordinate inputs.
"""

import math
from typing import Annotated, Any

from pydantic import BeforeValidator, Field


def _finite_float(v: Any, name: str) -> float:
    if v is None:
        raise ValueError(f"{name} is required")

    try:
        value = float(v)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid {name.lower()} value: {v}")

    if not math.isfinite(value):
        raise ValueError(f"{name} must be a finite number, got {v}")
    return value


def validate_latitude(v: Any) -> float:
    """
    Validate latitude value.

    Latitude must be between -90 and 90 degrees.
    """
    lat = _finite_float(v, "Latitude")
    if lat < -90 or lat > 90:
        raise ValueError(f"Latitude must be between -90 and 90, got {lat}")
    return lat


def validate_longitude(v: Any) -> float:
    """
    Validate longitude value.

    Longitude must be between -180 and 180 degrees.
    """
    lng = _finite_float(v, "Longitude")
    if lng < -180 or lng > 180:
        raise ValueError(f"Longitude must be between -180 and 180, got {lng}")
    return lng


def validate_latitude_optional(v: Any) -> float | None:
    """Validate optional latitude value."""
    if v is None:
        return None
    return validate_latitude(v)


def validate_longitude_optional(v: Any) -> float | None:
    """Validate optional longitude value."""
    if v is None:
        return None
    return validate_longitude(v)


# Annotated types for use in Pydantic models
Latitude = Annotated[
    float,
    BeforeValidator(validate_latitude),
    Field(ge=-90, le=90, description="Latitude in degrees (-90 to 90)"),
]

Longitude = Annotated[
    float,
    BeforeValidator(validate_longitude),
    Field(ge=-180, le=180, description="Longitude in degrees (-180 to 180)"),
]

LatitudeOptional = Annotated[
    float | None,
    BeforeValidator(validate_latitude_optional),
    Field(default=None, description="Optional latitude in degrees"),
]

LongitudeOptional = Annotated[
    float | None,
    BeforeValidator(validate_longitude_optional),
    Field(default=None, description="Optional longitude in degrees"),
]
