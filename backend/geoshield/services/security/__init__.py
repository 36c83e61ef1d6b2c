"""
Security sub-package.

Contains the location security services:
- Privacy transforms (quantization, jitter, distance fuzzing and bands)
- Rate limiting and triangulation detection
- Search audit logging
"""

from geoshield.services.security.engine import LocationSecurityEngine
from geoshield.services.security.privacy import (
    Coordinate,
    DistanceBand,
    LocationBounds,
    band_text,
    bounding_box,
    distance_band_of,
    fuzzed_distance,
    great_circle_distance,
    jittered_location,
    quantize,
)

__all__ = [
    # Engine
    "LocationSecurityEngine",
    # Types
    "Coordinate",
    "DistanceBand",
    "LocationBounds",
    # Transforms
    "band_text",
    "bounding_box",
    "distance_band_of",
    "fuzzed_distance",
    "great_circle_distance",
    "jittered_location",
    "quantize",
]
