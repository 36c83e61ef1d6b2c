"""
Geocoding sub-package.

Interchangeable forward/reverse geocoding providers selected by configuration.
"""

from geoshield.services.geocoding.base import (
    GeocodingProvider,
    LocationOption,
    LocationSource,
)
from geoshield.services.geocoding.factory import create_geocoding_provider, get_geocoding_provider

__all__ = [
    "GeocodingProvider",
    "LocationOption",
    "LocationSource",
    "create_geocoding_provider",
    "get_geocoding_provider",
]
