"""Factory for geocoding providers."""

import logging
from functools import lru_cache
from typing import Optional

from geoshield.core.config import settings
from geoshield.core.exceptions import ConfigurationException
from geoshield.services.geocoding.base import GeocodingProvider
from geoshield.services.geocoding.here_provider import HereProvider
from geoshield.services.geocoding.mock_provider import MockGeocodingProvider
from geoshield.services.geocoding.nominatim_provider import OpenStreetMapProvider

logger = logging.getLogger(__name__)

PROVIDERS = {
    "openstreetmap": OpenStreetMapProvider,
    "nominatim": OpenStreetMapProvider,
    "here": HereProvider,
    "mock": MockGeocodingProvider,
}


def create_geocoding_provider(provider_override: Optional[str] = None) -> GeocodingProvider:
    name = (provider_override or settings.GEOCODING_PROVIDER or "openstreetmap").lower()
    provider_cls = PROVIDERS.get(name)
    if provider_cls is None:
        raise ConfigurationException(
            message=f"Unknown geocoding provider '{name}'",
            details={"provider": name, "available": sorted(PROVIDERS)},
        )
    provider = provider_cls()
    logger.info(f"Geocoding provider: {provider.provider_name}")
    return provider


@lru_cache()
def get_geocoding_provider() -> GeocodingProvider:
    """Process-wide provider; Nominatim request spacing is per instance."""
    return create_geocoding_provider()
