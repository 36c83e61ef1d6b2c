"""Provider-agnostic geocoding interfaces."""

import enum
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field

from geoshield.core.config import settings
from geoshield.core.exceptions import GeocodingProviderException
from geoshield.core.metrics import track_geocoding_request
from geoshield.services.security.privacy import Coordinate, LocationBounds

logger = logging.getLogger(__name__)


class LocationSource(str, enum.Enum):
    MANUAL = "manual"
    GEOCODED = "geocoded"
    USER_CLICK = "user_click"
    BROWSER = "browser"
    OPENSTREETMAP = "openstreetmap"
    HERE = "here"
    LISTINGS = "listings"


class LocationOption(BaseModel):
    """A resolved location candidate. Created per query, never persisted."""

    model_config = ConfigDict(frozen=True)

    display_name: str
    area: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    country_code: Optional[str] = None
    postal_code: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    precision_radius_m: Optional[int] = None
    source: LocationSource = LocationSource.GEOCODED
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    bounds: Optional[LocationBounds] = None

    @property
    def coordinate(self) -> Optional[Coordinate]:
        if self.latitude is None or self.longitude is None:
            return None
        if not Coordinate.is_valid(self.latitude, self.longitude):
            return None
        return Coordinate(self.latitude, self.longitude)


class GeocodingProvider(ABC):
    """
    Forward and reverse geocoding capability.

    Implementations return an empty list / None for "no results" and raise
    GeocodingProviderException for network, auth or response errors.
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        pass

    @property
    @abstractmethod
    def max_results(self) -> int:
        pass

    @abstractmethod
    async def search_locations(
        self,
        query: str,
        limit: int = 5,
        country_code: Optional[str] = None,
    ) -> list[LocationOption]:
        pass

    @abstractmethod
    async def reverse_geocode(self, latitude: float, longitude: float) -> Optional[LocationOption]:
        pass


class HTTPGeocodingProvider(GeocodingProvider):
    """Shared request handling for providers backed by an HTTP API."""

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = httpx.Timeout(timeout or settings.GEOCODING_TIMEOUT_SECONDS, connect=10.0)

    def _headers(self) -> dict[str, str]:
        return {"Accept": "application/json"}

    async def _get_json(self, url: str, params: dict[str, Any], operation: str) -> Any:
        """
        GET `url` and decode the JSON body.

        Raises:
            GeocodingProviderException: on HTTP, network or decode errors
        """
        start = time.perf_counter()
        try:
            async with httpx.AsyncClient(timeout=self.timeout, headers=self._headers()) as client:
                response = await client.get(url, params=params)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as e:
            track_geocoding_request(self.provider_name, operation, "error", time.perf_counter() - start)
            logger.warning(
                f"{self.provider_name} {operation} HTTP error: {e.response.status_code}"
            )
            raise GeocodingProviderException(
                self.provider_name,
                f"{self.provider_name} returned HTTP {e.response.status_code}",
            ) from e
        except httpx.RequestError as e:
            track_geocoding_request(self.provider_name, operation, "error", time.perf_counter() - start)
            logger.warning(f"{self.provider_name} {operation} network error: {e}")
            raise GeocodingProviderException(self.provider_name, str(e) or None) from e
        except ValueError as e:
            track_geocoding_request(self.provider_name, operation, "error", time.perf_counter() - start)
            logger.warning(f"{self.provider_name} {operation} returned malformed JSON")
            raise GeocodingProviderException(
                self.provider_name, f"{self.provider_name} returned a malformed response"
            ) from e

        track_geocoding_request(self.provider_name, operation, "success", time.perf_counter() - start)
        return data
