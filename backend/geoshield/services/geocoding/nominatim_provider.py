"""OpenStreetMap Nominatim geocoding provider."""

import asyncio
import logging
import time
from typing import Any, Optional

from geoshield.core.config import settings
from geoshield.core.exceptions import GeocodingProviderException
from geoshield.services.geocoding.base import HTTPGeocodingProvider, LocationOption, LocationSource
from geoshield.services.security.privacy import LocationBounds

logger = logging.getLogger(__name__)


def _precision_from_place_rank(place_rank: int) -> int:
    """Approximate precision radius in meters for a Nominatim place_rank."""
    if place_rank <= 10:
        return 50000  # country / state
    if place_rank <= 12:
        return 10000  # city
    if place_rank <= 16:
        return 1000  # neighbourhood
    if place_rank <= 18:
        return 500  # street
    return 100  # building


def _to_float(value: Any) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class OpenStreetMapProvider(HTTPGeocodingProvider):
    """
    Nominatim (https://nominatim.org) search and reverse lookup.

    The public instance allows one request per second per application;
    requests are spaced accordingly.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        user_agent: Optional[str] = None,
        requests_per_second: Optional[float] = None,
        timeout: Optional[float] = None,
    ):
        super().__init__(timeout)
        self.base_url = (base_url or settings.NOMINATIM_BASE_URL).rstrip("/")
        self.user_agent = user_agent or settings.NOMINATIM_USER_AGENT
        rps = (
            settings.NOMINATIM_REQUESTS_PER_SECOND if requests_per_second is None
            else requests_per_second
        )
        self.min_interval = 1.0 / rps if rps > 0 else 0.0
        self.language = settings.GEOCODING_DEFAULT_LANGUAGE
        self._lock = asyncio.Lock()
        self._last_request: float = 0.0

    @property
    def provider_name(self) -> str:
        return "openstreetmap"

    @property
    def max_results(self) -> int:
        return settings.NOMINATIM_MAX_RESULTS

    def _headers(self) -> dict[str, str]:
        return {"Accept": "application/json", "User-Agent": self.user_agent}

    def _base_params(self) -> dict[str, Any]:
        params: dict[str, Any] = {
            "format": "json",
            "addressdetails": 1,
            "accept-language": self.language,
        }
        if settings.NOMINATIM_CONTACT_EMAIL:
            params["email"] = settings.NOMINATIM_CONTACT_EMAIL
        return params

    async def _throttled_get(self, url: str, params: dict[str, Any], operation: str) -> Any:
        async with self._lock:
            wait = self.min_interval - (time.monotonic() - self._last_request)
            if wait > 0:
                logger.debug(f"Nominatim politeness delay: {wait * 1000:.0f}ms")
                await asyncio.sleep(wait)
            try:
                return await self._get_json(url, params, operation)
            finally:
                self._last_request = time.monotonic()

    async def search_locations(
        self,
        query: str,
        limit: int = 5,
        country_code: Optional[str] = None,
    ) -> list[LocationOption]:
        if not query or not query.strip():
            return []

        params = self._base_params()
        params["q"] = query.strip()
        params["limit"] = max(1, min(limit, self.max_results))
        if country_code:
            params["countrycodes"] = country_code.lower()

        data = await self._throttled_get(f"{self.base_url}/search", params, "search")
        if not isinstance(data, list):
            raise GeocodingProviderException(self.provider_name, "Unexpected search response shape")

        return [self._parse_result(item) for item in data if isinstance(item, dict)]

    async def reverse_geocode(self, latitude: float, longitude: float) -> Optional[LocationOption]:
        params = self._base_params()
        params.update({"lat": latitude, "lon": longitude, "zoom": 18})

        data = await self._throttled_get(f"{self.base_url}/reverse", params, "reverse")
        if not isinstance(data, dict):
            raise GeocodingProviderException(self.provider_name, "Unexpected reverse response shape")
        if "error" in data:
            # Nominatim answers {"error": "Unable to geocode"} for open sea etc.
            return None

        return self._parse_result(data)

    def _parse_result(self, item: dict[str, Any]) -> LocationOption:
        address = item.get("address") or {}

        bounds = None
        bbox = item.get("boundingbox") or []
        if len(bbox) >= 4:
            south, north, west, east = (_to_float(v) for v in bbox[:4])
            if None not in (south, north, west, east):
                bounds = LocationBounds(north=north, south=south, east=east, west=west)

        importance = _to_float(item.get("importance"))
        country_code = address.get("country_code")

        return LocationOption(
            display_name=item.get("display_name") or item.get("name") or "",
            area=address.get("neighbourhood") or address.get("suburb") or address.get("village"),
            city=address.get("city") or address.get("town") or address.get("municipality"),
            state=address.get("state") or address.get("province") or address.get("region"),
            country=address.get("country"),
            country_code=country_code.upper() if country_code else None,
            postal_code=address.get("postcode"),
            latitude=_to_float(item.get("lat")),
            longitude=_to_float(item.get("lon")),
            precision_radius_m=_precision_from_place_rank(int(item.get("place_rank") or 30)),
            source=LocationSource.OPENSTREETMAP,
            confidence=max(0.0, min(importance, 1.0)) if importance is not None else None,
            bounds=bounds,
        )
