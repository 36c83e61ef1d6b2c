"""HERE Geocoding & Search (v7) provider."""

import logging
from typing import Any, Optional

from geoshield.core.config import settings
from geoshield.core.exceptions import GeocodingProviderException
from geoshield.services.geocoding.base import HTTPGeocodingProvider, LocationOption, LocationSource
from geoshield.services.security.privacy import LocationBounds

logger = logging.getLogger(__name__)

PRECISION_BY_RESULT_TYPE = {
    "country": 50000,
    "administrativeArea": 25000,
    "locality": 10000,
    "district": 5000,
    "street": 1000,
    "houseNumber": 100,
    "place": 500,
}


class HereProvider(HTTPGeocodingProvider):
    """Forward search and reverse lookup against the HERE geocoding API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        reverse_base_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        super().__init__(timeout)
        self.api_key = api_key if api_key is not None else settings.HERE_API_KEY
        self.base_url = (base_url or settings.HERE_BASE_URL).rstrip("/")
        self.reverse_base_url = (reverse_base_url or settings.HERE_REVERSE_BASE_URL).rstrip("/")
        self.language = settings.GEOCODING_DEFAULT_LANGUAGE

    @property
    def provider_name(self) -> str:
        return "here"

    @property
    def max_results(self) -> int:
        return settings.HERE_MAX_RESULTS

    def _require_key(self) -> None:
        if not self.api_key:
            raise GeocodingProviderException(self.provider_name, "HERE API key is not configured")

    async def search_locations(
        self,
        query: str,
        limit: int = 5,
        country_code: Optional[str] = None,
    ) -> list[LocationOption]:
        if not query or not query.strip():
            return []
        self._require_key()

        params: dict[str, Any] = {
            "q": query.strip(),
            "limit": max(1, min(limit, self.max_results)),
            "lang": self.language,
            "apiKey": self.api_key,
        }
        if country_code:
            # HERE filters by ISO 3166-1 alpha-3 codes
            params["in"] = f"countryCode:{country_code.upper()}"

        data = await self._get_json(f"{self.base_url}/geocode", params, "search")
        return [self._parse_item(item) for item in self._items(data)]

    async def reverse_geocode(self, latitude: float, longitude: float) -> Optional[LocationOption]:
        self._require_key()

        params = {
            "at": f"{latitude},{longitude}",
            "limit": 1,
            "lang": self.language,
            "apiKey": self.api_key,
        }
        data = await self._get_json(f"{self.reverse_base_url}/revgeocode", params, "reverse")
        items = self._items(data)
        return self._parse_item(items[0]) if items else None

    def _items(self, data: Any) -> list[dict[str, Any]]:
        if not isinstance(data, dict) or not isinstance(data.get("items", []), list):
            raise GeocodingProviderException(self.provider_name, "Unexpected response shape")
        return [item for item in data.get("items", []) if isinstance(item, dict)]

    def _parse_item(self, item: dict[str, Any]) -> LocationOption:
        address = item.get("address") or {}
        position = item.get("position") or {}
        scoring = item.get("scoring") or {}

        bounds = None
        map_view = item.get("mapView")
        if isinstance(map_view, dict) and all(k in map_view for k in ("north", "south", "east", "west")):
            bounds = LocationBounds(
                north=float(map_view["north"]),
                south=float(map_view["south"]),
                east=float(map_view["east"]),
                west=float(map_view["west"]),
            )

        query_score = scoring.get("queryScore")

        return LocationOption(
            display_name=item.get("title") or address.get("label") or "",
            area=address.get("district") or address.get("subdistrict"),
            city=address.get("city") or address.get("county"),
            state=address.get("state") or address.get("stateCode"),
            country=address.get("countryName"),
            country_code=address.get("countryCode"),
            postal_code=address.get("postalCode"),
            latitude=position.get("lat"),
            longitude=position.get("lng"),
            precision_radius_m=PRECISION_BY_RESULT_TYPE.get(item.get("resultType"), 1000),
            source=LocationSource.HERE,
            confidence=max(0.0, min(float(query_score), 1.0)) if query_score is not None else 1.0,
            bounds=bounds,
        )
