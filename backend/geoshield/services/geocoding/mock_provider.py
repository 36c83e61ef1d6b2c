"""Mock geocoding provider for tests and local development (no network calls)."""

from typing import Optional

from geoshield.services.geocoding.base import GeocodingProvider, LocationOption, LocationSource
from geoshield.services.security.privacy import Coordinate, great_circle_distance

GAZETTEER: list[LocationOption] = [
    LocationOption(
        display_name="Athens, Clarke County, Georgia, United States",
        city="Athens",
        state="Georgia",
        country="United States",
        country_code="US",
        postal_code="30601",
        latitude=33.9519,
        longitude=-83.3576,
        precision_radius_m=10000,
        source=LocationSource.GEOCODED,
        confidence=0.9,
    ),
    LocationOption(
        display_name="Atlanta, Fulton County, Georgia, United States",
        city="Atlanta",
        state="Georgia",
        country="United States",
        country_code="US",
        postal_code="30303",
        latitude=33.7490,
        longitude=-84.3880,
        precision_radius_m=10000,
        source=LocationSource.GEOCODED,
        confidence=0.95,
    ),
    LocationOption(
        display_name="New York, New York, United States",
        area="Manhattan",
        city="New York",
        state="New York",
        country="United States",
        country_code="US",
        postal_code="10036",
        latitude=40.7580,
        longitude=-73.9855,
        precision_radius_m=10000,
        source=LocationSource.GEOCODED,
        confidence=0.95,
    ),
]

# Short forms accepted in addition to the display name
ALIASES = {
    "athens, ga": 0,
    "athens georgia": 0,
    "atlanta, ga": 1,
    "new york, ny": 2,
    "nyc": 2,
}

REVERSE_MATCH_RADIUS_KM = 50.0


def _normalize(text: str) -> str:
    return " ".join(text.lower().replace(",", " , ").split()).replace(" ,", ",")


class MockGeocodingProvider(GeocodingProvider):
    """
    Deterministic gazetteer lookups.

    Unknown queries return no results; reverse lookups echo the input
    coordinate with the nearest gazetteer entry's address.
    """

    def __init__(self, entries: Optional[list[LocationOption]] = None):
        self.entries = entries if entries is not None else GAZETTEER

    @property
    def provider_name(self) -> str:
        return "mock"

    @property
    def max_results(self) -> int:
        return 20

    async def search_locations(
        self,
        query: str,
        limit: int = 5,
        country_code: Optional[str] = None,
    ) -> list[LocationOption]:
        needle = _normalize(query or "")
        if not needle:
            return []

        matches: list[LocationOption] = []
        alias_index = ALIASES.get(needle)
        if alias_index is not None and self.entries is GAZETTEER:
            matches.append(self.entries[alias_index])

        for entry in self.entries:
            name = _normalize(entry.display_name)
            if entry not in matches and (needle in name or (entry.city and needle == entry.city.lower())):
                matches.append(entry)

        if country_code:
            matches = [m for m in matches if (m.country_code or "").upper() == country_code.upper()]
        return matches[:limit]

    async def reverse_geocode(self, latitude: float, longitude: float) -> Optional[LocationOption]:
        point = Coordinate(latitude, longitude)
        nearest = None
        nearest_km = REVERSE_MATCH_RADIUS_KM
        for entry in self.entries:
            if entry.coordinate is None:
                continue
            km = great_circle_distance(point, entry.coordinate)
            if km <= nearest_km:
                nearest, nearest_km = entry, km

        if nearest is None:
            return None
        return nearest.model_copy(
            update={"latitude": latitude, "longitude": longitude, "precision_radius_m": 100}
        )
