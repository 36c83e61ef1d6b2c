"""
Tests for the location search orchestrator.

Covers geocoding resolution, proximity search through the security
engine, clustering and listing-derived suggestions.
"""
import asyncio
import fnmatch
from datetime import timedelta
from typing import Any, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import func, select

from geoshield.core.cache import CacheService
from geoshield.core.exceptions import (
    GeocodingProviderException,
    InvalidLocationException,
    InvalidRadiusException,
    LocationRateLimitException,
    SearchStoreException,
    SuspiciousSearchPatternException,
)
from geoshield.models.listed_item import PrivacyLevel, TargetClass
from geoshield.models.location_search_log import LocationSearchLog, SearchType
from geoshield.repositories.item_store import SqlItemStore
from geoshield.services.geocoding.base import LocationOption, LocationSource
from geoshield.services.geocoding.mock_provider import GAZETTEER, MockGeocodingProvider
from geoshield.services.location_service import (
    DistanceDisclosure,
    LocationService,
    deduplicate_locations,
    normalize_location_name,
    parse_coordinates,
)
from geoshield.services.security.privacy import Coordinate, DistanceBand, great_circle_distance


ATHENS = (33.9519, -83.3576)
ATLANTA = (33.7490, -84.3880)

USER = "user-1"
TARGET = "tool-42"


class FailingProvider(MockGeocodingProvider):
    async def search_locations(self, query, limit=5, country_code=None):
        raise GeocodingProviderException("mock", "connection refused")

    async def reverse_geocode(self, latitude, longitude):
        raise GeocodingProviderException("mock", "connection refused")


class SlowProvider(MockGeocodingProvider):
    async def search_locations(self, query, limit=5, country_code=None):
        await asyncio.sleep(1)
        return await super().search_locations(query, limit, country_code)


class MemoryCache(CacheService):
    """CacheService backed by a dict."""

    def __init__(self):
        super().__init__(redis_url="redis://unused")
        self.store: dict[str, Any] = {}

    async def get(self, key: str) -> Optional[Any]:
        return self.store.get(key)

    async def set(self, key: str, value: Any, ttl: int = 3600) -> bool:
        self.store[key] = value
        return True

    async def delete_pattern(self, pattern: str) -> int:
        keys = [k for k in self.store if fnmatch.fnmatch(k, pattern)]
        for key in keys:
            del self.store[key]
        return len(keys)


def _option(name: str, lat: float, lng: float, **fields) -> LocationOption:
    return LocationOption(display_name=name, latitude=lat, longitude=lng, **fields)


class TestParseCoordinates:
    """Tests for coordinate string parsing."""

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("33.9519, -83.3576", (33.9519, -83.3576)),
            ("33.9519,-83.3576", (33.9519, -83.3576)),
            ("  -33.8688   151.2093 ", (-33.8688, 151.2093)),
            ("40,-74", (40.0, -74.0)),
        ],
    )
    def test_valid(self, text, expected):
        assert parse_coordinates(text).as_tuple() == expected

    @pytest.mark.parametrize(
        "text",
        ["", None, "Athens, GA", "91, 0", "0, 181", "33.95", "33.95, -83.35, 10", "1e3, 2"],
    )
    def test_invalid(self, text):
        assert parse_coordinates(text) is None

    def test_validate_coordinates(self):
        assert LocationService.validate_coordinates(*ATHENS)
        assert not LocationService.validate_coordinates(95, 0)


class TestSearchLocations:
    """Tests for forward geocoding."""

    @pytest.mark.asyncio
    async def test_returns_provider_results(self, location_service):
        results = await location_service.search_locations("Athens, GA")
        assert len(results) == 1
        assert results[0].city == "Athens"

    @pytest.mark.asyncio
    async def test_unknown_query_returns_empty(self, location_service):
        assert await location_service.search_locations("Nonexistent Place Xyz123") == []

    @pytest.mark.asyncio
    async def test_blank_query(self, location_service):
        assert await location_service.search_locations("   ") == []

    @pytest.mark.asyncio
    async def test_provider_failure_returns_empty(self, security_engine, db_session):
        service = LocationService(FailingProvider(), security_engine, SqlItemStore(db_session))
        assert await service.search_locations("Athens, GA") == []

    @pytest.mark.asyncio
    async def test_provider_timeout_returns_empty(self, security_engine, db_session):
        service = LocationService(SlowProvider(), security_engine, SqlItemStore(db_session))
        service.provider_timeout = 0.01
        assert await service.search_locations("Athens, GA") == []

    @pytest.mark.asyncio
    async def test_limit_clamped_to_provider_max(self, security_engine, db_session):
        provider = MagicMock()
        provider.provider_name = "stub"
        provider.max_results = 3
        provider.search_locations = AsyncMock(return_value=[])
        service = LocationService(provider, security_engine, SqlItemStore(db_session))

        await service.search_locations("anything", limit=100)
        provider.search_locations.assert_awaited_once_with("anything", 3, None)

    @pytest.mark.asyncio
    async def test_duplicates_collapsed_to_highest_confidence(self, security_engine, db_session):
        provider = MockGeocodingProvider(
            entries=[
                _option("Springfield, Illinois", 39.78, -89.65, confidence=0.4),
                _option("Springfield, Missouri", 37.21, -93.29, confidence=0.7),
                _option("springfield,  illinois", 39.80, -89.64, confidence=0.9),
            ]
        )
        service = LocationService(provider, security_engine, SqlItemStore(db_session))

        results = await service.search_locations("springfield", limit=5)

        assert [r.display_name for r in results] == ["springfield,  illinois", "Springfield, Missouri"]
        assert results[0].confidence == 0.9

    @pytest.mark.asyncio
    async def test_results_cached(self, security_engine, db_session):
        provider = MockGeocodingProvider()
        provider.search_locations = AsyncMock(wraps=provider.search_locations)
        cache = MemoryCache()
        service = LocationService(provider, security_engine, SqlItemStore(db_session), cache=cache)

        first = await service.search_locations("Atlanta, GA")
        second = await service.search_locations("atlanta,   GA")

        assert first == second
        provider.search_locations.assert_awaited_once()

        assert await service.invalidate_location_cache() == 1
        assert cache.store == {}

    @pytest.mark.asyncio
    async def test_identified_search_logged(self, location_service, audit_repository, clock):
        await location_service.search_locations("Atlanta", user_id=USER)

        assert await audit_repository.count_since(USER, clock()) == 1

    @pytest.mark.asyncio
    async def test_anonymous_search_not_logged(self, location_service, db_session):
        await location_service.search_locations("Atlanta")

        count = await db_session.scalar(select(func.count(LocationSearchLog.id)))
        assert count == 0

    @pytest.mark.asyncio
    async def test_audit_failure_does_not_fail_search(self, security_config, db_session):
        security = MagicMock()
        security.log_search = AsyncMock(side_effect=SearchStoreException())
        service = LocationService(
            MockGeocodingProvider(), security, SqlItemStore(db_session), config=security_config
        )

        results = await service.search_locations("Atlanta", user_id=USER)

        assert len(results) == 1
        security.log_search.assert_awaited_once()


class TestReverseGeocode:
    """Tests for reverse geocoding."""

    @pytest.mark.asyncio
    async def test_accepts_coordinate_or_pair(self, location_service):
        by_pair = await location_service.reverse_geocode(*ATHENS)
        by_coordinate = await location_service.reverse_geocode(Coordinate(*ATHENS))
        assert by_pair == by_coordinate
        assert by_pair.city == "Athens"

    @pytest.mark.asyncio
    async def test_invalid_coordinate_skips_provider(self, security_engine, db_session):
        provider = MockGeocodingProvider()
        provider.reverse_geocode = AsyncMock()
        service = LocationService(provider, security_engine, SqlItemStore(db_session))

        assert await service.reverse_geocode(95.0, 0.0) is None
        provider.reverse_geocode.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_result(self, location_service):
        # Mid-Atlantic, far from every gazetteer entry
        assert await location_service.reverse_geocode(30.0, -40.0) is None

    @pytest.mark.asyncio
    async def test_provider_failure(self, security_engine, db_session):
        service = LocationService(FailingProvider(), security_engine, SqlItemStore(db_session))
        assert await service.reverse_geocode(*ATHENS) is None


class TestProcessLocationInput:
    """Tests for free-form input resolution."""

    @pytest.mark.asyncio
    async def test_coordinates_resolved_by_reverse_geocoding(self, location_service):
        result = await location_service.process_location_input("33.9519, -83.3576")

        assert result is not None
        assert result.city == "Athens"
        assert round(result.latitude, 4) == 33.9519
        assert round(result.longitude, 4) == -83.3576

    @pytest.mark.asyncio
    async def test_address_resolved_by_search(self, location_service):
        result = await location_service.process_location_input("New York, NY")
        assert result.city == "New York"

    @pytest.mark.asyncio
    async def test_fallback_used_when_primary_unresolved(self, location_service):
        result = await location_service.process_location_input(
            "Nonexistent Place Xyz123", fallback_text="Athens, GA"
        )
        assert result is not None
        assert result.city == "Athens"
        assert result.state == "Georgia"

    @pytest.mark.asyncio
    async def test_nothing_resolves(self, location_service):
        assert await location_service.process_location_input("Nowhere Xyz", "Also Nowhere") is None
        assert await location_service.process_location_input(None) is None

    @pytest.mark.asyncio
    async def test_provider_failure(self, security_engine, db_session):
        service = LocationService(FailingProvider(), security_engine, SqlItemStore(db_session))
        assert await service.process_location_input("Athens, GA", "33.9519, -83.3576") is None


class TestFindNearbyItems:
    """Tests for proximity search."""

    @pytest.mark.asyncio
    async def test_returns_banded_results_in_distance_order(self, location_service, make_item):
        near = await make_item(33.9550, -83.3600, name="Near Drill")
        mid = await make_item(33.9800, -83.3576, name="Mid Saw")
        await make_item(34.3000, -83.3576, name="Far Ladder")
        await make_item(33.9530, -83.3580, name="Unavailable", is_available=False)
        await make_item(33.9530, -83.3580, name="Deleted", is_deleted=True)
        await make_item(33.9530, -83.3580, name="Bundle", target_class=TargetClass.BUNDLE)

        results = await location_service.find_nearby_items(ATHENS, 10.0, user_id=USER)

        assert [r.item_id for r in results] == [near.id, mid.id]
        assert results[0].distance_band == DistanceBand.VERY_CLOSE
        assert results[0].distance_text == "Very close (< 0.5 km)"
        assert results[1].distance_band == DistanceBand.MODERATE
        assert all(r.fuzzed_distance_km is None for r in results)
        assert "distance_km" not in results[0].model_dump()

    @pytest.mark.asyncio
    async def test_search_is_logged(self, location_service, make_item, audit_repository, clock):
        await make_item(33.9550, -83.3600)

        await location_service.find_nearby_items(
            ATHENS, 5.0, user_id=USER, target_id=TARGET, ip_address="198.51.100.4"
        )

        history = await audit_repository.coordinate_history(
            USER, TARGET, SearchType.TOOL_SEARCH.value, clock() - timedelta(minutes=1)
        )
        assert history == [ATHENS]

    @pytest.mark.asyncio
    async def test_approximate_location_hides_exact_point(self, location_service, make_item):
        item = await make_item(33.9550, -83.3600, privacy_level=PrivacyLevel.NEIGHBORHOOD)

        [result] = await location_service.find_nearby_items(ATHENS, 5.0)

        grid = PrivacyLevel.NEIGHBORHOOD.grid_size
        assert abs(result.approximate_latitude - item.latitude) <= grid
        assert abs(result.approximate_longitude - item.longitude) <= grid
        assert (result.approximate_latitude, result.approximate_longitude) != (item.latitude, item.longitude)

    @pytest.mark.asyncio
    async def test_fuzzed_disclosure(self, location_service, make_item):
        item = await make_item(33.9800, -83.3576)
        true_km = great_circle_distance(Coordinate(*ATHENS), Coordinate(item.latitude, item.longitude))

        [result] = await location_service.find_nearby_items(
            ATHENS, 10.0, disclosure=DistanceDisclosure.FUZZED
        )

        assert 0.8 * true_km - 0.05 <= result.fuzzed_distance_km <= 1.2 * true_km + 0.05

    @pytest.mark.asyncio
    async def test_limit(self, location_service, make_item):
        for i in range(5):
            await make_item(33.9519 + i * 0.001, -83.3576, name=f"Item {i}")

        results = await location_service.find_nearby_items(ATHENS, 5.0, limit=3)
        assert len(results) == 3

    @pytest.mark.asyncio
    async def test_own_profile_excluded_from_user_search(self, location_service, make_item):
        await make_item(33.9550, -83.3600, name="Me", target_class=TargetClass.USER, owner_id=USER)
        other = await make_item(
            33.9560, -83.3610, name="Neighbour", target_class=TargetClass.USER, owner_id="user-2"
        )

        results = await location_service.find_nearby_items(
            ATHENS, 5.0, user_id=USER, target_class=TargetClass.USER
        )

        assert [r.item_id for r in results] == [other.id]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("radius", [0, -1, 1000.5, float("nan"), float("inf")])
    async def test_invalid_radius(self, location_service, radius):
        with pytest.raises(InvalidRadiusException):
            await location_service.find_nearby_items(ATHENS, radius)

    @pytest.mark.asyncio
    async def test_invalid_center(self, location_service):
        with pytest.raises(InvalidLocationException):
            await location_service.find_nearby_items((91.0, 0.0), 5.0)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("center", [(33.95,), (33.95, -83.35, 10.0), None, 42, ("north", "east")])
    async def test_malformed_center(self, location_service, center):
        with pytest.raises(InvalidLocationException):
            await location_service.find_nearby_items(center, 5.0)

    @pytest.mark.asyncio
    async def test_rate_limited(self, location_service, security_engine, security_config):
        for _ in range(security_config.max_searches_per_hour):
            await security_engine.log_search(USER, None, SearchType.GEOCODING)

        with pytest.raises(LocationRateLimitException):
            await location_service.find_nearby_items(ATHENS, 5.0, user_id=USER)

    @pytest.mark.asyncio
    async def test_triangulation_rejected_and_flagged(self, location_service, db_session, clock):
        await location_service.find_nearby_items((40.7680, -73.9855), 2.0, user_id=USER, target_id=TARGET)
        clock.advance(minutes=2)
        await location_service.find_nearby_items((40.7480, -73.9755), 2.0, user_id=USER, target_id=TARGET)
        clock.advance(minutes=2)

        with pytest.raises(SuspiciousSearchPatternException) as exc_info:
            await location_service.find_nearby_items(
                (40.7480, -73.9955), 2.0, user_id=USER, target_id=TARGET
            )

        assert exc_info.value.details is None
        flagged = await db_session.scalar(
            select(func.count(LocationSearchLog.id)).where(LocationSearchLog.is_suspicious.is_(True))
        )
        assert flagged == 1

    @pytest.mark.asyncio
    async def test_store_failure_propagates(self, security_config, db_session):
        security = MagicMock()
        security.validate_location_search = AsyncMock(side_effect=SearchStoreException())
        service = LocationService(
            MockGeocodingProvider(), security, SqlItemStore(db_session), config=security_config
        )

        with pytest.raises(SearchStoreException):
            await service.find_nearby_items(ATHENS, 5.0, user_id=USER)


class TestGeographicClusters:
    """Tests for greedy single-link clustering."""

    def _athens_atlanta(self) -> list[LocationOption]:
        athens, atlanta = GAZETTEER[0], GAZETTEER[1]
        athens_east = athens.model_copy(update={"latitude": 33.9600, "longitude": -83.3700})
        return [athens, atlanta, athens_east]

    def test_two_clusters(self, location_service):
        clusters = location_service.analyze_geographic_clusters(self._athens_atlanta(), radius_km=20)

        assert [c.count for c in clusters] == [2, 1]
        assert clusters[0].label == "Athens, Georgia"
        assert clusters[1].label == "Atlanta, Georgia"

    def test_centroid_is_member_mean(self, location_service):
        clusters = location_service.analyze_geographic_clusters(self._athens_atlanta(), radius_km=20)

        athens = clusters[0]
        assert athens.centroid.latitude == pytest.approx((33.9519 + 33.9600) / 2)
        assert athens.centroid.longitude == pytest.approx((-83.3576 + -83.3700) / 2)
        assert athens.bounds.north == pytest.approx(33.9600)
        assert athens.bounds.west == pytest.approx(-83.3700)
        assert athens.density_score > 0

    def test_large_radius_merges_all(self, location_service):
        clusters = location_service.analyze_geographic_clusters(self._athens_atlanta(), radius_km=200)
        assert [c.count for c in clusters] == [3]

    def test_chained_through_member(self, location_service):
        # Each point ~4.4 km from the previous one; the third is beyond the
        # radius from the centroid but within it from a member
        points = [_option(f"P{i}", 0.0, i * 0.04) for i in range(3)]

        clusters = location_service.analyze_geographic_clusters(points, radius_km=5)

        assert [c.count for c in clusters] == [3]
        assert clusters[0].label == "Location Cluster"

    def test_label_falls_back_to_area(self, location_service):
        points = [_option("A", 0.0, 0.0, area="Downtown"), _option("B", 0.0, 0.001, area="Downtown")]
        [cluster] = location_service.analyze_geographic_clusters(points, radius_km=1)
        assert cluster.label == "Downtown"

    def test_locations_without_coordinates_skipped(self, location_service):
        points = [LocationOption(display_name="Somewhere"), GAZETTEER[0]]
        [cluster] = location_service.analyze_geographic_clusters(points, radius_km=5)
        assert cluster.count == 1

    def test_cluster_across_antimeridian(self, location_service):
        points = [_option("Taveuni", -18.0, 179.99), _option("Lau", -18.01, -179.99)]

        [cluster] = location_service.analyze_geographic_clusters(points, radius_km=5)

        assert cluster.count == 2
        assert abs(cluster.centroid.longitude) == pytest.approx(180.0)
        assert cluster.bounds.west == pytest.approx(179.99)
        assert cluster.bounds.east == pytest.approx(-179.99)
        # ~2 km wide, not a band around the whole globe
        assert cluster.density_score > 0.5

    def test_empty_input(self, location_service):
        assert location_service.analyze_geographic_clusters([]) == []

    def test_invalid_radius(self, location_service):
        with pytest.raises(InvalidRadiusException):
            location_service.analyze_geographic_clusters(self._athens_atlanta(), radius_km=0)

    def test_calculate_distance(self, location_service):
        d = location_service.calculate_distance(Coordinate(*ATHENS), Coordinate(*ATLANTA))
        assert d == pytest.approx(great_circle_distance(Coordinate(*ATHENS), Coordinate(*ATLANTA)))


class TestListingLocations:
    """Tests for popular locations and suggestions."""

    @pytest.mark.asyncio
    async def test_popular_locations_merge_normalized_names(self, location_service, make_item):
        for _ in range(3):
            await make_item(*ATHENS, location_display="Athens, GA", city="Athens", state="GA")
        await make_item(*ATHENS, location_display="athens, ga", city="Athens", state="GA")
        for _ in range(2):
            await make_item(*ATLANTA, location_display="Atlanta, GA", city="Atlanta", state="GA")

        results = await location_service.get_popular_locations(10)

        assert [normalize_location_name(r.display_name) for r in results] == ["athens ga", "atlanta ga"]
        assert results[0].confidence == pytest.approx(0.8)
        assert results[1].confidence == pytest.approx(0.4)
        assert all(r.source == LocationSource.LISTINGS for r in results)

    @pytest.mark.asyncio
    async def test_popular_locations_cached(self, security_engine, db_session, make_item):
        await make_item(*ATHENS, location_display="Athens, GA")
        cache = MemoryCache()
        service = LocationService(
            MockGeocodingProvider(), security_engine, SqlItemStore(db_session), cache=cache
        )

        first = await service.get_popular_locations(5)
        await make_item(*ATLANTA, location_display="Atlanta, GA")
        second = await service.get_popular_locations(5)

        assert first == second
        assert len(second) == 1

    @pytest.mark.asyncio
    async def test_suggestions_listings_first(self, location_service, make_item):
        for _ in range(2):
            await make_item(*ATLANTA, location_display="Atlanta, GA", city="Atlanta", state="GA")

        results = await location_service.get_location_suggestions("Atlanta", limit=5)

        assert [r.source for r in results] == [LocationSource.LISTINGS, LocationSource.GEOCODED]
        assert results[1].display_name.startswith("Atlanta, Fulton County")

    @pytest.mark.asyncio
    async def test_suggestions_skip_similar_geocoding_results(self, location_service, make_item):
        await make_item(
            *ATHENS,
            location_display="Athens, Clarke County, Georgia, United States",
            city="Athens",
        )

        results = await location_service.get_location_suggestions("Athens", limit=5)

        assert len(results) == 1
        assert results[0].source == LocationSource.LISTINGS

    @pytest.mark.asyncio
    async def test_suggestions_blank_query(self, location_service):
        assert await location_service.get_location_suggestions("  ") == []


class TestDeduplicate:
    def test_first_seen_order_kept(self):
        a = _option("Paris, France", 48.85, 2.35, confidence=0.5)
        b = _option("Paris, Texas", 33.66, -95.55, confidence=0.6)
        c = _option("paris france", 48.86, 2.34, confidence=0.9)

        assert deduplicate_locations([a, b, c]) == [c, b]
