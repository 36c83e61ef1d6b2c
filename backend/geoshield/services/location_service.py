"""
Location search orchestration.

Resolves addresses and coordinates through the configured geocoding
provider and runs proximity searches over listed items. Every
location-revealing search goes through the LocationSecurityEngine:
- rate limits are checked before any item is read
- triangulation attempts are logged and rejected
- results only carry distance bands (or fuzzed distances) and jittered
  coordinates, never exact positions
"""
import asyncio
import enum
import logging
import math
import re
import time
from collections import Counter
from dataclasses import dataclass, field
from difflib import SequenceMatcher
from typing import Any, Awaitable, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ValidationError

from geoshield.core.cache import CacheService, GeocodingCache, PopularLocationsCache
from geoshield.core.config import LocationSecurityConfig, settings
from geoshield.core.exceptions import (
    GeocodingProviderException,
    InvalidLocationException,
    InvalidRadiusException,
    LocationRateLimitException,
    SearchStoreException,
    SuspiciousSearchPatternException,
)
from geoshield.core.metrics import LOCATION_SEARCH_RESULTS, track_location_search
from geoshield.models.listed_item import ListedItem, TargetClass
from geoshield.models.location_search_log import SearchType
from geoshield.repositories.item_store import ItemStore, LocationAggregate
from geoshield.services.geocoding.base import GeocodingProvider, LocationOption, LocationSource
from geoshield.services.security import privacy
from geoshield.services.security.engine import LocationSecurityEngine
from geoshield.services.security.privacy import Coordinate, DistanceBand, LocationBounds

logger = logging.getLogger(__name__)

COORDINATE_PATTERN = re.compile(
    r"^\s*([-+]?\d+(?:\.\d+)?)\s*(?:,\s*|\s+)([-+]?\d+(?:\.\d+)?)\s*$"
)

# Suggestions closer than this are compared with the looser name threshold
SIMILAR_LOCATION_DISTANCE_KM = 1.0
NEARBY_NAME_SIMILARITY = 0.6
NAME_SIMILARITY = 0.8

POPULAR_CONFIDENCE_COUNT = 5

DEFAULT_CLUSTER_LABEL = "Location Cluster"


class DistanceDisclosure(str, enum.Enum):
    """How much distance information a proximity result may carry."""

    BAND = "band"
    FUZZED = "fuzzed"


class NearbyItem(BaseModel):
    """A proximity search hit. Never carries the exact distance or position."""

    item_id: UUID
    name: str
    target_class: TargetClass
    location_display: Optional[str] = None
    approximate_latitude: float
    approximate_longitude: float
    distance_band: DistanceBand
    distance_text: str
    fuzzed_distance_km: Optional[float] = None


@dataclass
class GeographicCluster:
    label: str
    count: int
    centroid: Coordinate
    radius_km: float
    locations: list[LocationOption] = field(default_factory=list)
    bounds: Optional[LocationBounds] = None
    density_score: float = 0.0


def normalize_location_name(name: Optional[str]) -> str:
    """Lowercase, strip punctuation and collapse whitespace."""
    if not name:
        return ""
    cleaned = re.sub(r"[^\w\s]", " ", name.lower())
    return " ".join(cleaned.split())


def parse_coordinates(text: Optional[str]) -> Optional[Coordinate]:
    """
    Parse a decimal-degree "lat, lng" (or "lat lng") string.

    Returns None for anything else, including out-of-range values.
    """
    if not text:
        return None
    match = COORDINATE_PATTERN.match(text)
    if not match:
        return None
    lat, lng = float(match.group(1)), float(match.group(2))
    if not Coordinate.is_valid(lat, lng):
        return None
    return Coordinate(lat, lng)


def deduplicate_locations(locations: list[LocationOption]) -> list[LocationOption]:
    """Keep the highest-confidence entry per normalized display name, in first-seen order."""
    best: dict[str, LocationOption] = {}
    for location in locations:
        key = normalize_location_name(location.display_name)
        current = best.get(key)
        if current is None or (location.confidence or 0.0) > (current.confidence or 0.0):
            best[key] = location
    return list(best.values())


def is_similar_location(a: LocationOption, b: LocationOption) -> bool:
    name_a = normalize_location_name(a.display_name)
    name_b = normalize_location_name(b.display_name)
    if name_a == name_b:
        return True

    similarity = SequenceMatcher(None, name_a, name_b).ratio()
    if a.coordinate and b.coordinate:
        if privacy.great_circle_distance(a.coordinate, b.coordinate) < SIMILAR_LOCATION_DISTANCE_KM:
            return similarity > NEARBY_NAME_SIMILARITY
    return similarity > NAME_SIMILARITY


def _cluster_label(members: list[LocationOption]) -> str:
    pairs = Counter((m.city, m.state) for m in members if m.city)
    if pairs:
        # most_common keeps first-seen order on ties
        (city, state), _ = pairs.most_common(1)[0]
        return f"{city}, {state}" if state else city

    areas = Counter(m.area for m in members if m.area)
    if areas:
        return areas.most_common(1)[0][0]
    return DEFAULT_CLUSTER_LABEL


def _shift_longitude(reference: float, offset: float) -> float:
    longitude = reference + offset
    if -180.0 <= longitude <= 180.0:
        return longitude
    return privacy.wrap_longitude(longitude)


def _centroid(points: list[Coordinate]) -> Coordinate:
    """Mean position; longitudes are averaged as offsets from the first point."""
    reference = points[0].longitude
    mean_offset = sum(privacy.longitude_offset(p.longitude, reference) for p in points) / len(points)
    return Coordinate(
        sum(p.latitude for p in points) / len(points),
        _shift_longitude(reference, mean_offset),
    )


class LocationService:
    """
    Geocoding and proximity search on top of the location security engine.

    Request-scoped: the engine and item store share the request's session.
    """

    def __init__(
        self,
        provider: GeocodingProvider,
        security: LocationSecurityEngine,
        item_store: ItemStore,
        cache: Optional[CacheService] = None,
        config: Optional[LocationSecurityConfig] = None,
    ):
        self.provider = provider
        self.security = security
        self.item_store = item_store
        self.config = config or security.config
        self.geocoding_cache = GeocodingCache(cache) if cache is not None else None
        self.popular_cache = PopularLocationsCache(cache) if cache is not None else None
        self.provider_timeout = settings.GEOCODING_TIMEOUT_SECONDS
        self.max_radius_km = settings.LOCATION_MAX_RADIUS_KM

    # ------------------------------------------------------------------
    # Geocoding
    # ------------------------------------------------------------------

    async def _call_provider(self, call: Awaitable[Any], operation: str) -> tuple[bool, Any]:
        """
        Await a provider call under the configured timeout.

        Returns (ok, result); provider failures are logged and reported
        as not ok. Cancellation propagates.
        """
        try:
            return True, await asyncio.wait_for(call, timeout=self.provider_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                f"Geocoding {operation} via {self.provider.provider_name} timed out "
                f"after {self.provider_timeout}s"
            )
        except GeocodingProviderException as e:
            logger.warning(f"Geocoding {operation} via {e.provider} failed: {e.message}")
        except (ValidationError, ValueError, TypeError, KeyError) as e:
            logger.warning(
                f"Geocoding {operation} via {self.provider.provider_name} "
                f"returned unusable data: {e}"
            )
        return False, None

    async def _log_geocoding(
        self,
        user_id: Optional[str],
        query: Optional[str] = None,
        coordinate: Optional[Coordinate] = None,
        result_count: int = 0,
    ) -> None:
        """Best-effort audit entry for an identified user's geocoding request."""
        if not user_id or not self.config.log_all_searches:
            return
        try:
            await self.security.log_search(
                user_id,
                None,
                SearchType.GEOCODING,
                coordinate=coordinate,
                query=query,
                result_count=result_count,
            )
        except SearchStoreException as e:
            logger.warning(f"Failed to log geocoding search for user {user_id}: {e.message}")

    async def search_locations(
        self,
        query: str,
        limit: int = 5,
        country_code: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> list[LocationOption]:
        """
        Forward geocode `query`.

        Returns an empty list when the provider fails or times out.
        """
        if not query or not query.strip():
            return []

        limit = max(1, min(limit, self.provider.max_results))
        cache_key = None
        if self.geocoding_cache:
            cache_key = self.geocoding_cache.search_key(
                self.provider.provider_name, query, limit, country_code
            )
            cached = await self.geocoding_cache.get(cache_key)
            if cached is not None:
                results = [LocationOption.model_validate(item) for item in cached]
                await self._log_geocoding(user_id, query=query, result_count=len(results))
                return results

        raw_limit = min(limit * 2, self.provider.max_results)
        ok, raw = await self._call_provider(
            self.provider.search_locations(query, raw_limit, country_code), "search"
        )
        if not ok:
            track_location_search(SearchType.GEOCODING.value, "provider_error")
            return []

        results = deduplicate_locations(raw or [])[:limit]
        if self.geocoding_cache and cache_key:
            await self.geocoding_cache.set(cache_key, [r.model_dump(mode="json") for r in results])

        track_location_search(SearchType.GEOCODING.value, "allowed")
        await self._log_geocoding(user_id, query=query, result_count=len(results))
        logger.info(f"Geocoding search returned {len(results)} results")
        return results

    async def reverse_geocode(
        self,
        coordinate_or_lat: Union[Coordinate, float],
        longitude: Optional[float] = None,
        user_id: Optional[str] = None,
    ) -> Optional[LocationOption]:
        """Reverse geocode a coordinate. Invalid input returns None without a provider call."""
        if isinstance(coordinate_or_lat, Coordinate):
            coordinate = coordinate_or_lat
        elif Coordinate.is_valid(coordinate_or_lat, longitude):
            coordinate = Coordinate(coordinate_or_lat, longitude)
        else:
            return None

        cache_key = None
        if self.geocoding_cache:
            cache_key = self.geocoding_cache.reverse_key(
                self.provider.provider_name, coordinate.latitude, coordinate.longitude
            )
            cached = await self.geocoding_cache.get(cache_key)
            if cached is not None:
                await self._log_geocoding(user_id, coordinate=coordinate, result_count=1)
                return LocationOption.model_validate(cached)

        ok, result = await self._call_provider(
            self.provider.reverse_geocode(coordinate.latitude, coordinate.longitude), "reverse"
        )
        if not ok or result is None:
            return None

        if self.geocoding_cache and cache_key:
            await self.geocoding_cache.set(cache_key, result.model_dump(mode="json"))

        await self._log_geocoding(user_id, coordinate=coordinate, result_count=1)
        return result

    async def _resolve_text(self, text: str) -> Optional[LocationOption]:
        coordinate = parse_coordinates(text)
        if coordinate is not None:
            resolved = await self.reverse_geocode(coordinate)
            if resolved is None:
                return None
            # Keep the caller's point; the provider answers for the nearest address
            return resolved.model_copy(
                update={"latitude": coordinate.latitude, "longitude": coordinate.longitude}
            )

        results = await self.search_locations(text, limit=1)
        return results[0] if results else None

    async def process_location_input(
        self,
        primary_text: Optional[str],
        fallback_text: Optional[str] = None,
    ) -> Optional[LocationOption]:
        """
        Resolve free-form user input to a location.

        "lat, lng" strings are reverse geocoded, anything else is searched
        and the top result taken. The fallback text is tried the same way
        when the primary yields nothing.
        """
        for text in (primary_text, fallback_text):
            if not text or not text.strip():
                continue
            resolved = await self._resolve_text(text.strip())
            if resolved is not None:
                return resolved
        return None

    parse_coordinates = staticmethod(parse_coordinates)

    @staticmethod
    def validate_coordinates(latitude: Any, longitude: Any) -> bool:
        return Coordinate.is_valid(latitude, longitude)

    @staticmethod
    def calculate_distance(a: Coordinate, b: Coordinate) -> float:
        """Great-circle distance in kilometers."""
        return privacy.great_circle_distance(a, b)

    # ------------------------------------------------------------------
    # Proximity search
    # ------------------------------------------------------------------

    def _validate_radius(self, radius_km: Any) -> float:
        try:
            radius = float(radius_km)
        except (TypeError, ValueError):
            raise InvalidRadiusException(radius_km, self.max_radius_km)
        if not math.isfinite(radius) or radius <= 0 or radius > self.max_radius_km:
            raise InvalidRadiusException(radius, self.max_radius_km)
        return radius

    async def find_nearby_items(
        self,
        center: Union[Coordinate, tuple[float, float]],
        radius_km: float,
        user_id: Optional[str] = None,
        target_class: TargetClass = TargetClass.TOOL,
        *,
        target_id: Optional[str] = None,
        limit: Optional[int] = None,
        disclosure: DistanceDisclosure = DistanceDisclosure.BAND,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> list[NearbyItem]:
        """
        Find listed items within `radius_km` of `center`.

        Raises:
            InvalidLocationException: center out of range
            InvalidRadiusException: radius not in (0, LOCATION_MAX_RADIUS_KM]
            LocationRateLimitException: caller exceeded a search limit
            SuspiciousSearchPatternException: search completes a triangulation pattern
            SearchStoreException: audit log or item store unavailable
        """
        if not isinstance(center, Coordinate):
            try:
                lat, lng = center
            except (TypeError, ValueError):
                raise InvalidLocationException(str(center), None)
            if not Coordinate.is_valid(lat, lng):
                raise InvalidLocationException(lat, lng)
            center = Coordinate(lat, lng)
        radius_km = self._validate_radius(radius_km)
        target_class = TargetClass(target_class)
        search_type = target_class.search_type
        limit = max(1, limit or settings.LOCATION_NEARBY_DEFAULT_LIMIT)

        if not await self.security.validate_location_search(user_id, target_id):
            raise LocationRateLimitException()

        if await self.security.is_triangulation_attempt(user_id, target_id, search_type, center):
            try:
                await self.security.log_search(
                    user_id,
                    target_id,
                    search_type,
                    center,
                    user_agent=user_agent,
                    ip_address=ip_address,
                    search_radius_km=radius_km,
                    session_id=session_id,
                )
            except SearchStoreException as e:
                logger.error(f"Failed to record suspicious search for user {user_id}: {e.message}")
            raise SuspiciousSearchPatternException()

        start = time.perf_counter()
        bounds = privacy.bounding_box(center, radius_km)
        candidates = await self.item_store.items_near(bounds, target_class)

        hits: list[tuple[float, ListedItem]] = []
        for item in candidates:
            if not Coordinate.is_valid(item.latitude, item.longitude):
                continue
            if target_class == TargetClass.USER and user_id and item.owner_id == user_id:
                continue
            distance = privacy.great_circle_distance(center, Coordinate(item.latitude, item.longitude))
            if distance <= radius_km:
                hits.append((distance, item))

        hits.sort(key=lambda hit: (hit[0], str(hit[1].id)))
        results = [self._to_nearby_item(item, distance, disclosure) for distance, item in hits[:limit]]

        response_time_ms = int((time.perf_counter() - start) * 1000)
        await self.security.log_search(
            user_id,
            target_id,
            search_type,
            center,
            user_agent=user_agent,
            ip_address=ip_address,
            search_radius_km=radius_km,
            session_id=session_id,
            result_count=len(results),
            response_time_ms=response_time_ms,
        )

        track_location_search(search_type.value, "allowed")
        LOCATION_SEARCH_RESULTS.labels(search_type=search_type.value).observe(len(results))
        logger.info(
            f"Nearby {target_class.value} search returned {len(results)} results "
            f"in {response_time_ms}ms"
        )
        return results

    def _to_nearby_item(
        self,
        item: ListedItem,
        distance_km: float,
        disclosure: DistanceDisclosure,
    ) -> NearbyItem:
        band = self.security.distance_band(distance_km)
        approximate = self.security.jittered_location(
            Coordinate(item.latitude, item.longitude), item.privacy_level
        )
        fuzzed = None
        if disclosure == DistanceDisclosure.FUZZED:
            fuzzed = round(self.security.fuzzed_distance(distance_km), 1)

        return NearbyItem(
            item_id=item.id,
            name=item.name,
            target_class=item.target_class,
            location_display=item.location_display,
            approximate_latitude=approximate.latitude,
            approximate_longitude=approximate.longitude,
            distance_band=band,
            distance_text=self.security.distance_band_text(band),
            fuzzed_distance_km=fuzzed,
        )

    # ------------------------------------------------------------------
    # Clustering
    # ------------------------------------------------------------------

    def analyze_geographic_clusters(
        self,
        locations: list[LocationOption],
        radius_km: Optional[float] = None,
    ) -> list[GeographicCluster]:
        """
        Greedy single-link clustering in input order.

        Each location joins the first cluster whose centroid or any member
        lies within `radius_km`; otherwise it starts a new cluster.
        Locations without a valid coordinate are skipped.
        """
        radius = settings.LOCATION_DEFAULT_CLUSTER_RADIUS_KM if radius_km is None else radius_km
        if not math.isfinite(radius) or radius <= 0:
            raise InvalidRadiusException(radius, self.max_radius_km)

        groups: list[tuple[list[LocationOption], list[Coordinate]]] = []
        centroids: list[Coordinate] = []

        for location in locations:
            point = location.coordinate
            if point is None:
                continue

            for index, (members, points) in enumerate(groups):
                near_centroid = privacy.great_circle_distance(point, centroids[index]) <= radius
                if near_centroid or any(
                    privacy.great_circle_distance(point, p) <= radius for p in points
                ):
                    members.append(location)
                    points.append(point)
                    centroids[index] = _centroid(points)
                    break
            else:
                groups.append(([location], [point]))
                centroids.append(point)

        clusters = [
            self._build_cluster(members, points, centroid, radius)
            for (members, points), centroid in zip(groups, centroids)
        ]
        # Stable: equal counts keep creation order
        clusters.sort(key=lambda c: c.count, reverse=True)

        logger.info(f"Analyzed {len(locations)} locations into {len(clusters)} clusters")
        return clusters

    def _build_cluster(
        self,
        members: list[LocationOption],
        points: list[Coordinate],
        centroid: Coordinate,
        radius_km: float,
    ) -> GeographicCluster:
        # East and west are measured from the centroid, so a cluster across
        # the antimeridian gets west > east
        offsets = [privacy.longitude_offset(p.longitude, centroid.longitude) for p in points]
        bounds = LocationBounds(
            north=max(p.latitude for p in points),
            south=min(p.latitude for p in points),
            east=_shift_longitude(centroid.longitude, max(offsets)),
            west=_shift_longitude(centroid.longitude, min(offsets)),
        )
        area_km2 = (
            (bounds.north - bounds.south)
            * (max(offsets) - min(offsets))
            * privacy.KM_PER_DEGREE_LAT ** 2
        )
        density = len(points) / area_km2 if area_km2 > 0 else float(len(points))

        return GeographicCluster(
            label=_cluster_label(members),
            count=len(members),
            centroid=centroid,
            radius_km=radius_km,
            locations=members,
            bounds=bounds,
            density_score=density,
        )

    # ------------------------------------------------------------------
    # Listing-derived locations
    # ------------------------------------------------------------------

    @staticmethod
    def _aggregate_to_option(aggregate: LocationAggregate, count: int) -> LocationOption:
        return LocationOption(
            display_name=aggregate.display_name,
            city=aggregate.city,
            state=aggregate.state,
            country=aggregate.country,
            latitude=aggregate.latitude,
            longitude=aggregate.longitude,
            source=LocationSource.LISTINGS,
            confidence=min(1.0, count / POPULAR_CONFIDENCE_COUNT),
        )

    def _merge_aggregates(self, aggregates: list[LocationAggregate]) -> list[LocationOption]:
        """Merge aggregates whose display names normalize equally, most frequent first."""
        merged: dict[str, tuple[LocationAggregate, int]] = {}
        for aggregate in aggregates:
            key = normalize_location_name(aggregate.display_name)
            if key in merged:
                first, count = merged[key]
                merged[key] = (first, count + aggregate.count)
            else:
                merged[key] = (aggregate, aggregate.count)

        ranked = sorted(merged.values(), key=lambda pair: pair[1], reverse=True)
        return [self._aggregate_to_option(aggregate, count) for aggregate, count in ranked]

    async def get_popular_locations(self, limit: int = 10) -> list[LocationOption]:
        """Most common listing locations."""
        limit = max(1, limit)
        if self.popular_cache:
            cached = await self.popular_cache.get_popular(limit)
            if cached is not None:
                return [LocationOption.model_validate(item) for item in cached]

        # Over-fetch so names differing only in case or punctuation can merge
        aggregates = await self.item_store.location_counts(limit * 3)
        results = self._merge_aggregates(aggregates)[:limit]

        if self.popular_cache:
            await self.popular_cache.set_popular(limit, [r.model_dump(mode="json") for r in results])
        return results

    async def get_location_suggestions(
        self,
        query: str,
        limit: int = 5,
        user_id: Optional[str] = None,
    ) -> list[LocationOption]:
        """
        Autocomplete: listing locations first, then geocoding results that
        are not similar to anything already suggested.
        """
        if not query or not query.strip():
            return []
        limit = max(1, limit)

        if self.popular_cache:
            cached = await self.popular_cache.get_suggestions(query, limit)
            if cached is not None:
                return [LocationOption.model_validate(item) for item in cached]

        matches = await self.item_store.match_locations(query, max(1, limit // 2))
        suggestions = self._merge_aggregates(matches)[:limit]

        if len(suggestions) < limit:
            geocoded = await self.search_locations(
                query, limit=(limit - len(suggestions)) * 2, user_id=user_id
            )
            for candidate in geocoded:
                if not any(is_similar_location(s, candidate) for s in suggestions):
                    suggestions.append(candidate)
                    if len(suggestions) >= limit:
                        break

        results = suggestions[:limit]
        if self.popular_cache:
            await self.popular_cache.set_suggestions(
                query, limit, [r.model_dump(mode="json") for r in results]
            )
        logger.info(f"Returning {len(results)} location suggestions")
        return results

    async def invalidate_location_cache(self) -> int:
        """Drop cached geocoding, popular-location and suggestion entries."""
        deleted = 0
        if self.geocoding_cache:
            deleted += await self.geocoding_cache.invalidate()
        if self.popular_cache:
            deleted += await self.popular_cache.invalidate()
        logger.info(f"Invalidated {deleted} location cache entries")
        return deleted
