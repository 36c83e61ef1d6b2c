"""
Location API routes.

Geocoding, suggestions and proximity search. Proximity results never
include exact positions or distances.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from geoshield.api.dependencies import get_current_user_id, get_location_service
from geoshield.core.exceptions import InvalidLocationException, NotFoundException
from geoshield.core.rate_limit import RateLimits, limiter
from geoshield.models.listed_item import TargetClass
from geoshield.schemas.location import (
    ClusterListResponse,
    ClusterRequest,
    ClusterResponse,
    DistanceResponse,
    LocationSearchResponse,
    NearbySearchResponse,
)
from geoshield.services.geocoding.base import LocationOption
from geoshield.services.location_service import DistanceDisclosure, LocationService
from geoshield.services.security import privacy
from geoshield.services.security.privacy import Coordinate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/locations", tags=["locations"])


@router.get("/search", response_model=LocationSearchResponse)
@limiter.limit(RateLimits.GEOCODE_SEARCH)
async def search_locations(
    request: Request,
    q: str = Query(..., min_length=1, max_length=500, description="Address or place name"),
    limit: int = Query(5, ge=1, le=50),
    country_code: Optional[str] = Query(None, min_length=2, max_length=3),
    user_id: Optional[str] = Depends(get_current_user_id),
    service: LocationService = Depends(get_location_service),
) -> LocationSearchResponse:
    """Forward geocode a free-text query."""
    items = await service.search_locations(q, limit=limit, country_code=country_code, user_id=user_id)
    return LocationSearchResponse(items=items, count=len(items))


@router.get("/reverse", response_model=LocationOption)
@limiter.limit(RateLimits.GEOCODE_REVERSE)
async def reverse_geocode(
    request: Request,
    lat: float = Query(..., description="Latitude in degrees"),
    lng: float = Query(..., description="Longitude in degrees"),
    user_id: Optional[str] = Depends(get_current_user_id),
    service: LocationService = Depends(get_location_service),
) -> LocationOption:
    """Reverse geocode a coordinate."""
    if not service.validate_coordinates(lat, lng):
        raise InvalidLocationException(lat, lng)

    result = await service.reverse_geocode(lat, lng, user_id=user_id)
    if result is None:
        raise NotFoundException(message="No address found for these coordinates")
    return result


@router.get("/popular", response_model=LocationSearchResponse)
@limiter.limit(RateLimits.POPULAR)
async def popular_locations(
    request: Request,
    limit: int = Query(10, ge=1, le=50),
    service: LocationService = Depends(get_location_service),
) -> LocationSearchResponse:
    """Most common listing locations."""
    items = await service.get_popular_locations(limit)
    return LocationSearchResponse(items=items, count=len(items))


@router.get("/suggestions", response_model=LocationSearchResponse)
@limiter.limit(RateLimits.SUGGESTIONS)
async def location_suggestions(
    request: Request,
    q: str = Query(..., min_length=2, max_length=200),
    limit: int = Query(5, ge=1, le=20),
    user_id: Optional[str] = Depends(get_current_user_id),
    service: LocationService = Depends(get_location_service),
) -> LocationSearchResponse:
    """Autocomplete suggestions from listings and the geocoding provider."""
    items = await service.get_location_suggestions(q, limit=limit, user_id=user_id)
    return LocationSearchResponse(items=items, count=len(items))


@router.get("/nearby/{target_class}", response_model=NearbySearchResponse)
@limiter.limit(RateLimits.NEARBY_SEARCH)
async def nearby_items(
    request: Request,
    target_class: TargetClass,
    lat: float = Query(..., description="Search center latitude"),
    lng: float = Query(..., description="Search center longitude"),
    radius_km: float = Query(10.0, description="Search radius in km"),
    target_id: Optional[str] = Query(None, max_length=64),
    limit: Optional[int] = Query(None, ge=1, le=200),
    disclosure: DistanceDisclosure = Query(DistanceDisclosure.BAND),
    user_id: Optional[str] = Depends(get_current_user_id),
    service: LocationService = Depends(get_location_service),
) -> NearbySearchResponse:
    """
    Find listed items near a point.

    Searches are rate limited per user and per target, audited, and
    rejected when they complete a triangulation pattern.
    """
    items = await service.find_nearby_items(
        (lat, lng),
        radius_km,
        user_id=user_id,
        target_class=target_class,
        target_id=target_id,
        limit=limit,
        disclosure=disclosure,
        user_agent=request.headers.get("user-agent"),
        ip_address=request.client.host if request.client else None,
        session_id=request.headers.get("x-session-id"),
    )
    return NearbySearchResponse(
        target_class=target_class,
        radius_km=radius_km,
        count=len(items),
        items=items,
    )


@router.post("/clusters", response_model=ClusterListResponse)
@limiter.limit(RateLimits.CLUSTERS)
async def geographic_clusters(
    request: Request,
    body: ClusterRequest,
    service: LocationService = Depends(get_location_service),
) -> ClusterListResponse:
    """Group submitted locations into geographic clusters."""
    clusters = service.analyze_geographic_clusters(
        [location.to_option() for location in body.locations],
        body.radius_km,
    )
    return ClusterListResponse(
        clusters=[ClusterResponse.from_cluster(c) for c in clusters],
        total_locations=len(body.locations),
    )


@router.get("/distance", response_model=DistanceResponse)
@limiter.limit(RateLimits.DISTANCE)
async def distance_between(
    request: Request,
    from_lat: float = Query(..., ge=-90, le=90),
    from_lng: float = Query(..., ge=-180, le=180),
    to_lat: float = Query(..., ge=-90, le=90),
    to_lng: float = Query(..., ge=-180, le=180),
    service: LocationService = Depends(get_location_service),
) -> DistanceResponse:
    """Great-circle distance between two caller-supplied points."""
    distance = service.calculate_distance(Coordinate(from_lat, from_lng), Coordinate(to_lat, to_lng))
    band = privacy.distance_band_of(distance)
    return DistanceResponse(
        from_latitude=from_lat,
        from_longitude=from_lng,
        to_latitude=to_lat,
        to_longitude=to_lng,
        distance_km=round(distance, 3),
        distance_band=band,
        distance_text=privacy.band_text(band),
    )
