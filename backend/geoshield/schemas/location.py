"""
Location API schemas.
"""
from typing import Optional

from pydantic import BaseModel, Field

from geoshield.models.listed_item import TargetClass
from geoshield.schemas.validators import (
    Latitude,
    LatitudeOptional,
    Longitude,
    LongitudeOptional,
)
from geoshield.services.geocoding.base import LocationOption, LocationSource
from geoshield.services.location_service import GeographicCluster, NearbyItem
from geoshield.services.security.privacy import DistanceBand


class LocationSearchResponse(BaseModel):
    """Geocoding or suggestion results."""
    items: list[LocationOption]
    count: int


class LocationInput(BaseModel):
    """A location submitted for clustering."""
    display_name: str = Field(
        ...,
        min_length=1,
        max_length=500,
        json_schema_extra={"example": "Athens, Georgia, United States"}
    )
    area: Optional[str] = Field(None, max_length=100)
    city: Optional[str] = Field(None, max_length=100, json_schema_extra={"example": "Athens"})
    state: Optional[str] = Field(None, max_length=100, json_schema_extra={"example": "Georgia"})
    country: Optional[str] = Field(None, max_length=100)
    latitude: LatitudeOptional = Field(default=None, json_schema_extra={"example": 33.9519})
    longitude: LongitudeOptional = Field(default=None, json_schema_extra={"example": -83.3576})

    def to_option(self) -> LocationOption:
        return LocationOption(
            display_name=self.display_name,
            area=self.area,
            city=self.city,
            state=self.state,
            country=self.country,
            latitude=self.latitude,
            longitude=self.longitude,
            source=LocationSource.MANUAL,
        )


class ClusterRequest(BaseModel):
    """Request body for geographic clustering."""
    locations: list[LocationInput] = Field(..., max_length=1000)
    radius_km: Optional[float] = Field(
        None,
        gt=0,
        le=1000,
        allow_inf_nan=False,
        description="Clustering radius in km (defaults to LOCATION_DEFAULT_CLUSTER_RADIUS_KM)",
    )


class BoundsResponse(BaseModel):
    north: float
    south: float
    east: float
    west: float


class ClusterResponse(BaseModel):
    """One geographic cluster."""
    label: str
    count: int
    centroid_latitude: float
    centroid_longitude: float
    radius_km: float
    density_score: float
    bounds: Optional[BoundsResponse] = None
    locations: list[LocationOption]

    @classmethod
    def from_cluster(cls, cluster: GeographicCluster) -> "ClusterResponse":
        bounds = None
        if cluster.bounds is not None:
            bounds = BoundsResponse(
                north=cluster.bounds.north,
                south=cluster.bounds.south,
                east=cluster.bounds.east,
                west=cluster.bounds.west,
            )
        return cls(
            label=cluster.label,
            count=cluster.count,
            centroid_latitude=cluster.centroid.latitude,
            centroid_longitude=cluster.centroid.longitude,
            radius_km=cluster.radius_km,
            density_score=cluster.density_score,
            bounds=bounds,
            locations=cluster.locations,
        )


class ClusterListResponse(BaseModel):
    clusters: list[ClusterResponse]
    total_locations: int


class NearbySearchResponse(BaseModel):
    """Proximity search results. Distances are banded or fuzzed."""
    target_class: TargetClass
    radius_km: float
    count: int
    items: list[NearbyItem]


class DistanceResponse(BaseModel):
    """Distance between two caller-supplied points."""
    from_latitude: Latitude
    from_longitude: Longitude
    to_latitude: Latitude
    to_longitude: Longitude
    distance_km: float
    distance_band: DistanceBand
    distance_text: str
