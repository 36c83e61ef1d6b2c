"""
Pydantic schemas for API request/response models.
"""

from geoshield.schemas.location import (
    BoundsResponse,
    ClusterListResponse,
    ClusterRequest,
    ClusterResponse,
    DistanceResponse,
    LocationInput,
    LocationSearchResponse,
    NearbySearchResponse,
)

__all__ = [
    "BoundsResponse",
    "ClusterListResponse",
    "ClusterRequest",
    "ClusterResponse",
    "DistanceResponse",
    "LocationInput",
    "LocationSearchResponse",
    "NearbySearchResponse",
]
