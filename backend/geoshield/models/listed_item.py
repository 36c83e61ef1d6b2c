"""
Listed item model (read-only view of marketplace listings).

The marketplace owns writes to this table. This service only reads the
location fields needed for proximity search.
"""
import enum
from typing import Optional

from sqlalchemy import Boolean, Enum, Float, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from geoshield.core.database import Base
from geoshield.models.base import SoftDeleteMixin, TimestampMixin, UUIDMixin
from geoshield.models.location_search_log import SearchType


class PrivacyLevel(str, enum.Enum):
    """
    How much positional precision a listing discloses.

    Each level maps to a grid cell size in degrees.
    """

    EXACT = "exact"
    DISTRICT = "district"
    ZIP_CODE = "zip_code"
    NEIGHBORHOOD = "neighborhood"

    @property
    def grid_size(self) -> float:
        return _GRID_SIZES[self]


_GRID_SIZES = {
    PrivacyLevel.EXACT: 0.0001,  # ~11m
    PrivacyLevel.DISTRICT: 0.001,  # ~111m
    PrivacyLevel.ZIP_CODE: 0.01,  # ~1.1km
    PrivacyLevel.NEIGHBORHOOD: 0.1,  # ~11km
}


class TargetClass(str, enum.Enum):
    """Kind of listing a proximity search returns."""

    TOOL = "tool"
    BUNDLE = "bundle"
    USER = "user"

    @property
    def search_type(self) -> SearchType:
        return _SEARCH_TYPES[self]


_SEARCH_TYPES = {
    TargetClass.TOOL: SearchType.TOOL_SEARCH,
    TargetClass.BUNDLE: SearchType.BUNDLE_SEARCH,
    TargetClass.USER: SearchType.USER_SEARCH,
}


class ListedItem(Base, UUIDMixin, TimestampMixin, SoftDeleteMixin):
    """
    A location-bearing listing: a tool, a bundle or a public user profile.
    """

    __tablename__ = "listed_items"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    target_class: Mapped[TargetClass] = mapped_column(
        Enum(TargetClass, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    owner_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    # Geolocation
    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    location_display: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    area: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    state: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    country: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    privacy_level: Mapped[PrivacyLevel] = mapped_column(
        Enum(PrivacyLevel, values_callable=lambda e: [m.value for m in e]),
        default=PrivacyLevel.NEIGHBORHOOD,
        nullable=False,
    )

    # Status
    is_available: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (
        Index("ix_listed_items_class_lat_lng", "target_class", "latitude", "longitude"),
    )

    def __repr__(self) -> str:
        return f"<ListedItem {self.target_class.value}:{self.name}>"
