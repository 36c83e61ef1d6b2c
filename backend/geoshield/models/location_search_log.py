"""
Search audit log model.

One row per location-revealing search. Rows are append-only: the
suspicious flag is decided before insert and never changed afterwards.
"""
import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Float, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from geoshield.core.database import Base
from geoshield.models.base import SoftDeleteMixin, UUIDMixin


class SearchType(str, enum.Enum):
    """What kind of entity a search is looking for."""

    TOOL_SEARCH = "tool_search"
    BUNDLE_SEARCH = "bundle_search"
    USER_SEARCH = "user_search"
    PROXIMITY_SEARCH = "proximity_search"
    GEOCODING = "geocoding"


class LocationSearchLog(Base, UUIDMixin, SoftDeleteMixin):
    """
    Audit entry for a single location search.
    """

    __tablename__ = "location_search_logs"

    # Who searched
    user_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    target_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    search_type: Mapped[str] = mapped_column(String(32), nullable=False)

    # Where
    search_lat: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    search_lng: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    search_radius_km: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    search_query: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # Request context
    user_agent: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)
    session_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Abuse detection
    is_suspicious: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    suspicious_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Outcome
    result_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    response_time_ms: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Assigned by the service clock, never by the caller
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_location_search_logs_user_created", "user_id", "created_at"),
        Index("ix_location_search_logs_user_target_created", "user_id", "target_id", "created_at"),
        Index("ix_location_search_logs_search_type", "search_type"),
        Index("ix_location_search_logs_suspicious", "is_suspicious"),
    )

    @property
    def has_coordinates(self) -> bool:
        return self.search_lat is not None and self.search_lng is not None

    def __repr__(self) -> str:
        return f"<LocationSearchLog {self.search_type} user={self.user_id} target={self.target_id}>"
