"""
Database models.
"""
from geoshield.models.base import SoftDeleteMixin, TimestampMixin, UUIDMixin
from geoshield.models.location_search_log import LocationSearchLog, SearchType
from geoshield.models.listed_item import ListedItem, PrivacyLevel, TargetClass

__all__ = [
    "SoftDeleteMixin",
    "TimestampMixin",
    "UUIDMixin",
    "LocationSearchLog",
    "SearchType",
    "ListedItem",
    "PrivacyLevel",
    "TargetClass",
]
