"""
Search audit log storage.

Append and time-window queries over `location_search_logs`. All rate
limit and triangulation state is derived from these queries; nothing is
counted in process memory.
"""
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from geoshield.core.exceptions import SearchStoreException
from geoshield.models.location_search_log import LocationSearchLog

logger = logging.getLogger(__name__)


class SearchAuditRepository:
    """Async repository for search audit entries."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, entry: LocationSearchLog) -> LocationSearchLog:
        """Persist one entry and commit."""
        try:
            self.session.add(entry)
            await self.session.commit()
            await self.session.refresh(entry)
            return entry
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(f"Failed to persist location search log: {e}")
            raise SearchStoreException() from e

    async def count_since(
        self,
        user_id: str,
        since: datetime,
        target_id: Optional[str] = None,
    ) -> int:
        """Count non-deleted entries for a user (optionally a target) created at or after `since`."""
        query = select(func.count(LocationSearchLog.id)).where(
            LocationSearchLog.user_id == user_id,
            LocationSearchLog.created_at >= since,
            LocationSearchLog.is_deleted.is_(False),
        )
        if target_id is not None:
            query = query.where(LocationSearchLog.target_id == target_id)

        try:
            return int(await self.session.scalar(query) or 0)
        except SQLAlchemyError as e:
            logger.error(f"Failed to count location searches: {e}")
            raise SearchStoreException() from e

    async def coordinate_history(
        self,
        user_id: Optional[str],
        target_id: Optional[str],
        search_type: str,
        since: datetime,
    ) -> list[tuple[float, float]]:
        """
        Coordinates of prior searches in the same (user, target, type) scope.

        A null user or target matches only null, so unrelated scopes
        never share history.
        """
        query = select(LocationSearchLog.search_lat, LocationSearchLog.search_lng).where(
            LocationSearchLog.search_type == search_type,
            LocationSearchLog.created_at >= since,
            LocationSearchLog.is_deleted.is_(False),
            LocationSearchLog.search_lat.is_not(None),
            LocationSearchLog.search_lng.is_not(None),
        )
        query = query.where(
            LocationSearchLog.user_id.is_(None) if user_id is None
            else LocationSearchLog.user_id == user_id
        )
        query = query.where(
            LocationSearchLog.target_id.is_(None) if target_id is None
            else LocationSearchLog.target_id == target_id
        )
        query = query.order_by(LocationSearchLog.created_at)

        try:
            result = await self.session.execute(query)
            return [(float(lat), float(lng)) for lat, lng in result.all()]
        except SQLAlchemyError as e:
            logger.error(f"Failed to load search coordinate history: {e}")
            raise SearchStoreException() from e

