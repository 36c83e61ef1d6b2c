"""
Read-only access to location-bearing marketplace listings.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Sequence

from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from geoshield.core.exceptions import SearchStoreException
from geoshield.models.listed_item import ListedItem, TargetClass
from geoshield.services.security.privacy import LocationBounds

logger = logging.getLogger(__name__)


@dataclass
class LocationAggregate:
    """Listings grouped by their public location text."""

    display_name: str
    city: Optional[str]
    state: Optional[str]
    country: Optional[str]
    latitude: Optional[float]
    longitude: Optional[float]
    count: int


class ItemStore(ABC):
    """Item lookups used by proximity search."""

    @abstractmethod
    async def items_near(self, bounds: LocationBounds, target_class: TargetClass) -> Sequence[ListedItem]:
        pass

    @abstractmethod
    async def location_counts(self, limit: int) -> list[LocationAggregate]:
        pass

    @abstractmethod
    async def match_locations(self, query: str, limit: int) -> list[LocationAggregate]:
        pass


class SqlItemStore(ItemStore):
    """ItemStore over the `listed_items` table."""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _visible(self):
        return (
            ListedItem.is_available.is_(True),
            ListedItem.is_deleted.is_(False),
            ListedItem.latitude.is_not(None),
            ListedItem.longitude.is_not(None),
        )

    async def items_near(self, bounds: LocationBounds, target_class: TargetClass) -> Sequence[ListedItem]:
        query = select(ListedItem).where(
            ListedItem.target_class == target_class,
            *self._visible(),
            ListedItem.latitude.between(bounds.south, bounds.north),
        )
        if not bounds.spans_all_longitudes:
            query = query.where(ListedItem.longitude.between(bounds.west, bounds.east))

        try:
            result = await self.session.execute(query)
            return result.scalars().all()
        except SQLAlchemyError as e:
            logger.error(f"Item store query failed: {e}")
            raise SearchStoreException() from e

    async def _aggregate(self, limit: int, *criteria) -> list[LocationAggregate]:
        count = func.count(ListedItem.id)
        query = (
            select(
                ListedItem.location_display,
                func.max(ListedItem.city),
                func.max(ListedItem.state),
                func.max(ListedItem.country),
                func.avg(ListedItem.latitude),
                func.avg(ListedItem.longitude),
                count,
            )
            .where(*self._visible(), ListedItem.location_display.is_not(None), *criteria)
            .group_by(ListedItem.location_display)
            .order_by(count.desc(), ListedItem.location_display)
            .limit(limit)
        )
        try:
            result = await self.session.execute(query)
        except SQLAlchemyError as e:
            logger.error(f"Item location aggregation failed: {e}")
            raise SearchStoreException() from e

        return [
            LocationAggregate(
                display_name=display,
                city=city,
                state=state,
                country=country,
                latitude=float(lat) if lat is not None else None,
                longitude=float(lng) if lng is not None else None,
                count=int(n),
            )
            for display, city, state, country, lat, lng, n in result.all()
            if display and display.strip()
        ]

    async def location_counts(self, limit: int) -> list[LocationAggregate]:
        return await self._aggregate(limit)

    async def match_locations(self, query: str, limit: int) -> list[LocationAggregate]:
        pattern = f"%{query.strip()}%"
        return await self._aggregate(
            limit,
            or_(
                ListedItem.location_display.ilike(pattern),
                ListedItem.city.ilike(pattern),
                ListedItem.state.ilike(pattern),
            ),
        )
