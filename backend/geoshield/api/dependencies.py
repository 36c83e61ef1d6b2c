"""
Request-scoped dependencies for the location API.
"""
from typing import Optional

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from geoshield.core.cache import cache
from geoshield.core.database import get_db
from geoshield.repositories.item_store import SqlItemStore
from geoshield.repositories.search_audit import SearchAuditRepository
from geoshield.services.geocoding.factory import get_geocoding_provider
from geoshield.services.location_service import LocationService
from geoshield.services.security.engine import LocationSecurityEngine


def get_current_user_id(request: Request) -> Optional[str]:
    """
    Acting user id, set on request.state.user by the marketplace's auth
    middleware. None for anonymous callers.
    """
    user = getattr(request.state, "user", None)
    if user is None:
        return None
    user_id = getattr(user, "id", user)
    return str(user_id) if user_id else None


def get_security_engine(db: AsyncSession = Depends(get_db)) -> LocationSecurityEngine:
    return LocationSecurityEngine(SearchAuditRepository(db))


def get_location_service(
    db: AsyncSession = Depends(get_db),
    security: LocationSecurityEngine = Depends(get_security_engine),
) -> LocationService:
    return LocationService(
        provider=get_geocoding_provider(),
        security=security,
        item_store=SqlItemStore(db),
        cache=cache,
    )
