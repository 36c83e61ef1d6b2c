"""
Health check endpoints.
"""
from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from geoshield.core.cache import cache
from geoshield.core.database import get_db
from geoshield.core.metrics import update_service_health
from geoshield.core.rate_limit import RateLimits, limiter
from geoshield.services.geocoding.factory import get_geocoding_provider

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check() -> dict:
    """Basic health check."""
    return {"status": "healthy"}


@router.get("/health/detailed")
@limiter.limit(RateLimits.HEALTH)
async def detailed_health_check(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> dict:
    """Detailed health check including dependencies."""
    checks = {
        "api": "healthy",
        "database": "unknown",
        "redis": "unknown",
    }

    # Check database
    try:
        await db.execute(text("SELECT 1"))
        checks["database"] = "healthy"
    except SQLAlchemyError as e:
        checks["database"] = f"unhealthy: {str(e)}"
    update_service_health("database", checks["database"] == "healthy")

    # Check Redis (cache only; the service degrades to uncached)
    redis_ok = await cache.ping()
    checks["redis"] = "healthy" if redis_ok else "unhealthy"
    update_service_health("redis", redis_ok)

    overall = "healthy" if all(
        v == "healthy" for v in checks.values()
    ) else "degraded"

    return {
        "status": overall,
        "checks": checks,
        "geocoding_provider": get_geocoding_provider().provider_name,
    }
