"""
API routes module.
"""

from fastapi import APIRouter

from geoshield.api.routes import health, locations

# Main API router (mounted at /api/v1)
api_router = APIRouter()

api_router.include_router(health.router)
api_router.include_router(locations.router)
