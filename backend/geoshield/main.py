"""
FastAPI application entry point.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded

from geoshield.api.routes import api_router
from geoshield.core.cache import cache
from geoshield.core.config import settings
from geoshield.core.database import check_db_connection, close_db, init_db
from geoshield.core.exceptions import register_exception_handlers
from geoshield.core.logging import RequestLoggingMiddleware, setup_logging
from geoshield.core.metrics import PrometheusMiddleware, metrics_endpoint, update_service_health
from geoshield.core.rate_limit import limiter, rate_limit_exceeded_handler
from geoshield.core.sentry import init_sentry
from geoshield.services.geocoding.factory import get_geocoding_provider

# Setup logging
setup_logging(
    level="DEBUG" if settings.DEBUG else settings.LOG_LEVEL,
    json_format=not settings.DEBUG,
)

logger = logging.getLogger(__name__)

settings.validate_production_settings()

# Initialize Sentry (if configured)
init_sentry()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    logger.info("Starting application...")
    await init_db()

    # Fail fast on an unknown provider name
    get_geocoding_provider()

    await _check_external_services()

    logger.info("Application started successfully")
    yield
    # Shutdown
    logger.info("Shutting down application...")
    await close_db()
    await cache.close()
    logger.info("Application shutdown complete")


async def _check_external_services():
    """Check and report health of external services on startup."""
    db_healthy = await check_db_connection()
    update_service_health("database", db_healthy)
    if not db_healthy:
        logger.warning("Database: unhealthy")

    redis_healthy = await cache.ping()
    update_service_health("redis", redis_healthy)
    if redis_healthy:
        logger.info("Redis service: healthy")
    else:
        logger.warning("Redis service: unhealthy, geocoding results will not be cached")


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Privacy-preserving geocoding and proximity search",
        openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
        docs_url=f"{settings.API_V1_PREFIX}/docs",
        redoc_url=f"{settings.API_V1_PREFIX}/redoc",
        lifespan=lifespan,
    )

    # Standardized exception handlers (must be registered first)
    register_exception_handlers(app)

    # Rate limiting
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

    # Prometheus metrics middleware
    if settings.METRICS_ENABLED:
        app.add_middleware(PrometheusMiddleware)

    # Request logging middleware
    app.add_middleware(RequestLoggingMiddleware)

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include API router
    app.include_router(api_router, prefix=settings.API_V1_PREFIX)

    # Metrics endpoint (outside API prefix)
    if settings.METRICS_ENABLED:
        app.add_api_route(
            settings.METRICS_PATH,
            metrics_endpoint,
            methods=["GET"],
            include_in_schema=False,
        )

    logger.info(f"Application configured: {settings.APP_NAME} v{settings.APP_VERSION}")

    return app


app = create_app()


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "docs": f"{settings.API_V1_PREFIX}/docs",
        "metrics": settings.METRICS_PATH if settings.METRICS_ENABLED else None,
    }
