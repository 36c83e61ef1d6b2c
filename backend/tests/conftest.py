"""
Pytest configuration and fixtures.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("GEOCODING_PROVIDER", "mock")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("REDIS_URL", "redis://localhost:6399/15")

from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Optional
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from geoshield.core.config import LocationSecurityConfig
from geoshield.core.database import Base, get_db
from geoshield.models.listed_item import ListedItem, PrivacyLevel, TargetClass
from geoshield.repositories.item_store import SqlItemStore
from geoshield.repositories.search_audit import SearchAuditRepository
from geoshield.services.geocoding.mock_provider import MockGeocodingProvider
from geoshield.services.location_service import LocationService
from geoshield.services.security.engine import LocationSecurityEngine


# Test database URL (use SQLite for tests)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


class FrozenClock:
    """Controllable UTC clock for time-window tests."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest_asyncio.fixture(scope="function")
async def async_engine():
    """Create async engine for tests."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(async_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for tests."""
    async_session = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with async_session() as session:
        yield session


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def security_config() -> LocationSecurityConfig:
    """Thresholds small enough to reach in a test."""
    return LocationSecurityConfig(
        max_searches_per_hour=10,
        max_searches_per_target=5,
        min_search_interval_seconds=0,
        enable_triangulation_detection=True,
        triangulation_min_distance_km=1.0,
        triangulation_time_window_hours=24,
        triangulation_min_search_points=3,
        log_all_searches=True,
    )


@pytest.fixture
def audit_repository(db_session) -> SearchAuditRepository:
    return SearchAuditRepository(db_session)


@pytest.fixture
def security_engine(audit_repository, security_config, clock) -> LocationSecurityEngine:
    return LocationSecurityEngine(audit_repository, config=security_config, clock=clock)


@pytest.fixture
def location_service(security_engine, db_session) -> LocationService:
    """Service over the mock gazetteer, without Redis."""
    return LocationService(
        provider=MockGeocodingProvider(),
        security=security_engine,
        item_store=SqlItemStore(db_session),
    )


@pytest.fixture
def make_item(db_session):
    """Insert a listed item and return it."""

    async def _make(
        latitude: float,
        longitude: float,
        name: str = "Cordless Drill",
        target_class: TargetClass = TargetClass.TOOL,
        privacy_level: PrivacyLevel = PrivacyLevel.NEIGHBORHOOD,
        **fields,
    ) -> ListedItem:
        item = ListedItem(
            id=uuid4(),
            name=name,
            target_class=target_class,
            latitude=latitude,
            longitude=longitude,
            privacy_level=privacy_level,
            is_available=fields.pop("is_available", True),
            is_deleted=fields.pop("is_deleted", False),
            **fields,
        )
        db_session.add(item)
        await db_session.commit()
        return item

    return _make


@pytest_asyncio.fixture(scope="function")
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Create test client with overridden dependencies."""
    from geoshield.api.dependencies import get_location_service
    from geoshield.main import app

    async def override_get_db():
        yield db_session

    def override_location_service() -> LocationService:
        return LocationService(
            provider=MockGeocodingProvider(),
            security=LocationSecurityEngine(SearchAuditRepository(db_session)),
            item_store=SqlItemStore(db_session),
        )

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_location_service] = override_location_service

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
