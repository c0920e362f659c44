"""
Test configuration and fixtures.
Uses SQLite in-memory for fast tests. Mocks all external services.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("STRAVA_CLIENT_ID", "12345")
os.environ.setdefault("STRAVA_CLIENT_SECRET", "test_client_secret")
os.environ.setdefault("STRAVA_WEBHOOK_VERIFY_TOKEN", "test_verify_token")

import pytest
from datetime import timedelta
from unittest.mock import AsyncMock, patch
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.pool import StaticPool

from pacefund.database import Base
import pacefund.models  # noqa: F401  (registers tables on Base.metadata)
from pacefund.models.principal import Principal
from pacefund.utils.timezone import utcnow


# Register JSONB as JSON for SQLite compatibility in tests
@compiles(JSONB, "sqlite")
def _compile_jsonb_sqlite(type_, compiler, **kw):
    return "JSON"


@pytest.fixture
async def db_engine():
    """In-memory SQLite engine shared by every session in a test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    """Callable returning fresh sessions, injected into services under test."""
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    """A session for arranging and asserting database state."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def mock_redis():
    """Mock for async Redis — prevents real Redis calls in tests."""
    redis_mock = AsyncMock()
    redis_mock.set = AsyncMock(return_value=True)
    redis_mock.get = AsyncMock(return_value=None)
    redis_mock.ping = AsyncMock(return_value=True)
    redis_mock.eval = AsyncMock(return_value=1)
    redis_mock.delete = AsyncMock(return_value=1)
    with patch("pacefund.utils.redis_client.get_redis", new_callable=AsyncMock, return_value=redis_mock):
        yield redis_mock


@pytest.fixture
def mock_strava():
    """StravaClient stand-in — no real HTTP calls."""
    strava = AsyncMock()
    strava.refresh_access_token = AsyncMock(return_value={
        "access_token": "new_access_token",
        "refresh_token": "new_refresh_token",
        "expires_in": 21600,
    })
    strava.fetch_activity = AsyncMock(return_value=sample_activity_payload())
    return strava


def sample_activity_payload(activity_id: int = 555, name: str = "Morning Run") -> dict:
    return {
        "id": activity_id,
        "name": name,
        "sport_type": "Run",
        "type": "Run",
        "distance": 5012.3,
        "moving_time": 1623,
        "start_date": "2023-11-14T22:13:20Z",
        "athlete": {"id": 42},
    }


@pytest.fixture
async def connected_principal(db):
    """Principal 42 with a credential that is valid for another hour."""
    principal = Principal(
        id=42,
        username="runner42",
        first_name="Test",
        last_name="Runner",
        access_token="valid_access_token",
        refresh_token="valid_refresh_token",
        token_expires_at=utcnow() + timedelta(hours=1),
    )
    db.add(principal)
    await db.commit()
    return principal


@pytest.fixture
def sample_webhook_payload():
    return {
        "object_type": "activity",
        "object_id": 555,
        "aspect_type": "create",
        "owner_id": 42,
        "event_time": 1700000000,
        "subscription_id": 999,
        "updates": {},
    }
