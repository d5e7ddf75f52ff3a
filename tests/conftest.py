import pytest
from datetime import datetime, timedelta
from typing import AsyncGenerator

import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from pick_alerts.db.models import Base
from pick_alerts.schemas.notification_schemas import EventSelection, UpcomingEvent
from pick_alerts.services.notifications.permission_gate import PermissionGate

from tests.fakes import KICKOFF, FakeClientRegistry, FakeClock, FakePlatform


# Test database setup
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture
async def test_engine():
    """Create a fresh in-memory database for each test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=test_engine, class_=AsyncSession, expire_on_commit=False
    )


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def kickoff() -> datetime:
    return KICKOFF


@pytest.fixture
def clock() -> FakeClock:
    """Clock standing one hour before kick-off"""
    return FakeClock(KICKOFF - timedelta(hours=1))


@pytest.fixture
def sample_event() -> UpcomingEvent:
    return UpcomingEvent(
        id="evt-1001",
        title="Real Madrid vs Barcelona",
        start_time=KICKOFF,
        selections=[
            EventSelection(
                home_team="Real Madrid", away_team="Barcelona", market="Over 2.5 goals"
            )
        ],
    )


@pytest.fixture
def platform() -> FakePlatform:
    return FakePlatform(permission="granted")


@pytest.fixture
def permission_gate(platform) -> PermissionGate:
    return PermissionGate(platform)


@pytest.fixture
def client_registry() -> FakeClientRegistry:
    return FakeClientRegistry()
