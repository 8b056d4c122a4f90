"""
Pytest fixtures for test database, client, gateway, and authentication.

Each test gets a fresh database (in-memory SQLite by default, or
TEST_DATABASE_URL) with tables created up front and dropped afterwards.
The inventory gateway is the in-process one, sharing the test session so
both authorities see the same data.
"""

import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone, timedelta
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from hotel_booking.main import app
from hotel_booking.db.base import Base
from hotel_booking.db.session import get_db
from hotel_booking.core.context import RequestContext
from hotel_booking.core.security import create_access_token
from hotel_booking.models import Hotel, Room, User
from hotel_booking.services.gateway_factory import get_inventory_gateway
from hotel_booking.services.interfaces.local_inventory import LocalInventoryGateway

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite+aiosqlite:///:memory:")

# SQLite ignores FOR UPDATE; tests that race real row locks need PostgreSQL
requires_postgres = pytest.mark.skipif(
    not TEST_DATABASE_URL.startswith("postgresql"),
    reason="row-lock races need TEST_DATABASE_URL pointing at PostgreSQL",
)


def _engine_kwargs() -> dict:
    if TEST_DATABASE_URL.startswith("sqlite"):
        return {"poolclass": StaticPool, "connect_args": {"check_same_thread": False}}
    return {}


@pytest_asyncio.fixture(scope="function")
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """Create tables, yield the engine, then drop tables for isolation."""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False, **_engine_kwargs())
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker:
    """Factory for extra sessions, e.g. a second actor racing the test session."""
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory: async_sessionmaker) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def local_gateway(db_session: AsyncSession) -> LocalInventoryGateway:
    """In-process gateway whose units of work run on the test session."""

    @asynccontextmanager
    async def shared_session():
        yield db_session

    return LocalInventoryGateway(shared_session)


@pytest_asyncio.fixture(scope="function")
async def client(
    db_session: AsyncSession,
    local_gateway: LocalInventoryGateway,
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client that overrides the DB and gateway dependencies."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_inventory_gateway] = lambda: local_gateway

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def ctx() -> RequestContext:
    return RequestContext(correlation_id="corr-test-0001")


@pytest.fixture
def stay() -> tuple[datetime, datetime]:
    """A three-night stay starting next week."""
    start = datetime.now(timezone.utc).replace(microsecond=0) + timedelta(days=7)
    return start, start + timedelta(days=3)


async def _add(db_session: AsyncSession, obj):
    db_session.add(obj)
    await db_session.commit()
    await db_session.refresh(obj)
    return obj


@pytest_asyncio.fixture
async def test_user(db_session: AsyncSession) -> User:
    return await _add(db_session, User(email="test@example.com", username="testuser"))


@pytest_asyncio.fixture
async def other_user(db_session: AsyncSession) -> User:
    return await _add(db_session, User(email="other@example.com", username="otheruser"))


@pytest.fixture
def auth_headers(test_user: User) -> dict:
    """Authorization headers with Bearer token."""
    token = create_access_token(data={"sub": str(test_user.id)})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def other_auth_headers(other_user: User) -> dict:
    token = create_access_token(data={"sub": str(other_user.id)})
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def hotel(db_session: AsyncSession) -> Hotel:
    return await _add(db_session, Hotel(name="Test Hotel", address="1 Test Street"))


@pytest.fixture
def make_room(db_session: AsyncSession, hotel: Hotel):
    """Factory: create a room with any column overrides."""

    async def _make(**overrides) -> Room:
        fields = {"hotel_id": hotel.id, "number": "101", "available": True, "times_booked": 0}
        fields.update(overrides)
        return await _add(db_session, Room(**fields))

    return _make


@pytest_asyncio.fixture
async def room(make_room) -> Room:
    """An available, unheld room."""
    return await make_room(number="201")
