"""Pytest configuration and fixtures."""

import os

# Settings are read once at import time
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-library-api")
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["NOTIFICATIONS_ENABLED"] = "false"

from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

from library_api.core.config import get_settings
from library_api.core.database import get_session
from library_api.core.security import get_password_hash
from library_api.main import app
from library_api.models import User, UserRole
from library_api.routers.books import get_event_publisher
from library_api.schemas.events import BookEvent


# Test database URL (in-memory SQLite shared through one connection)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


class RecordingPublisher:
    """Keeps published events in memory instead of sending them to Redis."""

    def __init__(self):
        self.events: list[BookEvent] = []

    async def publish(self, event: BookEvent) -> str:
        self.events.append(event)
        return f"{len(self.events)}-0"


@pytest.fixture
def settings():
    return get_settings()


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def test_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest_asyncio.fixture(scope="function")
async def client(test_session, publisher) -> AsyncGenerator[AsyncClient, None]:
    """Create test HTTP client with overridden dependencies."""

    async def override_get_session():
        yield test_session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_event_publisher] = lambda: publisher

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


async def _create_user(session: AsyncSession, **fields) -> User:
    user = User(**fields)
    session.add(user)
    await session.commit()
    await session.refresh(user)
    return user


@pytest_asyncio.fixture(scope="function")
async def admin_user(test_session) -> User:
    """Create admin user for testing."""
    return await _create_user(
        test_session,
        name="Admin User",
        email="admin@test.com",
        hashed_password=get_password_hash("admin123"),
        role=UserRole.ADMIN,
    )


@pytest_asyncio.fixture(scope="function")
async def reader_user(test_session) -> User:
    """Create reader user for testing."""
    return await _create_user(
        test_session,
        name="Reader User",
        email="reader@test.com",
        hashed_password=get_password_hash("reader123"),
        role=UserRole.READER,
    )


@pytest.fixture
def login(client):
    """Log in through the API; the client keeps the session cookies."""

    async def _login(email: str, password: str):
        return await client.post(
            "/api/v1/auth/login",
            json={"email": email, "password": password},
        )

    return _login


@pytest_asyncio.fixture(scope="function")
async def admin_client(client, admin_user, login) -> AsyncClient:
    """Client holding an admin session."""
    response = await login("admin@test.com", "admin123")
    assert response.status_code == 200
    return client


@pytest_asyncio.fixture(scope="function")
async def reader_client(client, reader_user, login) -> AsyncClient:
    """Client holding a reader session."""
    response = await login("reader@test.com", "reader123")
    assert response.status_code == 200
    return client
