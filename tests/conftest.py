import os
import tempfile
from typing import Any, AsyncGenerator

# Settings are read at import time, so the test environment goes first
os.environ.setdefault("SECRET", "test-secret-key-for-chatcore")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ATTACHMENT_LOCAL_DIR", tempfile.mkdtemp(prefix="chatcore-attachments-"))

import pytest
from fastapi import Depends, FastAPI
from fastapi_users.db import SQLAlchemyUserDatabase
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from chatcore.db import get_db_session, get_user_db
from chatcore.main import app
from chatcore.models import User, metadata
from chatcore.realtime.presence_debouncer import PresenceThrottle, get_presence_throttle
from chatcore.repositories.user_repository import UserRepository
from chatcore.schemas.user import UserCreate, UserRole
from chatcore.storage import get_attachment_storage
from test_helpers import InMemoryStorage, create_user_with_manager, login

# Use an in-memory SQLite database for testing
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

test_engine = create_async_engine(TEST_DATABASE_URL, poolclass=StaticPool)
test_async_session_maker = async_sessionmaker(test_engine, expire_on_commit=False)

TEST_USER_EMAIL = "testuser@example.com"
TEST_USER_PASSWORD = "password123"


# Master fixture to manage table creation/dropping and provide session maker
@pytest.fixture(scope="function")
async def db_test_session_manager() -> (
    AsyncGenerator[async_sessionmaker[AsyncSession], None]
):
    async with test_engine.begin() as conn:
        await conn.run_sync(metadata.create_all)

    yield test_async_session_maker

    async with test_engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)


@pytest.fixture(scope="function")
async def db_session(
    db_test_session_manager: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """A single session for service and repository level tests."""
    async with db_test_session_manager() as session:
        yield session


# Override for the raw AsyncSession dependency
async def override_get_db_session() -> AsyncGenerator[AsyncSession, None]:
    async with test_async_session_maker() as session:
        yield session


# Override for the FastAPI Users DB adapter dependency
async def override_get_user_db(
    session: AsyncSession = Depends(get_db_session),
) -> SQLAlchemyUserDatabase[User, Any]:
    yield SQLAlchemyUserDatabase(session, User)


@pytest.fixture(scope="function")
def attachment_storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture(scope="function")
async def presence_throttle(
    db_test_session_manager: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[PresenceThrottle, None]:
    """Throttle whose window never closes on its own; tests flush explicitly."""
    throttle = PresenceThrottle(db_test_session_manager, interval=60)
    yield throttle
    await throttle.flush_all()


@pytest.fixture(scope="function")
def test_app(
    db_test_session_manager: async_sessionmaker[AsyncSession],
    attachment_storage: InMemoryStorage,
    presence_throttle: PresenceThrottle,
) -> FastAPI:
    app.dependency_overrides[get_db_session] = override_get_db_session
    app.dependency_overrides[get_user_db] = override_get_user_db
    app.dependency_overrides[get_attachment_storage] = lambda: attachment_storage
    app.dependency_overrides[get_presence_throttle] = lambda: presence_throttle
    yield app
    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
async def test_client(test_app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(
        transport=ASGITransport(app=test_app),
        base_url="http://test",
    ) as client:
        yield client


@pytest.fixture(scope="function")
async def authenticated_client(
    test_client: AsyncClient,
    db_test_session_manager: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncClient, None]:
    user_data = UserCreate(
        email=TEST_USER_EMAIL,
        password=TEST_USER_PASSWORD,
        name="Test User",
        role=UserRole.EMPLOYEE,
    )
    await create_user_with_manager(db_test_session_manager, user_data)
    test_client.headers["Cookie"] = await login(
        test_client, TEST_USER_EMAIL, TEST_USER_PASSWORD
    )

    yield test_client

    del test_client.headers["Cookie"]


@pytest.fixture(scope="function")
async def logged_in_user(
    authenticated_client: AsyncClient,
    db_test_session_manager: async_sessionmaker[AsyncSession],
) -> User:
    """Provides the User object for the default authenticated user."""
    async with db_test_session_manager() as session:
        user = await UserRepository(session).get_user_by_email(TEST_USER_EMAIL)
        if not user:
            pytest.fail(f"Test user '{TEST_USER_EMAIL}' not found in DB")
        return user
