from dataclasses import dataclass
from uuid import UUID

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from chatcore.schemas.user import UserCreate, UserRole
from test_helpers import create_user_with_manager, login


@dataclass
class OtherUser:
    id: UUID
    email: str
    cookie: str

    @property
    def headers(self) -> dict[str, str]:
        return {"Cookie": self.cookie}


async def _register_and_login(
    client: AsyncClient,
    session_maker: async_sessionmaker[AsyncSession],
    email: str,
    name: str,
    role: UserRole,
) -> OtherUser:
    password = "other-password-123"
    user = await create_user_with_manager(
        session_maker,
        UserCreate(email=email, password=password, name=name, role=role),
    )
    cookie = await login(client, email, password)
    return OtherUser(id=user.id, email=email, cookie=cookie)


@pytest.fixture(scope="function")
async def other_user(
    authenticated_client: AsyncClient,
    db_test_session_manager: async_sessionmaker[AsyncSession],
) -> OtherUser:
    """A second employee, logged in; pass `other_user.headers` to act as them."""
    return await _register_and_login(
        authenticated_client,
        db_test_session_manager,
        "friend@example.com",
        "Friendly Colleague",
        UserRole.EMPLOYEE,
    )


@pytest.fixture(scope="function")
async def coach_user(
    authenticated_client: AsyncClient,
    db_test_session_manager: async_sessionmaker[AsyncSession],
) -> OtherUser:
    return await _register_and_login(
        authenticated_client,
        db_test_session_manager,
        "coach@example.com",
        "Casey Coach",
        UserRole.COACH,
    )
