import uuid
from typing import Optional
from uuid import UUID

from asyncstdlib import anext
from fastapi_users.db import SQLAlchemyUserDatabase
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from chatcore.auth_config import AUTH_COOKIE_NAME, get_user_manager
from chatcore.models import User
from chatcore.schemas.user import UserCreate, UserRole
from chatcore.storage import AttachmentStorage, StorageError


def create_test_user(
    id: Optional[UUID] = None,
    email: Optional[str] = None,
    name: Optional[str] = None,
    role: UserRole = UserRole.EMPLOYEE,
    organization_id: Optional[UUID] = None,
    hashed_password: Optional[str] = None,
    is_active: bool = True,
    is_superuser: bool = False,
    is_verified: bool = True,
) -> User:
    """Creates a User instance with default values for testing."""
    unique_suffix = uuid.uuid4()
    return User(
        id=id or unique_suffix,
        email=email or f"test_{unique_suffix}@example.com",
        name=name or f"Test User {str(unique_suffix)[:8]}",
        role=role,
        organization_id=organization_id,
        hashed_password=hashed_password or f"password_{unique_suffix}",
        is_active=is_active,
        is_superuser=is_superuser,
        is_verified=is_verified,
    )


async def add_users(session: AsyncSession, *users: User) -> None:
    session.add_all(users)
    await session.commit()


async def create_user_with_manager(
    session_maker: async_sessionmaker[AsyncSession], user_data: UserCreate
) -> User:
    """Creates a user through fastapi-users so the password hash is real."""
    async with session_maker() as session:
        user_manager_gen = get_user_manager(SQLAlchemyUserDatabase(session, User))
        user_manager = await anext(user_manager_gen)
        try:
            user = await user_manager.create(user_data)
            await session.commit()
            return user
        finally:
            await user_manager_gen.aclose()


async def login(client: AsyncClient, email: str, password: str) -> str:
    """Logs in and returns a Cookie header value carrying the auth token."""
    res = await client.post(
        "/auth/jwt/login", data={"username": email, "password": password}
    )
    assert res.status_code == 204, res.text
    access_token = res.cookies.get(AUTH_COOKIE_NAME) or (
        res.headers["Set-Cookie"].split(";")[0].split("=", 1)[1]
    )
    return f"{AUTH_COOKIE_NAME}={access_token}"


class InMemoryStorage(AttachmentStorage):
    """Attachment backend for tests; failures can be switched on per stage."""

    def __init__(self):
        self.objects: dict[str, tuple[bytes, str]] = {}
        self.deleted: list[str] = []
        self.fail_upload = False
        self.fail_public_url = False

    async def upload(self, key: str, data: bytes, content_type: str) -> None:
        if self.fail_upload:
            raise StorageError("upload refused")
        self.objects[key] = (data, content_type)

    async def public_url(self, key: str) -> str:
        if self.fail_public_url:
            raise StorageError("no public url")
        return f"https://files.test/{key}"

    async def delete(self, key: str) -> None:
        self.objects.pop(key, None)
        self.deleted.append(key)
