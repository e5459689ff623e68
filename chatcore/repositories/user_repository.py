from typing import Sequence
from uuid import UUID

from sqlalchemy import select

from chatcore.models import User

from .base import BaseRepository


class UserRepository(BaseRepository):
    async def get_user_by_id(self, user_id: UUID) -> User | None:
        """Retrieves a user by their ID."""
        stmt = select(User).filter(User.id == user_id)
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def get_user_by_email(self, email: str) -> User | None:
        stmt = select(User).filter(User.email == email)
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def get_users_by_ids(self, user_ids: Sequence[UUID]) -> Sequence[User]:
        if not user_ids:
            return []
        stmt = select(User).filter(User.id.in_(list(user_ids)))
        result = await self.session.execute(stmt)
        return result.scalars().all()
