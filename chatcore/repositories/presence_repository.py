from datetime import datetime
from typing import Sequence
from uuid import UUID

from sqlalchemy import select

from chatcore.models import Presence
from chatcore.schemas.presence import PresenceStatus

from .base import BaseRepository


class PresenceRepository(BaseRepository):
    async def get_by_user_id(self, user_id: UUID) -> Presence | None:
        stmt = select(Presence).filter(Presence.user_id == user_id)
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def list_all(self) -> Sequence[Presence]:
        result = await self.session.execute(select(Presence))
        return result.scalars().all()

    async def upsert(
        self,
        user_id: UUID,
        *,
        status: PresenceStatus,
        last_seen: datetime,
        typing_in_conversation_id: UUID | None = None,
        keep_typing: bool = False,
    ) -> Presence:
        """Inserts or updates the single presence row of a user.

        With keep_typing the stored typing pointer is left untouched.
        """
        presence = await self.get_by_user_id(user_id)
        if presence is None:
            presence = Presence(
                user_id=user_id,
                status=status,
                last_seen=last_seen,
                typing_in_conversation_id=(
                    None if keep_typing else typing_in_conversation_id
                ),
            )
        else:
            presence.status = status
            presence.last_seen = last_seen
            if not keep_typing:
                presence.typing_in_conversation_id = typing_in_conversation_id
        self.session.add(presence)
        await self.session.flush()
        return presence

    async def list_stale_online(self, cutoff: datetime) -> Sequence[Presence]:
        stmt = select(Presence).filter(
            Presence.status == PresenceStatus.ONLINE,
            Presence.last_seen < cutoff,
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()
