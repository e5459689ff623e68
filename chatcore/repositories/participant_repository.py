from datetime import datetime, timezone
from typing import Sequence
from uuid import UUID

from sqlalchemy import exists, select

from chatcore.models import Participant
from chatcore.schemas.participant import ParticipantRole

from .base import BaseRepository


class ParticipantRepository(BaseRepository):
    async def create_participant(
        self,
        conversation_id: UUID,
        user_id: UUID,
        role: ParticipantRole,
        *,
        joined_at: datetime | None = None,
    ) -> Participant:
        """Creates a new active participant record."""
        new_participant = Participant(
            conversation_id=conversation_id,
            user_id=user_id,
            role=role,
            joined_at=joined_at or datetime.now(timezone.utc),
            is_active=True,
        )
        self.session.add(new_participant)
        await self.session.flush()
        return new_participant

    async def get_participant(
        self, conversation_id: UUID, user_id: UUID
    ) -> Participant | None:
        """Retrieves a participant record by conversation and user ID."""
        stmt = select(Participant).filter(
            Participant.conversation_id == conversation_id,
            Participant.user_id == user_id,
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def is_active_participant(self, conversation_id: UUID, user_id: UUID) -> bool:
        """Checks if a user holds an active membership in a conversation."""
        stmt = select(
            exists().where(
                Participant.conversation_id == conversation_id,
                Participant.user_id == user_id,
                Participant.is_active.is_(True),
            )
        )
        result = await self.session.execute(stmt)
        return result.scalar_one()

    async def list_active_participants(
        self, conversation_id: UUID
    ) -> Sequence[Participant]:
        stmt = (
            select(Participant)
            .filter(
                Participant.conversation_id == conversation_id,
                Participant.is_active.is_(True),
            )
            .order_by(Participant.joined_at.asc())
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def touch_last_read(
        self, participant: Participant, read_at: datetime | None = None
    ) -> Participant:
        participant.last_read_at = read_at or datetime.now(timezone.utc)
        self.session.add(participant)
        await self.session.flush()
        return participant

    async def deactivate(self, participant: Participant) -> Participant:
        participant.is_active = False
        self.session.add(participant)
        await self.session.flush()
        return participant
