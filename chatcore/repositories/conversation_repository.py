from datetime import datetime, timezone
from typing import Iterable, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import selectinload

from chatcore.models import Conversation, Participant
from chatcore.schemas.conversation import ConversationKind
from chatcore.schemas.participant import ParticipantRole

from .base import BaseRepository


def _with_participants(stmt):
    # Members who left stay in the table but not in the loaded collection
    active = Conversation.participants.and_(Participant.is_active.is_(True))
    return stmt.options(selectinload(active).selectinload(Participant.user))


class ConversationRepository(BaseRepository):
    async def get_conversation_by_id(
        self, conversation_id: UUID
    ) -> Conversation | None:
        """Retrieves a specific conversation by its ID."""
        stmt = select(Conversation).filter(Conversation.id == conversation_id)
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def get_conversation_details(
        self, conversation_id: UUID
    ) -> Conversation | None:
        """Retrieves a conversation with its participants and their users loaded."""
        stmt = _with_participants(
            select(Conversation).filter(Conversation.id == conversation_id)
        ).execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def get_conversation_by_dedupe_key(
        self, dedupe_key: str
    ) -> Conversation | None:
        stmt = _with_participants(
            select(Conversation).filter(Conversation.dedupe_key == dedupe_key)
        ).execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def list_user_conversations(
        self, user_id: UUID, kind: ConversationKind | None = None
    ) -> Sequence[Conversation]:
        """Lists conversations in which the user holds an active membership."""
        stmt = (
            select(Conversation)
            .join(Participant, Conversation.id == Participant.conversation_id)
            .filter(
                Participant.user_id == user_id,
                Participant.is_active.is_(True),
            )
            .order_by(
                Conversation.last_activity_at.desc().nullslast(),
                Conversation.created_at.desc(),
            )
        )
        if kind is not None:
            stmt = stmt.filter(Conversation.kind == kind)
        stmt = _with_participants(stmt).execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def create_conversation(
        self,
        *,
        kind: ConversationKind,
        created_by_user_id: UUID,
        members: Iterable[tuple[UUID, ParticipantRole]],
        name: str | None = None,
        organization_id: UUID | None = None,
        coaching_context_id: UUID | None = None,
        dedupe_key: str | None = None,
    ) -> Conversation:
        """Creates a conversation and one participant row per member.

        Everything is flushed inside the caller's transaction; the creator is
        expected to be the first member.
        """
        now = datetime.now(timezone.utc)
        new_conversation = Conversation(
            kind=kind,
            name=name,
            created_by_user_id=created_by_user_id,
            organization_id=organization_id,
            coaching_context_id=coaching_context_id,
            dedupe_key=dedupe_key,
            last_activity_at=now,
        )
        self.session.add(new_conversation)
        await self.session.flush()

        for user_id, role in members:
            self.session.add(
                Participant(
                    conversation_id=new_conversation.id,
                    user_id=user_id,
                    role=role,
                    joined_at=now,
                    is_active=True,
                )
            )
        await self.session.flush()
        return new_conversation

    async def update_conversation_activity(
        self, conversation: Conversation, activity_time: datetime | None = None
    ) -> None:
        """Updates the last_activity_at and updated_at timestamps of a conversation."""
        conversation.last_activity_at = activity_time or datetime.now(timezone.utc)
        self.session.add(conversation)
        await self.session.flush()
