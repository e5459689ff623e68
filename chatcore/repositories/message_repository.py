import uuid
from datetime import datetime, timezone
from typing import Sequence

from sqlalchemy import and_, func, or_, select
from sqlalchemy.orm import selectinload

from chatcore.models import Message, Participant
from chatcore.schemas.message import MessageKind

from .base import BaseRepository


class MessageRepository(BaseRepository):
    async def create_message(
        self,
        conversation_id: uuid.UUID,
        sender_id: uuid.UUID,
        *,
        kind: MessageKind = MessageKind.TEXT,
        content: str | None = None,
        attachment_url: str | None = None,
        attachment_name: str | None = None,
        attachment_size: int | None = None,
        attachment_mime_type: str | None = None,
        attachment_key: str | None = None,
        reply_to_id: uuid.UUID | None = None,
        client_message_id: str | None = None,
    ) -> Message:
        """Creates and adds a new message to the session."""
        now = datetime.now(timezone.utc)
        new_message = Message(
            id=uuid.uuid4(),
            conversation_id=conversation_id,
            sender_id=sender_id,
            kind=kind,
            content=content,
            attachment_url=attachment_url,
            attachment_name=attachment_name,
            attachment_size=attachment_size,
            attachment_mime_type=attachment_mime_type,
            attachment_key=attachment_key,
            reply_to_id=reply_to_id,
            client_message_id=client_message_id,
            is_deleted=False,
            created_at=now,
            updated_at=now,
        )
        self.session.add(new_message)
        await self.session.flush()
        return new_message

    async def get_message_by_id(self, message_id: uuid.UUID) -> Message | None:
        stmt = (
            select(Message)
            .filter(Message.id == message_id)
            .options(selectinload(Message.sender))
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def get_message_by_client_id(
        self,
        conversation_id: uuid.UUID,
        sender_id: uuid.UUID,
        client_message_id: str,
    ) -> Message | None:
        stmt = (
            select(Message)
            .filter(
                Message.conversation_id == conversation_id,
                Message.sender_id == sender_id,
                Message.client_message_id == client_message_id,
            )
            .options(selectinload(Message.sender))
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def get_messages_by_conversation(
        self, conversation_id: uuid.UUID
    ) -> list[Message]:
        """Retrieves visible messages for a conversation, oldest first."""
        stmt = (
            select(Message)
            .where(
                Message.conversation_id == conversation_id,
                Message.is_deleted.is_(False),
            )
            .options(selectinload(Message.sender))
            .order_by(Message.created_at.asc(), Message.id.asc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_latest_messages(
        self, conversation_ids: Sequence[uuid.UUID]
    ) -> dict[uuid.UUID, Message]:
        """Most recent visible message of each conversation, keyed by conversation."""
        if not conversation_ids:
            return {}
        ranked = (
            select(
                Message.id.label("id"),
                func.row_number()
                .over(
                    partition_by=Message.conversation_id,
                    order_by=(Message.created_at.desc(), Message.id.desc()),
                )
                .label("position"),
            )
            .where(
                Message.conversation_id.in_(list(conversation_ids)),
                Message.is_deleted.is_(False),
            )
            .subquery()
        )
        stmt = (
            select(Message)
            .join(ranked, Message.id == ranked.c.id)
            .where(ranked.c.position == 1)
            .options(selectinload(Message.sender))
        )
        result = await self.session.execute(stmt)
        return {message.conversation_id: message for message in result.scalars().all()}

    async def count_unread(
        self, user_id: uuid.UUID, conversation_ids: Sequence[uuid.UUID]
    ) -> dict[uuid.UUID, int]:
        """Messages from other senders newer than the user's last read marker."""
        if not conversation_ids:
            return {}
        stmt = (
            select(Message.conversation_id, func.count(Message.id))
            .join(
                Participant,
                and_(
                    Participant.conversation_id == Message.conversation_id,
                    Participant.user_id == user_id,
                ),
            )
            .where(
                Message.conversation_id.in_(list(conversation_ids)),
                Message.sender_id != user_id,
                Message.is_deleted.is_(False),
                or_(
                    Participant.last_read_at.is_(None),
                    Message.created_at > Participant.last_read_at,
                ),
            )
            .group_by(Message.conversation_id)
        )
        result = await self.session.execute(stmt)
        return {conversation_id: count for conversation_id, count in result.all()}

    async def soft_delete(self, message: Message) -> Message:
        now = datetime.now(timezone.utc)
        message.is_deleted = True
        message.deleted_at = now
        self.session.add(message)
        await self.session.flush()
        return message
