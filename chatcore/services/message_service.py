import logging
import uuid

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from chatcore.models import Message, User
from chatcore.repositories.conversation_repository import ConversationRepository
from chatcore.repositories.message_repository import MessageRepository
from chatcore.repositories.participant_repository import ParticipantRepository
from chatcore.schemas.message import MessageKind
from chatcore.storage import (
    AttachmentStorage,
    StorageError,
    build_storage_key,
    classify_attachment,
)

from .exceptions import (
    AttachmentRecordError,
    AttachmentTooLargeError,
    AttachmentUploadError,
    BusinessRuleError,
    ConflictError,
    ConversationNotFoundError,
    DatabaseError,
    MessageNotFoundError,
    NotAuthorizedError,
)

logger = logging.getLogger(__name__)


class MessageService:
    def __init__(
        self,
        message_repository: MessageRepository,
        conversation_repository: ConversationRepository,
        participant_repository: ParticipantRepository,
        storage: AttachmentStorage,
        max_attachment_bytes: int,
    ):
        self.msg_repo = message_repository
        self.conv_repo = conversation_repository
        self.part_repo = participant_repository
        self.storage = storage
        self.max_attachment_bytes = max_attachment_bytes
        self.session = message_repository.session

    async def _require_membership(self, conversation_id: uuid.UUID, user_id: uuid.UUID):
        conversation = await self.conv_repo.get_conversation_by_id(conversation_id)
        if not conversation:
            raise ConversationNotFoundError(
                f"Conversation with id '{conversation_id}' not found."
            )
        if not await self.part_repo.is_active_participant(conversation_id, user_id):
            raise NotAuthorizedError("User is not a participant in this conversation.")
        return conversation

    async def list_messages(
        self, conversation_id: uuid.UUID, user: User
    ) -> list[Message]:
        """Visible messages of a conversation in creation order, with senders."""
        user_id = user.id
        await self._require_membership(conversation_id, user_id)
        try:
            return await self.msg_repo.get_messages_by_conversation(conversation_id)
        except SQLAlchemyError as e:
            logger.error(f"Database error listing messages: {e}", exc_info=True)
            raise DatabaseError("Failed to load messages due to a database error.")

    async def send_text(
        self,
        conversation_id: uuid.UUID,
        user: User,
        content: str,
        reply_to_id: uuid.UUID | None = None,
        client_message_id: str | None = None,
    ) -> Message:
        """
        Appends a text message and bumps the conversation's activity time.

        Empty content is stored as-is. When the client supplies a
        client_message_id, a resend returns the row created the first time.
        """
        user_id = user.id
        conversation = await self._require_membership(conversation_id, user_id)

        if client_message_id:
            existing = await self.msg_repo.get_message_by_client_id(
                conversation_id, user_id, client_message_id
            )
            if existing:
                logger.info(
                    f"Duplicate send {client_message_id} in {conversation_id} ignored"
                )
                return existing

        if reply_to_id:
            target = await self.msg_repo.get_message_by_id(reply_to_id)
            if not target:
                raise MessageNotFoundError(f"Message with id '{reply_to_id}' not found.")
            if target.conversation_id != conversation_id:
                raise BusinessRuleError(
                    "Replies must target a message in the same conversation."
                )

        try:
            message = await self.msg_repo.create_message(
                conversation_id=conversation_id,
                sender_id=user_id,
                kind=MessageKind.TEXT,
                content=content,
                reply_to_id=reply_to_id,
                client_message_id=client_message_id,
            )
            message_id = message.id
            await self.conv_repo.update_conversation_activity(
                conversation, message.created_at
            )
            await self.session.commit()
        except IntegrityError as e:
            await self.session.rollback()
            if client_message_id:
                winner = await self.msg_repo.get_message_by_client_id(
                    conversation_id, user_id, client_message_id
                )
                if winner:
                    return winner
            logger.warning(f"Integrity error sending message: {e}", exc_info=True)
            raise ConflictError("Could not send message due to a data conflict.")
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(f"Database error sending message: {e}", exc_info=True)
            raise DatabaseError("Failed to send message due to a database error.")

        return await self.msg_repo.get_message_by_id(message_id)

    async def send_file(
        self,
        conversation_id: uuid.UUID,
        user: User,
        filename: str,
        content_type: str | None,
        data: bytes,
    ) -> Message:
        """
        Stores an attachment and records it as an image or file message.

        Nothing is written to the database unless the upload and the public
        URL lookup both succeed. If recording the message fails afterwards,
        the stored object is deleted again.
        """
        user_id = user.id
        conversation = await self._require_membership(conversation_id, user_id)

        size = len(data)
        if size > self.max_attachment_bytes:
            raise AttachmentTooLargeError(
                f"Attachment exceeds the limit of {self.max_attachment_bytes} bytes."
            )

        mime_type = content_type or "application/octet-stream"
        key = build_storage_key(user_id, conversation_id, filename)

        try:
            await self.storage.upload(key, data, mime_type)
            url = await self.storage.public_url(key)
        except StorageError as e:
            logger.error(f"Attachment upload failed for {key}: {e}", exc_info=True)
            raise AttachmentUploadError("Failed to upload file.")

        try:
            message = await self.msg_repo.create_message(
                conversation_id=conversation_id,
                sender_id=user_id,
                kind=classify_attachment(mime_type),
                attachment_url=url,
                attachment_name=filename,
                attachment_size=size,
                attachment_mime_type=mime_type,
                attachment_key=key,
            )
            message_id = message.id
            await self.conv_repo.update_conversation_activity(
                conversation, message.created_at
            )
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(f"Database error recording attachment {key}: {e}", exc_info=True)
            await self._discard_upload(key)
            raise AttachmentRecordError()

        logger.info(f"User {user_id} attached {key} to conversation {conversation_id}")
        return await self.msg_repo.get_message_by_id(message_id)

    async def _discard_upload(self, key: str) -> None:
        try:
            await self.storage.delete(key)
        except StorageError as e:
            logger.warning(f"Could not remove orphaned attachment {key}: {e}")

    async def delete_message(self, message_id: uuid.UUID, user: User) -> Message:
        """Soft-deletes a message; only its sender may do so."""
        user_id = user.id
        message = await self.msg_repo.get_message_by_id(message_id)
        if not message or message.is_deleted:
            raise MessageNotFoundError(f"Message with id '{message_id}' not found.")
        if message.sender_id != user_id:
            raise NotAuthorizedError("Only the sender can delete this message.")

        try:
            await self.msg_repo.soft_delete(message)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(f"Database error deleting message: {e}", exc_info=True)
            raise DatabaseError("Failed to delete message due to a database error.")
        return message
