import logging
from uuid import UUID

from fastapi import UploadFile

from chatcore.models import User
from chatcore.schemas.message import MessageCreateRequest, MessageResponse
from chatcore.services.message_service import MessageService

logger = logging.getLogger(__name__)


async def handle_list_messages(
    conversation_id: UUID, user: User, msg_service: MessageService
) -> list[MessageResponse]:
    messages = await msg_service.list_messages(conversation_id, user)
    return [MessageResponse.model_validate(m) for m in messages]


async def handle_send_text(
    conversation_id: UUID,
    request_data: MessageCreateRequest,
    user: User,
    msg_service: MessageService,
) -> MessageResponse:
    message = await msg_service.send_text(
        conversation_id,
        user,
        request_data.content,
        reply_to_id=request_data.reply_to_id,
        client_message_id=request_data.client_message_id,
    )
    return MessageResponse.model_validate(message)


async def handle_send_file(
    conversation_id: UUID,
    upload: UploadFile,
    user: User,
    msg_service: MessageService,
) -> MessageResponse:
    """
    Reads the multipart upload and hands it to the message service.

    At most one byte past the size ceiling is read, which is enough for the
    service to reject an oversized file before anything is stored.
    """
    data = await upload.read(msg_service.max_attachment_bytes + 1)
    filename = upload.filename or "file"
    logger.debug(
        f"Handler: {len(data)} byte upload '{filename}' for conversation {conversation_id}"
    )
    message = await msg_service.send_file(
        conversation_id, user, filename, upload.content_type, data
    )
    return MessageResponse.model_validate(message)


async def handle_delete_message(
    message_id: UUID, user: User, msg_service: MessageService
) -> None:
    await msg_service.delete_message(message_id, user)
