import logging
from uuid import UUID

from fastapi import APIRouter, Depends, File, Response, UploadFile, status

from chatcore.api.common import BaseRouter
from chatcore.auth_config import current_active_user
from chatcore.logic.message_processing import (
    handle_delete_message,
    handle_list_messages,
    handle_send_file,
    handle_send_text,
)
from chatcore.models import User
from chatcore.schemas.message import MessageCreateRequest, MessageResponse
from chatcore.services.dependencies import get_message_service
from chatcore.services.message_service import MessageService

logger = logging.getLogger(__name__)
messages_router_instance = APIRouter()
router = BaseRouter(router=messages_router_instance, default_tags=["messages"])


@router.get(
    "/conversations/{conversation_id}/messages",
    response_model=list[MessageResponse],
)
async def list_messages(
    conversation_id: UUID,
    user: User = Depends(current_active_user),
    msg_service: MessageService = Depends(get_message_service),
):
    """Visible messages of a conversation, oldest first."""
    return await handle_list_messages(
        conversation_id=conversation_id, user=user, msg_service=msg_service
    )


@router.post(
    "/conversations/{conversation_id}/messages",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
)
async def send_message(
    conversation_id: UUID,
    request_data: MessageCreateRequest,
    user: User = Depends(current_active_user),
    msg_service: MessageService = Depends(get_message_service),
):
    return await handle_send_text(
        conversation_id=conversation_id,
        request_data=request_data,
        user=user,
        msg_service=msg_service,
    )


@router.post(
    "/conversations/{conversation_id}/attachments",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
)
async def upload_attachment(
    conversation_id: UUID,
    file: UploadFile = File(...),
    user: User = Depends(current_active_user),
    msg_service: MessageService = Depends(get_message_service),
):
    """Stores a file and posts it to the conversation as an image or file message."""
    return await handle_send_file(
        conversation_id=conversation_id,
        upload=file,
        user=user,
        msg_service=msg_service,
    )


@router.delete("/messages/{message_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_message(
    message_id: UUID,
    user: User = Depends(current_active_user),
    msg_service: MessageService = Depends(get_message_service),
):
    await handle_delete_message(message_id=message_id, user=user, msg_service=msg_service)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
