import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status

from chatcore.api.common import BaseRouter
from chatcore.auth_config import current_active_user
from chatcore.logic.conversation_processing import (
    handle_create_group,
    handle_leave,
    handle_list_conversations,
    handle_mark_read,
    handle_open_coaching,
    handle_open_direct,
)
from chatcore.models import User
from chatcore.schemas.conversation import (
    CoachingConversationRequest,
    ConversationKind,
    ConversationResponse,
    ConversationSummary,
    DirectConversationRequest,
    GroupConversationRequest,
)
from chatcore.services.conversation_service import ConversationService
from chatcore.services.dependencies import get_conversation_service

logger = logging.getLogger(__name__)
conversations_router_instance = APIRouter(prefix="/conversations")
router = BaseRouter(
    router=conversations_router_instance, default_tags=["conversations"]
)


@router.get("", response_model=list[ConversationSummary])
async def list_conversations(
    kind: ConversationKind | None = Query(default=None),
    q: str | None = Query(default=None, max_length=200),
    user: User = Depends(current_active_user),
    conv_service: ConversationService = Depends(get_conversation_service),
):
    """Lists the caller's conversations with last message and unread count."""
    return await handle_list_conversations(
        user=user, conv_service=conv_service, kind=kind, query=q
    )


@router.post("/direct", response_model=ConversationResponse)
async def open_direct_conversation(
    request_data: DirectConversationRequest,
    user: User = Depends(current_active_user),
    conv_service: ConversationService = Depends(get_conversation_service),
):
    """Returns the direct conversation with another user, creating it on first use."""
    return await handle_open_direct(
        request_data=request_data, user=user, conv_service=conv_service
    )


@router.post("/coaching", response_model=ConversationResponse)
async def open_coaching_conversation(
    request_data: CoachingConversationRequest,
    user: User = Depends(current_active_user),
    conv_service: ConversationService = Depends(get_conversation_service),
):
    return await handle_open_coaching(
        request_data=request_data, user=user, conv_service=conv_service
    )


@router.post(
    "/group",
    response_model=ConversationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_group_conversation(
    request_data: GroupConversationRequest,
    user: User = Depends(current_active_user),
    conv_service: ConversationService = Depends(get_conversation_service),
):
    logger.info(f"Creating group '{request_data.name}' for user {user.id}")
    return await handle_create_group(
        request_data=request_data, user=user, conv_service=conv_service
    )


@router.post("/{conversation_id}/read", status_code=status.HTTP_204_NO_CONTENT)
async def mark_conversation_read(
    conversation_id: UUID,
    user: User = Depends(current_active_user),
    conv_service: ConversationService = Depends(get_conversation_service),
):
    await handle_mark_read(
        conversation_id=conversation_id, user=user, conv_service=conv_service
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{conversation_id}/leave", status_code=status.HTTP_204_NO_CONTENT)
async def leave_conversation(
    conversation_id: UUID,
    user: User = Depends(current_active_user),
    conv_service: ConversationService = Depends(get_conversation_service),
):
    await handle_leave(
        conversation_id=conversation_id, user=user, conv_service=conv_service
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)
