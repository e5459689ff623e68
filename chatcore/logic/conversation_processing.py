import logging
from uuid import UUID

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

# Request-handling logic for conversation actions, decoupled from the routes.

logger = logging.getLogger(__name__)


async def handle_list_conversations(
    user: User,
    conv_service: ConversationService,
    kind: ConversationKind | None = None,
    query: str | None = None,
) -> list[ConversationSummary]:
    """
    Builds the caller's conversation list.

    Args:
        user: The authenticated user.
        conv_service: The conversation service dependency.
        kind: Optional restriction to one conversation kind.
        query: Optional case-insensitive search on names and emails.

    Returns:
        One summary per conversation, most recent activity first.
    """
    listings = await conv_service.list_for_user(user, kind=kind, query=query)
    return [ConversationSummary.from_listing(listing) for listing in listings]


async def handle_open_direct(
    request_data: DirectConversationRequest,
    user: User,
    conv_service: ConversationService,
) -> ConversationResponse:
    conversation = await conv_service.find_or_create_direct(
        user, request_data.other_user_id
    )
    return ConversationResponse.model_validate(conversation)


async def handle_open_coaching(
    request_data: CoachingConversationRequest,
    user: User,
    conv_service: ConversationService,
) -> ConversationResponse:
    conversation = await conv_service.find_or_create_coaching(
        user,
        request_data.other_user_id,
        program_title=request_data.program_title,
        coaching_context_id=request_data.coaching_context_id,
    )
    return ConversationResponse.model_validate(conversation)


async def handle_create_group(
    request_data: GroupConversationRequest,
    user: User,
    conv_service: ConversationService,
) -> ConversationResponse:
    conversation = await conv_service.create_group(
        user, request_data.name, request_data.member_ids
    )
    return ConversationResponse.model_validate(conversation)


async def handle_mark_read(
    conversation_id: UUID, user: User, conv_service: ConversationService
) -> None:
    read_at = await conv_service.mark_read(conversation_id, user)
    logger.debug(f"Handler: conversation {conversation_id} read up to {read_at}")


async def handle_leave(
    conversation_id: UUID, user: User, conv_service: ConversationService
) -> None:
    await conv_service.leave(conversation_id, user)
