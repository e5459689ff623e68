from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from chatcore.core.config import settings
from chatcore.repositories.conversation_repository import ConversationRepository
from chatcore.repositories.dependencies import (
    get_conversation_repository,
    get_message_repository,
    get_participant_repository,
    get_presence_repository,
    get_user_repository,
)
from chatcore.repositories.message_repository import MessageRepository
from chatcore.repositories.participant_repository import ParticipantRepository
from chatcore.repositories.presence_repository import PresenceRepository
from chatcore.repositories.user_repository import UserRepository
from chatcore.storage import AttachmentStorage, get_attachment_storage

from .conversation_service import ConversationService
from .message_service import MessageService
from .presence_service import PresenceService

# Services are built per request so each one works on that request's session.


def get_conversation_service(
    conv_repo: ConversationRepository = Depends(get_conversation_repository),
    part_repo: ParticipantRepository = Depends(get_participant_repository),
    msg_repo: MessageRepository = Depends(get_message_repository),
    user_repo: UserRepository = Depends(get_user_repository),
) -> ConversationService:
    """Provides an instance of the ConversationService with its dependencies."""
    return ConversationService(
        conversation_repository=conv_repo,
        participant_repository=part_repo,
        message_repository=msg_repo,
        user_repository=user_repo,
    )


def get_message_service(
    msg_repo: MessageRepository = Depends(get_message_repository),
    conv_repo: ConversationRepository = Depends(get_conversation_repository),
    part_repo: ParticipantRepository = Depends(get_participant_repository),
    storage: AttachmentStorage = Depends(get_attachment_storage),
) -> MessageService:
    """Provides an instance of the MessageService."""
    return MessageService(
        message_repository=msg_repo,
        conversation_repository=conv_repo,
        participant_repository=part_repo,
        storage=storage,
        max_attachment_bytes=settings.ATTACHMENT_MAX_BYTES,
    )


def get_presence_service(
    presence_repo: PresenceRepository = Depends(get_presence_repository),
) -> PresenceService:
    """Provides an instance of the PresenceService."""
    return PresenceService(presence_repository=presence_repo)


# Outside a request (websocket sessions, middleware, background tasks) the
# services are built straight from a session.


def conversation_service_for(session: AsyncSession) -> ConversationService:
    return ConversationService(
        conversation_repository=ConversationRepository(session),
        participant_repository=ParticipantRepository(session),
        message_repository=MessageRepository(session),
        user_repository=UserRepository(session),
    )


def message_service_for(
    session: AsyncSession, storage: AttachmentStorage | None = None
) -> MessageService:
    return MessageService(
        message_repository=MessageRepository(session),
        conversation_repository=ConversationRepository(session),
        participant_repository=ParticipantRepository(session),
        storage=storage or get_attachment_storage(),
        max_attachment_bytes=settings.ATTACHMENT_MAX_BYTES,
    )


def presence_service_for(session: AsyncSession) -> PresenceService:
    return PresenceService(presence_repository=PresenceRepository(session))
