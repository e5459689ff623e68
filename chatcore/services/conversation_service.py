import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Sequence
from uuid import UUID

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from chatcore.models import Conversation, Message, User
from chatcore.repositories.conversation_repository import ConversationRepository
from chatcore.repositories.message_repository import MessageRepository
from chatcore.repositories.participant_repository import ParticipantRepository
from chatcore.repositories.user_repository import UserRepository
from chatcore.schemas.conversation import ConversationKind
from chatcore.schemas.participant import ParticipantRole
from chatcore.schemas.user import UserRole

from .exceptions import (
    BusinessRuleError,
    ConflictError,
    ConversationNotFoundError,
    DatabaseError,
    NotAuthorizedError,
    ServiceError,
    UserNotFoundError,
)

logger = logging.getLogger(__name__)


@dataclass
class ConversationListing:
    """A conversation as it appears in a user's conversation list."""

    conversation: Conversation
    last_message: Message | None = None
    unread_count: int = 0


def direct_dedupe_key(user_a: UUID, user_b: UUID) -> str:
    low, high = sorted((str(user_a), str(user_b)))
    return f"direct:{low}:{high}"


def coaching_dedupe_key(user_a: UUID, user_b: UUID, coaching_context_id: UUID) -> str:
    low, high = sorted((str(user_a), str(user_b)))
    return f"coaching:{low}:{high}:{coaching_context_id}"


def _matches_query(conversation: Conversation, query: str) -> bool:
    needle = query.casefold()
    if conversation.name and needle in conversation.name.casefold():
        return True
    for participant in conversation.participants:
        user = participant.user
        if user is None:
            continue
        if user.name and needle in user.name.casefold():
            return True
        if needle in user.email.casefold():
            return True
    return False


def _coaching_partner_ids(conversations: Sequence[Conversation], user_id: UUID) -> set[UUID]:
    return {
        p.user_id
        for c in conversations
        if c.kind == ConversationKind.COACHING
        for p in c.participants
        if p.user_id != user_id
    }


def _is_coaching_related(
    conversation: Conversation, partner_ids: set[UUID], user_id: UUID
) -> bool:
    if conversation.kind == ConversationKind.COACHING:
        return True
    if conversation.kind != ConversationKind.DIRECT:
        return False
    return any(
        p.user_id in partner_ids
        for p in conversation.participants
        if p.user_id != user_id
    )


class ConversationService:
    def __init__(
        self,
        conversation_repository: ConversationRepository,
        participant_repository: ParticipantRepository,
        message_repository: MessageRepository,
        user_repository: UserRepository,
    ):
        self.conv_repo = conversation_repository
        self.part_repo = participant_repository
        self.msg_repo = message_repository
        self.user_repo = user_repository
        # The session is shared via the repositories
        self.session = conversation_repository.session

    async def list_for_user(
        self,
        user: User,
        kind: ConversationKind | None = None,
        query: str | None = None,
    ) -> list[ConversationListing]:
        """
        Lists the conversations the user actively participates in, newest
        activity first, each with its latest message and unread count.
        Coaches see coaching conversations, and direct chats with the people
        they coach, ahead of everything else.
        """
        user_id = user.id
        is_coach = user.role == UserRole.COACH
        try:
            # Coaches need every coaching conversation to know who they coach
            conversations = await self.conv_repo.list_user_conversations(
                user_id, kind=None if is_coach else kind
            )
            partner_ids: set[UUID] = set()
            if is_coach:
                partner_ids = _coaching_partner_ids(conversations, user_id)
                if kind is not None:
                    conversations = [c for c in conversations if c.kind == kind]
            if query:
                conversations = [c for c in conversations if _matches_query(c, query)]
            conversation_ids = [c.id for c in conversations]
            latest = await self.msg_repo.get_latest_messages(conversation_ids)
            unread = await self.msg_repo.count_unread(user_id, conversation_ids)
        except SQLAlchemyError as e:
            logger.error(f"Database error listing conversations: {e}", exc_info=True)
            raise DatabaseError("Failed to list conversations due to a database error.")

        listings = [
            ConversationListing(
                conversation=c,
                last_message=latest.get(c.id),
                unread_count=unread.get(c.id, 0),
            )
            for c in conversations
        ]
        if is_coach:
            # sorted() is stable, so activity order is kept inside each group
            listings.sort(
                key=lambda item: not _is_coaching_related(
                    item.conversation, partner_ids, user_id
                )
            )
        return listings

    async def get_conversation_for_member(
        self, conversation_id: UUID, user: User
    ) -> Conversation:
        """Loads a conversation the user is an active member of."""
        user_id = user.id
        conversation = await self.conv_repo.get_conversation_details(conversation_id)
        if not conversation:
            raise ConversationNotFoundError(
                f"Conversation with id '{conversation_id}' not found."
            )
        if not await self.part_repo.is_active_participant(conversation_id, user_id):
            raise NotAuthorizedError("User is not a participant in this conversation.")
        return conversation

    async def find_or_create_direct(self, user: User, other_user_id: UUID) -> Conversation:
        """Returns the single direct conversation between two users, creating it once."""
        user_id = user.id
        organization_id = user.organization_id
        if user_id == other_user_id:
            raise BusinessRuleError("Cannot create a conversation with yourself.")
        await self._require_user(other_user_id)

        return await self._find_or_create(
            dedupe_key=direct_dedupe_key(user_id, other_user_id),
            kind=ConversationKind.DIRECT,
            created_by_user_id=user_id,
            members=[
                (user_id, ParticipantRole.ADMIN),
                (other_user_id, ParticipantRole.MEMBER),
            ],
            organization_id=organization_id,
        )

    async def find_or_create_coaching(
        self,
        user: User,
        other_user_id: UUID,
        program_title: str,
        coaching_context_id: UUID,
    ) -> Conversation:
        """
        Returns the coaching conversation for one enrollment, creating it once.

        Conversations are keyed by the pair of users and the explicit coaching
        context, so two enrollments sharing a program title stay separate.
        """
        user_id = user.id
        organization_id = user.organization_id
        caller_is_coach = user.role == UserRole.COACH
        if user_id == other_user_id:
            raise BusinessRuleError("Cannot start a coaching conversation with yourself.")
        await self._require_user(other_user_id)

        if caller_is_coach:
            roles = (ParticipantRole.COACH, ParticipantRole.STUDENT)
        else:
            roles = (ParticipantRole.STUDENT, ParticipantRole.COACH)

        return await self._find_or_create(
            dedupe_key=coaching_dedupe_key(user_id, other_user_id, coaching_context_id),
            kind=ConversationKind.COACHING,
            created_by_user_id=user_id,
            members=[(user_id, roles[0]), (other_user_id, roles[1])],
            name=program_title,
            organization_id=organization_id,
            coaching_context_id=coaching_context_id,
        )

    async def create_group(
        self, user: User, name: str, member_ids: Sequence[UUID]
    ) -> Conversation:
        """Creates a named group conversation with the creator as admin."""
        user_id = user.id
        organization_id = user.organization_id
        unique_members = [m for m in dict.fromkeys(member_ids) if m != user_id]
        found = await self.user_repo.get_users_by_ids(unique_members)
        missing = set(unique_members) - {u.id for u in found}
        if missing:
            raise UserNotFoundError(
                f"Users not found: {', '.join(sorted(str(m) for m in missing))}"
            )

        members = [(user_id, ParticipantRole.ADMIN)] + [
            (member_id, ParticipantRole.MEMBER) for member_id in unique_members
        ]
        try:
            conversation = await self.conv_repo.create_conversation(
                kind=ConversationKind.GROUP,
                created_by_user_id=user_id,
                members=members,
                name=name,
                organization_id=organization_id,
            )
            conversation_id = conversation.id
            await self.session.commit()
        except IntegrityError as e:
            await self.session.rollback()
            logger.warning(f"Integrity error creating group: {e}", exc_info=True)
            raise ConflictError("Could not create group due to a data conflict.")
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(f"Database error creating group: {e}", exc_info=True)
            raise DatabaseError("Failed to create group due to a database error.")

        logger.info(f"User {user_id} created group conversation {conversation_id}")
        return await self.conv_repo.get_conversation_details(conversation_id)

    async def mark_read(self, conversation_id: UUID, user: User) -> datetime:
        """Advances the caller's read marker to now."""
        user_id = user.id
        conversation = await self.conv_repo.get_conversation_by_id(conversation_id)
        if not conversation:
            raise ConversationNotFoundError(
                f"Conversation with id '{conversation_id}' not found."
            )
        participant = await self.part_repo.get_participant(conversation_id, user_id)
        if not participant or not participant.is_active:
            raise NotAuthorizedError("User is not a participant in this conversation.")

        read_at = datetime.now(timezone.utc)
        try:
            await self.part_repo.touch_last_read(participant, read_at)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(f"Database error marking read: {e}", exc_info=True)
            raise DatabaseError("Failed to mark conversation as read.")
        return read_at

    async def leave(self, conversation_id: UUID, user: User) -> None:
        user_id = user.id
        conversation = await self.conv_repo.get_conversation_by_id(conversation_id)
        if not conversation:
            raise ConversationNotFoundError(
                f"Conversation with id '{conversation_id}' not found."
            )
        if conversation.kind != ConversationKind.GROUP:
            raise BusinessRuleError("Only group conversations can be left.")
        participant = await self.part_repo.get_participant(conversation_id, user_id)
        if not participant or not participant.is_active:
            raise NotAuthorizedError("User is not a participant in this conversation.")

        try:
            await self.part_repo.deactivate(participant)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(f"Database error leaving conversation: {e}", exc_info=True)
            raise DatabaseError("Failed to leave conversation.")
        logger.info(f"User {user_id} left conversation {conversation_id}")

    async def _require_user(self, user_id: UUID) -> User:
        other = await self.user_repo.get_user_by_id(user_id)
        if not other:
            raise UserNotFoundError(f"User with ID '{user_id}' not found.")
        return other

    async def _find_or_create(self, *, dedupe_key: str, **create_kwargs) -> Conversation:
        existing = await self.conv_repo.get_conversation_by_dedupe_key(dedupe_key)
        if existing:
            return existing

        try:
            conversation = await self.conv_repo.create_conversation(
                dedupe_key=dedupe_key, **create_kwargs
            )
            conversation_id = conversation.id
            await self.session.commit()
        except IntegrityError as e:
            # Another request created the same pair first
            await self.session.rollback()
            logger.info(f"Conversation {dedupe_key} created concurrently: {e}")
            winner = await self.conv_repo.get_conversation_by_dedupe_key(dedupe_key)
            if winner:
                return winner
            logger.error(f"Integrity error creating conversation: {e}", exc_info=True)
            raise ConflictError("Could not create conversation due to a data conflict.")
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(f"Database error creating conversation: {e}", exc_info=True)
            raise DatabaseError("Failed to create conversation due to a database error.")
        except Exception as e:
            await self.session.rollback()
            logger.error(f"Unexpected error creating conversation: {e}", exc_info=True)
            raise ServiceError("An unexpected error occurred during conversation creation.")

        logger.info(f"Created {create_kwargs['kind'].value} conversation {conversation_id}")
        return await self.conv_repo.get_conversation_details(conversation_id)
