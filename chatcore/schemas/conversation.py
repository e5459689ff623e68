import enum
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from .message import MessageResponse
from .participant import ParticipantResponse


class ConversationKind(str, enum.Enum):
    DIRECT = "direct"
    COACHING = "coaching"
    GROUP = "group"


class DirectConversationRequest(BaseModel):
    other_user_id: UUID


class CoachingConversationRequest(BaseModel):
    other_user_id: UUID
    program_title: str
    coaching_context_id: UUID


class GroupConversationRequest(BaseModel):
    name: str = Field(min_length=1)
    member_ids: list[UUID] = Field(default_factory=list)


class ConversationResponse(BaseModel):
    id: UUID
    name: str | None = None
    kind: ConversationKind
    created_by_user_id: UUID
    organization_id: UUID | None = None
    coaching_context_id: UUID | None = None
    last_activity_at: datetime | None = None
    created_at: datetime
    updated_at: datetime
    participants: list[ParticipantResponse] = []

    model_config = ConfigDict(from_attributes=True)


class ConversationSummary(ConversationResponse):
    """A conversation as shown in the caller's conversation list."""

    last_message: MessageResponse | None = None
    unread_count: int = 0

    @classmethod
    def from_listing(cls, listing) -> "ConversationSummary":
        summary = cls.model_validate(listing.conversation)
        return summary.model_copy(
            update={
                "last_message": (
                    MessageResponse.model_validate(listing.last_message)
                    if listing.last_message is not None
                    else None
                ),
                "unread_count": listing.unread_count,
            }
        )
