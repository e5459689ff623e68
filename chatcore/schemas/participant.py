import enum
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from .user import UserSummary


class ParticipantRole(str, enum.Enum):
    ADMIN = "admin"
    MEMBER = "member"
    COACH = "coach"
    STUDENT = "student"


class ParticipantResponse(BaseModel):
    id: UUID
    conversation_id: UUID
    user_id: UUID
    role: ParticipantRole
    joined_at: datetime
    last_read_at: datetime | None = None
    is_active: bool
    user: UserSummary | None = None

    model_config = ConfigDict(from_attributes=True)
