import enum
import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict

from .user import UserSummary


class MessageKind(str, enum.Enum):
    TEXT = "text"
    IMAGE = "image"
    FILE = "file"


class MessageCreateRequest(BaseModel):
    content: str = ""
    reply_to_id: uuid.UUID | None = None
    # Client-generated key; resending with the same key returns the stored message
    client_message_id: str | None = None


class MessageResponse(BaseModel):
    id: uuid.UUID
    conversation_id: uuid.UUID
    sender_id: uuid.UUID
    kind: MessageKind
    content: str | None = None
    attachment_url: str | None = None
    attachment_name: str | None = None
    attachment_size: int | None = None
    attachment_mime_type: str | None = None
    reply_to_id: uuid.UUID | None = None
    client_message_id: str | None = None
    created_at: datetime
    updated_at: datetime
    sender: UserSummary | None = None

    model_config = ConfigDict(from_attributes=True)
