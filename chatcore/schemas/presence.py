import enum
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class PresenceStatus(str, enum.Enum):
    ONLINE = "online"
    OFFLINE = "offline"


class PresenceUpdateRequest(BaseModel):
    status: PresenceStatus
    typing_in_conversation_id: UUID | None = None


class PresenceResponse(BaseModel):
    user_id: UUID
    status: PresenceStatus
    typing_in_conversation_id: UUID | None = None
    last_seen: datetime
    updated_at: datetime
    # "online" rows whose heartbeat lapsed are reported as offline here
    is_stale: bool = False
    effective_status: PresenceStatus | None = None

    model_config = ConfigDict(from_attributes=True)

    @classmethod
    def from_row(cls, presence, *, is_stale: bool) -> "PresenceResponse":
        response = cls.model_validate(presence)
        return response.model_copy(
            update={
                "is_stale": is_stale,
                "effective_status": (
                    PresenceStatus.OFFLINE if is_stale else response.status
                ),
            }
        )


class PresenceAccepted(BaseModel):
    """A presence update queued for the next debounced write."""

    user_id: UUID
    status: PresenceStatus
    typing_in_conversation_id: UUID | None = None
