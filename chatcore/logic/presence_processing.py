from datetime import datetime, timezone
from uuid import UUID

from chatcore.core.config import settings
from chatcore.models import Presence, User
from chatcore.schemas.presence import (
    PresenceAccepted,
    PresenceResponse,
    PresenceUpdateRequest,
)
from chatcore.services.presence_service import PresenceService, is_presence_stale


def presence_responses(
    snapshot: dict[UUID, Presence], now: datetime | None = None
) -> list[PresenceResponse]:
    """Serializes a presence snapshot, downgrading rows whose heartbeat lapsed."""
    now = now or datetime.now(timezone.utc)
    stale_after = settings.presence_stale_after
    return [
        PresenceResponse.from_row(
            row, is_stale=is_presence_stale(row, now, stale_after)
        )
        for row in snapshot.values()
    ]


async def handle_presence_snapshot(
    presence_service: PresenceService,
) -> list[PresenceResponse]:
    return presence_responses(await presence_service.snapshot())


async def handle_set_presence(
    request_data: PresenceUpdateRequest,
    user: User,
    throttle,
) -> PresenceAccepted:
    """Queues the caller's presence; rapid updates collapse into one write."""
    throttle.set_presence(
        user.id,
        request_data.status,
        typing_in_conversation_id=request_data.typing_in_conversation_id,
    )
    return PresenceAccepted(
        user_id=user.id,
        status=request_data.status,
        typing_in_conversation_id=request_data.typing_in_conversation_id,
    )
