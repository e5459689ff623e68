from fastapi import APIRouter, Depends, status

from chatcore.api.common import BaseRouter
from chatcore.auth_config import current_active_user
from chatcore.logic.presence_processing import (
    handle_presence_snapshot,
    handle_set_presence,
)
from chatcore.models import User
from chatcore.realtime.presence_debouncer import PresenceThrottle, get_presence_throttle
from chatcore.schemas.presence import (
    PresenceAccepted,
    PresenceResponse,
    PresenceUpdateRequest,
)
from chatcore.services.dependencies import get_presence_service
from chatcore.services.presence_service import PresenceService

presence_router_instance = APIRouter(prefix="/presence")
router = BaseRouter(router=presence_router_instance, default_tags=["presence"])


@router.get("", response_model=list[PresenceResponse])
async def presence_snapshot(
    user: User = Depends(current_active_user),
    presence_service: PresenceService = Depends(get_presence_service),
):
    """Last known presence of every user, with stale online rows flagged."""
    return await handle_presence_snapshot(presence_service=presence_service)


@router.put("", response_model=PresenceAccepted, status_code=status.HTTP_202_ACCEPTED)
async def set_presence(
    request_data: PresenceUpdateRequest,
    user: User = Depends(current_active_user),
    throttle: PresenceThrottle = Depends(get_presence_throttle),
):
    """
    Queues the caller's presence. Updates within one debounce window are
    coalesced, so the stored row reflects the last of them shortly after.
    """
    return await handle_set_presence(
        request_data=request_data, user=user, throttle=throttle
    )
