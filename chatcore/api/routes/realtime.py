import logging

from fastapi import APIRouter, Depends, WebSocket, status

from chatcore.auth_config import AUTH_COOKIE_NAME, get_strategy, get_user_manager
from chatcore.db import async_session_maker
from chatcore.realtime import ChatConnection, change_feed

logger = logging.getLogger(__name__)
realtime_router_instance = APIRouter()


@realtime_router_instance.websocket("/ws")
async def realtime_endpoint(websocket: WebSocket, user_manager=Depends(get_user_manager)):
    """Realtime channel authenticated by the same cookie as the HTTP API."""
    token = websocket.cookies.get(AUTH_COOKIE_NAME)
    user = None
    if token:
        user = await get_strategy().read_token(token, user_manager)
    if user is None or not user.is_active:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    connection = ChatConnection(websocket, user.id, change_feed, async_session_maker)
    await connection.run()
