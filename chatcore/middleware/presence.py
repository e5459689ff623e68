import asyncio
import logging
import uuid
from typing import Callable, Optional

import jwt
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.middleware.base import BaseHTTPMiddleware

from chatcore.auth_config import AUTH_COOKIE_NAME
from chatcore.core.config import settings
from chatcore.realtime.presence_debouncer import get_presence_throttle
from chatcore.services.dependencies import presence_service_for

logger = logging.getLogger(__name__)

# fastapi-users signs its JWTs for this audience
JWT_AUDIENCE = "fastapi-users:auth"

# Explicit presence writes must not be overridden by the heartbeat
SKIPPED_PATH_PREFIXES = ("/presence",)


class PresenceMiddleware(BaseHTTPMiddleware):
    """Heartbeats the caller's presence after every successful authenticated request"""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        # Only successful requests (2xx and 3xx) count as activity
        if 200 <= response.status_code < 400 and not request.url.path.startswith(
            SKIPPED_PATH_PREFIXES
        ):
            await self._update_user_presence(request)

        return response

    async def _update_user_presence(self, request: Request):
        try:
            user_id = self._get_user_id_from_request(request)
            if not user_id:
                return
            await self._do_presence_update(user_id, request)
        except Exception as e:
            # Never let presence updates break the main request
            logger.warning(f"Failed to update user presence: {e}")

    def _get_user_id_from_request(self, request: Request) -> Optional[uuid.UUID]:
        """Extract the user id from the auth cookie's JWT"""
        auth_cookie = request.cookies.get(AUTH_COOKIE_NAME)
        if not auth_cookie:
            return None
        try:
            payload = jwt.decode(
                auth_cookie,
                settings.SECRET,
                algorithms=["HS256"],
                audience=JWT_AUDIENCE,
            )
            return uuid.UUID(payload["sub"])
        except (jwt.InvalidTokenError, KeyError, ValueError) as e:
            logger.debug(f"Could not extract user ID from request: {e}")
            return None

    async def _do_presence_update(self, user_id: uuid.UUID, request: Request):
        # Tests swap the throttle dependency; follow the override if present
        overrides = getattr(request.app, "dependency_overrides", None) or {}
        provider = overrides.get(get_presence_throttle, get_presence_throttle)
        provider().touch(user_id)


async def sweep_stale_presence(session_factory: Callable[[], AsyncSession]) -> int:
    """Marks online rows whose heartbeat lapsed as offline."""
    async with session_factory() as session:
        return await presence_service_for(session).mark_stale_offline(
            settings.presence_stale_after
        )


async def run_presence_sweeper(
    session_factory: Callable[[], AsyncSession], interval: float | None = None
):
    """Background loop started by the application lifespan."""
    interval = interval if interval is not None else settings.PRESENCE_REFRESH_SECONDS
    while True:
        await asyncio.sleep(interval)
        try:
            await sweep_stale_presence(session_factory)
        except Exception as e:
            logger.warning(f"Presence sweep failed: {e}")
