import asyncio
import logging
from typing import Awaitable, Callable
from uuid import UUID

from chatcore.core.config import settings
from chatcore.db import async_session_maker
from chatcore.schemas.presence import PresenceStatus
from chatcore.services.dependencies import presence_service_for

from .read_models import SessionFactory

logger = logging.getLogger(__name__)

PresenceWriter = Callable[[UUID, PresenceStatus, UUID | None], Awaitable[object]]
HeartbeatWriter = Callable[[UUID], Awaitable[object]]

# Pending marker for "still here": online, typing pointer left as stored
_HEARTBEAT = object()


class PresenceDebouncer:
    """
    Coalesces presence updates from one connection.

    The first call after a quiet period opens a window of `interval` seconds;
    calls inside the window only replace the pending state, and a single
    write carrying the latest state happens when the window closes.
    """

    def __init__(
        self,
        user_id: UUID,
        writer: PresenceWriter,
        interval: float | None = None,
        heartbeat: HeartbeatWriter | None = None,
    ):
        self.user_id = user_id
        self.writer = writer
        self.heartbeat = heartbeat
        self.interval = (
            interval if interval is not None else settings.PRESENCE_DEBOUNCE_SECONDS
        )
        self.writes = 0
        self._pending = None
        self._task: asyncio.Task | None = None
        self._sleeping = False
        self._closed = False

    @property
    def has_pending(self) -> bool:
        return self._pending is not None

    def set_presence(
        self, status: PresenceStatus, typing_in_conversation_id: UUID | None = None
    ) -> None:
        if self._closed:
            return
        self._pending = (status, typing_in_conversation_id)
        self._schedule()

    def touch(self) -> None:
        """Heartbeat; an explicit state already waiting in the window wins."""
        if self._closed:
            return
        if self._pending is None:
            self._pending = _HEARTBEAT
        self._schedule()

    def _schedule(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._flush_later())

    async def _flush_later(self) -> None:
        self._sleeping = True
        try:
            await asyncio.sleep(self.interval)
        finally:
            self._sleeping = False
        await self.flush()

    async def flush(self) -> None:
        if self._pending is None:
            return
        pending, self._pending = self._pending, None
        try:
            if pending is _HEARTBEAT:
                if self.heartbeat is not None:
                    await self.heartbeat(self.user_id)
                else:
                    await self.writer(self.user_id, PresenceStatus.ONLINE, None)
            else:
                status, typing_in_conversation_id = pending
                await self.writer(self.user_id, status, typing_in_conversation_id)
            self.writes += 1
        except Exception as e:
            logger.warning(f"Presence write for {self.user_id} failed: {e}")

    async def flush_now(self) -> None:
        """Closes the current window early and writes what is pending."""
        task = self._task
        if task is not None and not task.done():
            if self._sleeping:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
            else:
                # Already writing; let that write land
                await task
        await self.flush()

    async def close(self) -> None:
        """Drops any pending update and writes offline. Best effort."""
        if self._closed:
            return
        self._closed = True
        self._pending = None
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        try:
            await self.writer(self.user_id, PresenceStatus.OFFLINE, None)
            self.writes += 1
        except Exception as e:
            logger.warning(f"Offline presence write for {self.user_id} failed: {e}")


class PresenceThrottle:
    """
    One debouncer per user for presence writes that arrive over HTTP.

    PUT /presence and the per-request heartbeat both go through here, so a
    burst of requests from one user becomes a single trailing write.
    """

    def __init__(self, session_factory: SessionFactory, interval: float | None = None):
        self.session_factory = session_factory
        self.interval = interval
        self._debouncers: dict[UUID, PresenceDebouncer] = {}

    def _debouncer_for(self, user_id: UUID) -> PresenceDebouncer:
        debouncer = self._debouncers.get(user_id)
        if debouncer is None:
            debouncer = self._debouncers[user_id] = PresenceDebouncer(
                user_id, self._write, interval=self.interval, heartbeat=self._touch
            )
        return debouncer

    def set_presence(
        self,
        user_id: UUID,
        status: PresenceStatus,
        typing_in_conversation_id: UUID | None = None,
    ) -> None:
        self._debouncer_for(user_id).set_presence(status, typing_in_conversation_id)

    def touch(self, user_id: UUID) -> None:
        self._debouncer_for(user_id).touch()

    def writes(self, user_id: UUID) -> int:
        debouncer = self._debouncers.get(user_id)
        return debouncer.writes if debouncer else 0

    async def flush_all(self) -> None:
        for debouncer in list(self._debouncers.values()):
            await debouncer.flush_now()

    async def _write(
        self,
        user_id: UUID,
        status: PresenceStatus,
        typing_in_conversation_id: UUID | None,
    ) -> None:
        async with self.session_factory() as session:
            await presence_service_for(session).set_presence(
                user_id, status, typing_in_conversation_id
            )

    async def _touch(self, user_id: UUID) -> None:
        async with self.session_factory() as session:
            await presence_service_for(session).touch(user_id)


presence_throttle = PresenceThrottle(async_session_maker)


def get_presence_throttle() -> PresenceThrottle:
    """Dependency provider for the process-wide presence throttle."""
    return presence_throttle
