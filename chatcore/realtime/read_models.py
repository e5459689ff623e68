import asyncio
import enum
import logging
from typing import Any, Awaitable, Callable, Generic, Mapping, TypeVar
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from chatcore.core.config import settings
from chatcore.models import Message, Presence, User
from chatcore.repositories.user_repository import UserRepository
from chatcore.services.conversation_service import ConversationListing
from chatcore.services.dependencies import (
    conversation_service_for,
    message_service_for,
    presence_service_for,
)
from chatcore.services.exceptions import (
    DatabaseError,
    ServiceError,
    UserNotFoundError,
)

from .feed import ChangeEvent, ChangeFeed, Subscription

logger = logging.getLogger(__name__)

T = TypeVar("T")

SessionFactory = Callable[[], AsyncSession]


class ReadModelState(str, enum.Enum):
    UNSUBSCRIBED = "unsubscribed"
    LISTENING = "listening"
    REFRESHING = "refreshing"


def retry_delay(attempt: int, base: float, cap: float) -> float:
    """Exponential backoff: base, 2*base, 4*base ... never above cap."""
    return min(base * (2**attempt), cap)


class ReadModel(Generic[T]):
    """
    A query result kept fresh by change notifications.

    start() subscribes to the model's tables and loads once; every matching
    change marks the model dirty and a background task reloads it and hands
    the result to on_change. Bursts of changes collapse into one reload.
    A reload that fails is retried with capped exponential backoff, except
    for service errors (lost membership, missing user): those end the model,
    which unsubscribes and reports the error through on_error.
    """

    tables: tuple[str, ...] = ()
    refresh_interval: float | None = None

    def __init__(
        self,
        feed: ChangeFeed,
        session_factory: SessionFactory,
        on_change: Callable[[T], Awaitable[None]],
        *,
        filter: Mapping[str, Any] | None = None,
        retry_base: float = 0.5,
        retry_max: float | None = None,
        on_error: Callable[[ServiceError], Awaitable[None]] | None = None,
    ):
        self.feed = feed
        self.session_factory = session_factory
        self.on_change = on_change
        self.on_error = on_error
        self.filter = filter
        self.retry_base = retry_base
        self.retry_max = (
            retry_max if retry_max is not None else settings.REALTIME_RETRY_MAX_SECONDS
        )
        self.state = ReadModelState.UNSUBSCRIBED
        self.failures = 0
        self.value: T | None = None
        self._subscriptions: list[Subscription] = []
        self._dirty = asyncio.Event()
        self._task: asyncio.Task | None = None

    async def load(self, session: AsyncSession) -> T:
        raise NotImplementedError

    def _on_event(self, event: ChangeEvent) -> None:
        self._dirty.set()

    async def start(self, initial_refresh: bool = True) -> None:
        if self.state != ReadModelState.UNSUBSCRIBED:
            return
        self._subscriptions = [
            self.feed.subscribe(table, self._on_event, filter=self.filter)
            for table in self.tables
        ]
        self.state = ReadModelState.LISTENING
        if initial_refresh:
            self._dirty.set()
        self._task = asyncio.create_task(self._run())
        logger.debug(f"{type(self).__name__} listening on {', '.join(self.tables)}")

    async def stop(self) -> None:
        for subscription in self._subscriptions:
            self.feed.unsubscribe(subscription)
        self._subscriptions = []
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self.state = ReadModelState.UNSUBSCRIBED
        logger.debug(f"{type(self).__name__} unsubscribed")

    async def refresh(self) -> T:
        self.state = ReadModelState.REFRESHING
        try:
            async with self.session_factory() as session:
                value = await self.load(session)
        finally:
            if self.state == ReadModelState.REFRESHING:
                self.state = ReadModelState.LISTENING
        self.value = value
        await self.on_change(value)
        return value

    async def _run(self) -> None:
        while True:
            try:
                await asyncio.wait_for(self._dirty.wait(), timeout=self.refresh_interval)
            except asyncio.TimeoutError:
                # Periodic safety net for notifications that never arrived
                pass
            self._dirty.clear()
            try:
                await self._refresh_with_retry()
            except ServiceError as e:
                await self._end(e)
                return

    async def _end(self, error: ServiceError) -> None:
        # Runs inside the model task, so the task is dropped rather than awaited
        for subscription in self._subscriptions:
            self.feed.unsubscribe(subscription)
        self._subscriptions = []
        self._task = None
        self.state = ReadModelState.UNSUBSCRIBED
        logger.info(f"{type(self).__name__} stopped: {error.message}")
        if self.on_error is not None:
            await self.on_error(error)

    async def _refresh_with_retry(self) -> None:
        attempt = 0
        while True:
            try:
                await self.refresh()
                self.failures = 0
                return
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if isinstance(e, ServiceError) and not isinstance(e, DatabaseError):
                    # Retrying cannot restore a lost membership
                    raise
                self.failures += 1
                delay = retry_delay(attempt, self.retry_base, self.retry_max)
                logger.warning(
                    f"{type(self).__name__} refresh failed ({e}); retrying in {delay:.1f}s"
                )
                attempt += 1
                await asyncio.sleep(delay)


async def _load_user(session: AsyncSession, user_id: UUID) -> User:
    user = await UserRepository(session).get_user_by_id(user_id)
    if not user:
        raise UserNotFoundError(f"User with ID '{user_id}' not found.")
    return user


class ConversationListReadModel(ReadModel[list[ConversationListing]]):
    tables = ("conversations", "conversation_participants", "messages")

    def __init__(self, user_id: UUID, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.user_id = user_id

    async def load(self, session: AsyncSession) -> list[ConversationListing]:
        user = await _load_user(session, self.user_id)
        return await conversation_service_for(session).list_for_user(user)


class MessageThreadReadModel(ReadModel[list[Message]]):
    tables = ("messages",)

    def __init__(self, user_id: UUID, conversation_id: UUID, *args, **kwargs):
        kwargs["filter"] = {"conversation_id": conversation_id}
        super().__init__(*args, **kwargs)
        self.user_id = user_id
        self.conversation_id = conversation_id

    async def load(self, session: AsyncSession) -> list[Message]:
        user = await _load_user(session, self.user_id)
        return await message_service_for(session).list_messages(
            self.conversation_id, user
        )


class PresenceReadModel(ReadModel[dict[UUID, Presence]]):
    tables = ("presence",)

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.refresh_interval = settings.PRESENCE_REFRESH_SECONDS

    async def load(self, session: AsyncSession) -> dict[UUID, Presence]:
        return await presence_service_for(session).snapshot()
