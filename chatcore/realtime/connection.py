import asyncio
import logging
from typing import Any
from uuid import UUID

from fastapi import WebSocket, WebSocketDisconnect

from chatcore.core.config import settings
from chatcore.logic.presence_processing import presence_responses
from chatcore.models import Message, Presence
from chatcore.schemas.conversation import ConversationSummary
from chatcore.schemas.message import MessageResponse
from chatcore.schemas.presence import PresenceStatus
from chatcore.services.conversation_service import ConversationListing
from chatcore.services.dependencies import presence_service_for
from chatcore.services.exceptions import ServiceError

from .feed import ChangeFeed
from .presence_debouncer import PresenceDebouncer
from .read_models import (
    ConversationListReadModel,
    MessageThreadReadModel,
    PresenceReadModel,
    SessionFactory,
)

logger = logging.getLogger(__name__)


class ChatConnection:
    """
    Drives one realtime client.

    Client frames (JSON objects with a "type"):
      open {conversation_id}    start streaming a message thread
      close {conversation_id}   stop streaming it
      typing {conversation_id}  typing indicator; null conversation_id clears it
      ping                      answered with pong

    Server frames: conversations, messages, presence, pong, error.
    """

    def __init__(
        self,
        websocket: WebSocket,
        user_id: UUID,
        feed: ChangeFeed,
        session_factory: SessionFactory,
        *,
        online_delay: float | None = None,
        heartbeat_interval: float | None = None,
        debounce_interval: float | None = None,
    ):
        self.websocket = websocket
        self.user_id = user_id
        self.feed = feed
        self.session_factory = session_factory
        self.online_delay = (
            online_delay if online_delay is not None else settings.PRESENCE_ONLINE_DELAY_SECONDS
        )
        self.heartbeat_interval = (
            heartbeat_interval
            if heartbeat_interval is not None
            else settings.PRESENCE_HEARTBEAT_SECONDS
        )
        self.presence = PresenceDebouncer(
            user_id, self._write_presence, interval=debounce_interval
        )
        self.conversations = ConversationListReadModel(
            user_id, feed, session_factory, self._send_conversations
        )
        self.presence_model = PresenceReadModel(
            feed, session_factory, self._send_presence
        )
        self.threads: dict[UUID, MessageThreadReadModel] = {}
        self._tasks: list[asyncio.Task] = []
        self._closed = False

    async def send(self, frame: dict[str, Any]) -> None:
        if not self._closed:
            await self.websocket.send_json(frame)

    async def _write_presence(
        self,
        user_id: UUID,
        status: PresenceStatus,
        typing_in_conversation_id: UUID | None,
    ) -> None:
        async with self.session_factory() as session:
            await presence_service_for(session).set_presence(
                user_id, status, typing_in_conversation_id
            )

    async def _touch(self) -> None:
        async with self.session_factory() as session:
            await presence_service_for(session).touch(self.user_id)

    async def _send_conversations(self, listings: list[ConversationListing]) -> None:
        await self.send(
            {
                "type": "conversations",
                "data": [
                    ConversationSummary.from_listing(listing).model_dump(mode="json")
                    for listing in listings
                ],
            }
        )

    async def _send_presence(self, snapshot: dict[UUID, Presence]) -> None:
        await self.send(
            {
                "type": "presence",
                "data": [p.model_dump(mode="json") for p in presence_responses(snapshot)],
            }
        )

    def _thread_sender(self, conversation_id: UUID):
        async def send_messages(messages: list[Message]) -> None:
            await self.send(
                {
                    "type": "messages",
                    "conversation_id": str(conversation_id),
                    "data": [
                        MessageResponse.model_validate(m).model_dump(mode="json")
                        for m in messages
                    ],
                }
            )

        return send_messages

    def _thread_failed(self, conversation_id: UUID):
        async def thread_failed(error: ServiceError) -> None:
            # The model already unsubscribed itself
            self.threads.pop(conversation_id, None)
            await self.send(
                {
                    "type": "error",
                    "conversation_id": str(conversation_id),
                    "detail": error.message,
                }
            )

        return thread_failed

    async def start(self) -> None:
        await self.conversations.start()
        await self.presence_model.start()
        self._tasks.append(asyncio.create_task(self._announce_online()))
        self._tasks.append(asyncio.create_task(self._heartbeat()))
        logger.info(f"Realtime connection opened for user {self.user_id}")

    async def _announce_online(self) -> None:
        # Let the subscriptions settle before others see us online
        await asyncio.sleep(self.online_delay)
        try:
            await self._write_presence(self.user_id, PresenceStatus.ONLINE, None)
        except Exception as e:
            logger.warning(f"Could not mark {self.user_id} online: {e}")

    async def _heartbeat(self) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            try:
                await self._touch()
            except Exception as e:
                logger.warning(f"Heartbeat for {self.user_id} failed: {e}")

    async def handle_frame(self, frame: Any) -> None:
        if not isinstance(frame, dict):
            await self.send({"type": "error", "detail": "Frames must be JSON objects."})
            return
        frame_type = frame.get("type")
        try:
            if frame_type == "ping":
                await self.send({"type": "pong"})
            elif frame_type == "open":
                await self.open_thread(UUID(str(frame.get("conversation_id"))))
            elif frame_type == "close":
                await self.close_thread(UUID(str(frame.get("conversation_id"))))
            elif frame_type == "typing":
                raw = frame.get("conversation_id")
                self.presence.set_presence(
                    PresenceStatus.ONLINE, UUID(str(raw)) if raw else None
                )
            else:
                await self.send(
                    {"type": "error", "detail": f"Unknown frame type: {frame_type!r}"}
                )
        except ValueError:
            await self.send({"type": "error", "detail": "Invalid conversation_id."})

    async def open_thread(self, conversation_id: UUID) -> None:
        if conversation_id in self.threads:
            return
        model = MessageThreadReadModel(
            self.user_id,
            conversation_id,
            self.feed,
            self.session_factory,
            self._thread_sender(conversation_id),
            on_error=self._thread_failed(conversation_id),
        )
        try:
            # The first load doubles as the membership check
            await model.refresh()
        except ServiceError as e:
            await self.send({"type": "error", "detail": e.message})
            return
        await model.start(initial_refresh=False)
        self.threads[conversation_id] = model

    async def close_thread(self, conversation_id: UUID) -> None:
        model = self.threads.pop(conversation_id, None)
        if model is not None:
            await model.stop()

    async def run(self) -> None:
        await self.start()
        try:
            while True:
                try:
                    frame = await self.websocket.receive_json()
                except ValueError:
                    await self.send({"type": "error", "detail": "Frames must be valid JSON."})
                    continue
                await self.handle_frame(frame)
        except WebSocketDisconnect:
            logger.info(f"Realtime connection closed by user {self.user_id}")
        finally:
            await self.shutdown()

    async def shutdown(self) -> None:
        if self._closed:
            return
        self._closed = True
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []
        for conversation_id in list(self.threads):
            await self.close_thread(conversation_id)
        await self.conversations.stop()
        await self.presence_model.stop()
        await self.presence.close()
