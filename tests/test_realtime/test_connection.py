import asyncio
import json

import pytest
from fastapi import WebSocketDisconnect
from sqlalchemy import select

from chatcore.models import Presence, User
from chatcore.realtime import ChangeFeed, ChatConnection
from chatcore.realtime.capture import ChangeCapture
from chatcore.schemas.presence import PresenceStatus
from chatcore.services.dependencies import (
    conversation_service_for,
    message_service_for,
)
from test_helpers import add_users, create_test_user

_DISCONNECT = object()


class FakeWebSocket:
    def __init__(self):
        self.incoming: asyncio.Queue = asyncio.Queue()
        self.sent: asyncio.Queue = asyncio.Queue()

    async def receive_json(self):
        frame = await self.incoming.get()
        if frame is _DISCONNECT:
            raise WebSocketDisconnect(code=1000)
        if isinstance(frame, Exception):
            raise frame
        return frame

    async def send_json(self, frame):
        await self.sent.put(frame)

    async def next_frame(self, frame_type: str, timeout: float = 2.0) -> dict:
        while True:
            frame = await asyncio.wait_for(self.sent.get(), timeout)
            if frame["type"] == frame_type:
                return frame


@pytest.fixture
def feed():
    feed = ChangeFeed()
    capture = ChangeCapture(feed).install()
    yield feed
    capture.remove()


@pytest.fixture
async def people(db_test_session_manager):
    async with db_test_session_manager() as session:
        me = create_test_user(name="Me")
        friend = create_test_user(name="Friend")
        outsider_a = create_test_user()
        outsider_b = create_test_user()
        await add_users(session, me, friend, outsider_a, outsider_b)
        conversation = await conversation_service_for(session).find_or_create_direct(
            me, friend.id
        )
        foreign = await conversation_service_for(session).find_or_create_direct(
            outsider_a, outsider_b.id
        )
        return me.id, friend.id, conversation.id, foreign.id


def _connection(socket, user_id, feed, session_maker, online_delay=0.2):
    return ChatConnection(
        socket,
        user_id,
        feed,
        session_maker,
        online_delay=online_delay,
        heartbeat_interval=60,
        debounce_interval=0.02,
    )


async def _presence_of(session_maker, user_id):
    async with session_maker() as session:
        return await session.scalar(select(Presence).where(Presence.user_id == user_id))


async def test_connection_streams_lists_threads_and_presence(
    db_test_session_manager, feed, people
):
    me_id, _, conversation_id, _ = people
    socket = FakeWebSocket()
    connection = _connection(socket, me_id, feed, db_test_session_manager)
    runner = asyncio.create_task(connection.run())

    conversations = await socket.next_frame("conversations")
    assert [c["id"] for c in conversations["data"]] == [str(conversation_id)]

    # Going online shows up in the presence stream
    while True:
        presence = await socket.next_frame("presence")
        statuses = {p["user_id"]: p["status"] for p in presence["data"]}
        if statuses.get(str(me_id)) == "online":
            break

    await socket.incoming.put({"type": "open", "conversation_id": str(conversation_id)})
    thread = await socket.next_frame("messages")
    assert thread["conversation_id"] == str(conversation_id)
    assert thread["data"] == []

    await socket.incoming.put({"type": "ping"})
    assert (await socket.next_frame("pong")) == {"type": "pong"}

    await socket.incoming.put(_DISCONNECT)
    await asyncio.wait_for(runner, 2)

    assert feed.subscriber_count() == 0
    row = await _presence_of(db_test_session_manager, me_id)
    assert row.status == PresenceStatus.OFFLINE


async def test_opening_a_foreign_conversation_sends_error(
    db_test_session_manager, feed, people
):
    me_id, _, _, foreign_id = people
    socket = FakeWebSocket()
    connection = _connection(socket, me_id, feed, db_test_session_manager)

    await connection.handle_frame({"type": "open", "conversation_id": str(foreign_id)})

    error = await socket.next_frame("error")
    assert "not a participant" in error["detail"]
    assert connection.threads == {}
    await connection.shutdown()


async def test_typing_frames_are_debounced(db_test_session_manager, feed, people):
    me_id, _, conversation_id, _ = people
    socket = FakeWebSocket()
    connection = _connection(socket, me_id, feed, db_test_session_manager)

    await connection.handle_frame({"type": "typing", "conversation_id": str(conversation_id)})
    await connection.handle_frame({"type": "typing", "conversation_id": None})
    await asyncio.sleep(0.1)

    assert connection.presence.writes == 1
    row = await _presence_of(db_test_session_manager, me_id)
    assert row.status == PresenceStatus.ONLINE
    assert row.typing_in_conversation_id is None
    await connection.shutdown()


async def test_unknown_and_malformed_frames_are_reported(
    db_test_session_manager, feed, people
):
    me_id, _, _, _ = people
    socket = FakeWebSocket()
    connection = _connection(socket, me_id, feed, db_test_session_manager)

    await connection.handle_frame({"type": "dance"})
    await connection.handle_frame({"type": "open", "conversation_id": "not-a-uuid"})
    await connection.handle_frame(["not", "an", "object"])

    details = [(await socket.next_frame("error"))["detail"] for _ in range(3)]
    assert details == [
        "Unknown frame type: 'dance'",
        "Invalid conversation_id.",
        "Frames must be JSON objects.",
    ]
    await connection.shutdown()


async def test_non_json_frames_do_not_drop_the_connection(
    db_test_session_manager, feed, people
):
    me_id, _, _, _ = people
    socket = FakeWebSocket()
    connection = _connection(socket, me_id, feed, db_test_session_manager)
    runner = asyncio.create_task(connection.run())

    await socket.incoming.put(json.JSONDecodeError("Expecting value", "hello", 0))
    error = await socket.next_frame("error")
    assert error["detail"] == "Frames must be valid JSON."

    await socket.incoming.put({"type": "ping"})
    assert (await socket.next_frame("pong")) == {"type": "pong"}

    await socket.incoming.put(_DISCONNECT)
    await asyncio.wait_for(runner, 2)


async def test_thread_closes_after_leaving_the_group(
    db_test_session_manager, feed, people
):
    me_id, friend_id, _, _ = people
    async with db_test_session_manager() as session:
        me = await session.get(User, me_id)
        group = await conversation_service_for(session).create_group(
            me, "Budget Buddies", [friend_id]
        )
        group_id = group.id

    socket = FakeWebSocket()
    connection = _connection(socket, me_id, feed, db_test_session_manager)
    await connection.handle_frame({"type": "open", "conversation_id": str(group_id)})
    await socket.next_frame("messages")
    assert group_id in connection.threads

    async with db_test_session_manager() as session:
        me = await session.get(User, me_id)
        await conversation_service_for(session).leave(group_id, me)
    async with db_test_session_manager() as session:
        friend = await session.get(User, friend_id)
        await message_service_for(session).send_text(group_id, friend, "still here?")

    error = await socket.next_frame("error")
    assert error["conversation_id"] == str(group_id)
    assert "not a participant" in error["detail"]
    assert connection.threads == {}
    assert feed.subscriber_count("messages") == 0
    await connection.shutdown()
