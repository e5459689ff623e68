import asyncio
import uuid

from sqlalchemy import select

from chatcore.models import Presence
from chatcore.realtime import PresenceDebouncer, PresenceThrottle
from chatcore.schemas.presence import PresenceStatus
from test_helpers import add_users, create_test_user


class RecordingWriter:
    def __init__(self, fail: bool = False):
        self.calls = []
        self.fail = fail

    async def __call__(self, user_id, status, typing_in_conversation_id):
        if self.fail:
            raise RuntimeError("store unavailable")
        self.calls.append((user_id, status, typing_in_conversation_id))


async def test_calls_within_window_coalesce_into_latest_state():
    writer = RecordingWriter()
    user_id = uuid.uuid4()
    debouncer = PresenceDebouncer(user_id, writer, interval=0.05)

    debouncer.set_presence(PresenceStatus.ONLINE)
    debouncer.set_presence(PresenceStatus.OFFLINE)
    await asyncio.sleep(0.15)

    assert writer.calls == [(user_id, PresenceStatus.OFFLINE, None)]
    assert debouncer.writes == 1


async def test_nothing_is_written_before_the_window_closes():
    writer = RecordingWriter()
    debouncer = PresenceDebouncer(uuid.uuid4(), writer, interval=0.2)

    debouncer.set_presence(PresenceStatus.ONLINE)
    await asyncio.sleep(0.01)

    assert writer.calls == []
    assert debouncer.has_pending
    await debouncer.close()


async def test_calls_in_separate_windows_each_write():
    writer = RecordingWriter()
    conversation_id = uuid.uuid4()
    debouncer = PresenceDebouncer(uuid.uuid4(), writer, interval=0.03)

    debouncer.set_presence(PresenceStatus.ONLINE, conversation_id)
    await asyncio.sleep(0.1)
    debouncer.set_presence(PresenceStatus.ONLINE)
    await asyncio.sleep(0.1)

    assert [call[2] for call in writer.calls] == [conversation_id, None]


async def test_close_drops_pending_and_writes_offline():
    writer = RecordingWriter()
    user_id = uuid.uuid4()
    debouncer = PresenceDebouncer(user_id, writer, interval=10)

    debouncer.set_presence(PresenceStatus.ONLINE, uuid.uuid4())
    await debouncer.close()
    debouncer.set_presence(PresenceStatus.ONLINE)

    assert writer.calls == [(user_id, PresenceStatus.OFFLINE, None)]
    assert not debouncer.has_pending


async def test_write_failures_are_swallowed():
    writer = RecordingWriter(fail=True)
    debouncer = PresenceDebouncer(uuid.uuid4(), writer, interval=0.01)

    debouncer.set_presence(PresenceStatus.ONLINE)
    await asyncio.sleep(0.05)
    await debouncer.close()

    assert debouncer.writes == 0


async def test_touch_uses_the_heartbeat_writer():
    writer = RecordingWriter()
    beats = []

    async def heartbeat(user_id):
        beats.append(user_id)

    user_id = uuid.uuid4()
    debouncer = PresenceDebouncer(user_id, writer, interval=10, heartbeat=heartbeat)

    debouncer.touch()
    debouncer.touch()
    await debouncer.flush_now()

    assert beats == [user_id]
    assert writer.calls == []
    assert debouncer.writes == 1


async def test_explicit_state_in_the_window_wins_over_touch():
    writer = RecordingWriter()
    user_id = uuid.uuid4()
    debouncer = PresenceDebouncer(user_id, writer, interval=10)

    debouncer.set_presence(PresenceStatus.OFFLINE)
    debouncer.touch()
    await debouncer.flush_now()

    assert writer.calls == [(user_id, PresenceStatus.OFFLINE, None)]


async def test_touch_without_heartbeat_writes_online():
    writer = RecordingWriter()
    user_id = uuid.uuid4()
    debouncer = PresenceDebouncer(user_id, writer, interval=10)

    debouncer.touch()
    await debouncer.flush_now()

    assert writer.calls == [(user_id, PresenceStatus.ONLINE, None)]


async def test_flush_now_closes_the_window_early():
    writer = RecordingWriter()
    user_id = uuid.uuid4()
    debouncer = PresenceDebouncer(user_id, writer, interval=10)

    debouncer.set_presence(PresenceStatus.ONLINE)
    await debouncer.flush_now()
    await debouncer.flush_now()

    assert writer.calls == [(user_id, PresenceStatus.ONLINE, None)]
    assert not debouncer.has_pending


async def test_throttle_keeps_one_window_per_user(db_test_session_manager):
    alice = create_test_user(name="Alice")
    bob = create_test_user(name="Bob")
    async with db_test_session_manager() as session:
        await add_users(session, alice, bob)

    throttle = PresenceThrottle(db_test_session_manager, interval=60)
    throttle.set_presence(alice.id, PresenceStatus.ONLINE)
    throttle.set_presence(alice.id, PresenceStatus.OFFLINE)
    throttle.touch(bob.id)
    await throttle.flush_all()

    assert throttle.writes(alice.id) == 1
    assert throttle.writes(bob.id) == 1
    async with db_test_session_manager() as session:
        rows = {
            row.user_id: row.status
            for row in (await session.scalars(select(Presence))).all()
        }
    assert rows == {alice.id: PresenceStatus.OFFLINE, bob.id: PresenceStatus.ONLINE}
