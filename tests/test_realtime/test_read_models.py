import asyncio

import pytest

from chatcore.models import User
from chatcore.realtime import (
    ChangeEvent,
    ChangeFeed,
    ChangeType,
    MessageThreadReadModel,
    PresenceReadModel,
    ReadModel,
    ReadModelState,
)
from chatcore.realtime.capture import ChangeCapture
from chatcore.realtime.read_models import retry_delay
from chatcore.schemas.presence import PresenceStatus
from chatcore.services.dependencies import (
    conversation_service_for,
    message_service_for,
    presence_service_for,
)
from chatcore.services.exceptions import NotAuthorizedError
from test_helpers import InMemoryStorage, add_users, create_test_user


class CountingModel(ReadModel[int]):
    tables = ("messages",)

    def __init__(self, *args, fail_times: int = 0, **kwargs):
        super().__init__(*args, **kwargs)
        self.loads = 0
        self.fail_times = fail_times

    async def load(self, session):
        self.loads += 1
        if self.loads <= self.fail_times:
            raise RuntimeError("store unavailable")
        return self.loads


@pytest.fixture
def feed():
    feed = ChangeFeed()
    capture = ChangeCapture(feed).install()
    yield feed
    capture.remove()


async def _next(queue: asyncio.Queue, timeout: float = 2.0):
    return await asyncio.wait_for(queue.get(), timeout)


async def test_state_machine_start_refresh_stop(db_test_session_manager):
    feed = ChangeFeed()
    values: asyncio.Queue = asyncio.Queue()
    model = CountingModel(feed, db_test_session_manager, values.put)
    assert model.state == ReadModelState.UNSUBSCRIBED

    await model.start()
    assert model.state == ReadModelState.LISTENING
    assert feed.subscriber_count("messages") == 1
    assert await _next(values) == 1

    feed.publish(ChangeEvent("messages", ChangeType.INSERT, {}))
    assert await _next(values) == 2
    assert model.state == ReadModelState.LISTENING

    await model.stop()
    assert model.state == ReadModelState.UNSUBSCRIBED
    assert feed.subscriber_count() == 0


async def test_burst_of_events_collapses_into_one_refresh(db_test_session_manager):
    feed = ChangeFeed()
    values: asyncio.Queue = asyncio.Queue()
    model = CountingModel(feed, db_test_session_manager, values.put)
    await model.start(initial_refresh=False)

    for _ in range(5):
        feed.publish(ChangeEvent("messages", ChangeType.INSERT, {}))
    assert await _next(values) == 1
    await asyncio.sleep(0.05)

    assert values.empty()
    await model.stop()


async def test_failed_refresh_is_retried_with_backoff(db_test_session_manager):
    feed = ChangeFeed()
    values: asyncio.Queue = asyncio.Queue()
    model = CountingModel(
        feed,
        db_test_session_manager,
        values.put,
        fail_times=2,
        retry_base=0.01,
        retry_max=0.02,
    )

    await model.start()

    assert await _next(values) == 3
    assert model.failures == 0
    assert model.state == ReadModelState.LISTENING
    await model.stop()


class RevokedModel(CountingModel):
    async def load(self, session):
        self.loads += 1
        raise NotAuthorizedError("User is not a participant in this conversation.")


async def test_service_errors_end_the_model_without_retrying(db_test_session_manager):
    feed = ChangeFeed()
    errors: asyncio.Queue = asyncio.Queue()
    model = RevokedModel(
        feed, db_test_session_manager, None, on_error=errors.put, retry_base=0.01
    )

    await model.start()

    error = await _next(errors)
    assert isinstance(error, NotAuthorizedError)
    assert model.state == ReadModelState.UNSUBSCRIBED
    assert feed.subscriber_count() == 0
    await asyncio.sleep(0.05)
    assert model.loads == 1
    # Stopping an ended model is harmless
    await model.stop()


def test_retry_delay_doubles_up_to_cap():
    delays = [retry_delay(attempt, 0.5, 4.0) for attempt in range(6)]
    assert delays == [0.5, 1.0, 2.0, 4.0, 4.0, 4.0]


async def test_thread_model_only_reacts_to_its_conversation(
    db_test_session_manager, feed
):
    async with db_test_session_manager() as session:
        a = create_test_user()
        b = create_test_user()
        c = create_test_user()
        await add_users(session, a, b, c)
        conversations = conversation_service_for(session)
        watched = await conversations.find_or_create_direct(a, b.id)
        other = await conversations.find_or_create_direct(a, c.id)
        a_id, watched_id, other_id = a.id, watched.id, other.id

    values: asyncio.Queue = asyncio.Queue()
    model = MessageThreadReadModel(
        a_id, watched_id, feed, db_test_session_manager, values.put
    )
    await model.start()
    assert await _next(values) == []

    async with db_test_session_manager() as session:
        author = await session.get(User, a_id)
        await message_service_for(session, InMemoryStorage()).send_text(
            other_id, author, "elsewhere"
        )
    await asyncio.sleep(0.05)
    assert values.empty()

    async with db_test_session_manager() as session:
        author = await session.get(User, a_id)
        await message_service_for(session, InMemoryStorage()).send_text(
            watched_id, author, "here"
        )
    messages = await _next(values)
    assert [m.content for m in messages] == ["here"]

    await model.stop()


async def test_presence_model_refreshes_on_change(db_test_session_manager, feed):
    async with db_test_session_manager() as session:
        user = create_test_user()
        await add_users(session, user)
        user_id = user.id

    values: asyncio.Queue = asyncio.Queue()
    model = PresenceReadModel(feed, db_test_session_manager, values.put)
    await model.start()
    assert await _next(values) == {}

    async with db_test_session_manager() as session:
        await presence_service_for(session).set_presence(user_id, PresenceStatus.ONLINE)

    snapshot = await _next(values)
    assert snapshot[user_id].status == PresenceStatus.ONLINE
    await model.stop()


async def test_presence_model_falls_back_to_interval(db_test_session_manager):
    feed = ChangeFeed()
    values: asyncio.Queue = asyncio.Queue()
    model = PresenceReadModel(feed, db_test_session_manager, values.put)
    model.refresh_interval = 0.05

    await model.start()
    assert await _next(values) == {}
    # No change events at all, yet the model reloads on its own
    assert await _next(values) == {}
    await model.stop()
