from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from chatcore.middleware.presence import PresenceMiddleware, sweep_stale_presence
from chatcore.models import Presence, User
from chatcore.realtime.presence_debouncer import PresenceThrottle
from chatcore.schemas.presence import PresenceStatus
from chatcore.services.presence_service import as_utc
from test_helpers import add_users, create_test_user


async def _presence_row(session_maker, user_id):
    async with session_maker() as session:
        return await session.scalar(select(Presence).where(Presence.user_id == user_id))


async def test_authenticated_request_records_presence(
    authenticated_client: AsyncClient,
    logged_in_user: User,
    presence_throttle: PresenceThrottle,
    db_test_session_manager: async_sessionmaker[AsyncSession],
):
    before_request = datetime.now(timezone.utc)

    response = await authenticated_client.get("/conversations")
    assert response.status_code == 200

    await presence_throttle.flush_all()
    row = await _presence_row(db_test_session_manager, logged_in_user.id)
    assert row is not None
    assert row.status == PresenceStatus.ONLINE
    assert before_request <= as_utc(row.last_seen) <= datetime.now(timezone.utc)


async def test_heartbeat_keeps_typing_indicator(
    authenticated_client: AsyncClient,
    logged_in_user: User,
    presence_throttle: PresenceThrottle,
    db_test_session_manager: async_sessionmaker[AsyncSession],
    other_user,
):
    opened = await authenticated_client.post(
        "/conversations/direct", json={"other_user_id": str(other_user.id)}
    )
    conversation_id = opened.json()["id"]
    await authenticated_client.put(
        "/presence",
        json={"status": "online", "typing_in_conversation_id": conversation_id},
    )
    await presence_throttle.flush_all()

    await authenticated_client.get("/health")
    await presence_throttle.flush_all()

    row = await _presence_row(db_test_session_manager, logged_in_user.id)
    assert str(row.typing_in_conversation_id) == conversation_id
    assert row.status == PresenceStatus.ONLINE


async def test_anonymous_requests_are_ignored(
    test_client: AsyncClient,
    presence_throttle: PresenceThrottle,
    db_test_session_manager: async_sessionmaker[AsyncSession],
):
    response = await test_client.get("/health")
    assert response.status_code == 200
    await presence_throttle.flush_all()

    async with db_test_session_manager() as session:
        rows = (await session.scalars(select(Presence))).all()
    assert rows == []


async def test_failed_requests_do_not_count(
    authenticated_client: AsyncClient,
    logged_in_user: User,
    presence_throttle: PresenceThrottle,
    db_test_session_manager: async_sessionmaker[AsyncSession],
):
    # Logging in already went through the middleware; start from a clean slate
    await presence_throttle.flush_all()
    async with db_test_session_manager() as session:
        row = await session.scalar(
            select(Presence).where(Presence.user_id == logged_in_user.id)
        )
        if row is not None:
            await session.delete(row)
            await session.commit()

    response = await authenticated_client.get("/conversations/not-a-uuid/messages")
    assert response.status_code == 422
    await presence_throttle.flush_all()

    assert await _presence_row(db_test_session_manager, logged_in_user.id) is None


async def test_presence_errors_do_not_break_requests(
    authenticated_client: AsyncClient,
):
    with patch.object(
        PresenceMiddleware,
        "_do_presence_update",
        side_effect=RuntimeError("presence store down"),
    ):
        response = await authenticated_client.get("/conversations")

    assert response.status_code == 200


async def test_sweep_marks_lapsed_users_offline(
    db_test_session_manager: async_sessionmaker[AsyncSession],
):
    lapsed = create_test_user()
    fresh = create_test_user()
    now = datetime.now(timezone.utc)
    async with db_test_session_manager() as session:
        await add_users(session, lapsed, fresh)
        session.add_all(
            [
                Presence(
                    user_id=lapsed.id,
                    status=PresenceStatus.ONLINE,
                    last_seen=now - timedelta(minutes=10),
                ),
                Presence(
                    user_id=fresh.id,
                    status=PresenceStatus.ONLINE,
                    last_seen=now,
                ),
            ]
        )
        await session.commit()

    swept = await sweep_stale_presence(db_test_session_manager)

    assert swept == 1
    assert (
        await _presence_row(db_test_session_manager, lapsed.id)
    ).status == PresenceStatus.OFFLINE
    assert (
        await _presence_row(db_test_session_manager, fresh.id)
    ).status == PresenceStatus.ONLINE


async def test_presence_routes_skip_the_heartbeat(
    authenticated_client: AsyncClient,
    logged_in_user: User,
    presence_throttle: PresenceThrottle,
):
    await presence_throttle.flush_all()
    writes_before = presence_throttle.writes(logged_in_user.id)

    response = await authenticated_client.get("/presence")
    assert response.status_code == 200
    await presence_throttle.flush_all()

    assert presence_throttle.writes(logged_in_user.id) == writes_before


async def test_bursts_of_requests_heartbeat_once(
    authenticated_client: AsyncClient,
    logged_in_user: User,
    presence_throttle: PresenceThrottle,
):
    await presence_throttle.flush_all()
    writes_before = presence_throttle.writes(logged_in_user.id)

    for _ in range(3):
        assert (await authenticated_client.get("/conversations")).status_code == 200
    await presence_throttle.flush_all()

    assert presence_throttle.writes(logged_in_user.id) == writes_before + 1
