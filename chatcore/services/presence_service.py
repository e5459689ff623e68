import logging
from datetime import datetime, timedelta, timezone
from uuid import UUID

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from chatcore.models import Presence
from chatcore.repositories.presence_repository import PresenceRepository
from chatcore.schemas.presence import PresenceStatus

from .exceptions import DatabaseError

logger = logging.getLogger(__name__)


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; all stored times are UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_presence_stale(
    presence: Presence, now: datetime, stale_after: timedelta
) -> bool:
    """An online row without a recent heartbeat is only a hint."""
    if presence.status != PresenceStatus.ONLINE:
        return False
    return as_utc(now) - as_utc(presence.last_seen) > stale_after


def effective_status(
    presence: Presence, now: datetime, stale_after: timedelta
) -> PresenceStatus:
    if is_presence_stale(presence, now, stale_after):
        return PresenceStatus.OFFLINE
    return presence.status


class PresenceService:
    def __init__(self, presence_repository: PresenceRepository):
        self.presence_repo = presence_repository
        self.session = presence_repository.session

    async def set_presence(
        self,
        user_id: UUID,
        status: PresenceStatus,
        typing_in_conversation_id: UUID | None = None,
    ) -> Presence:
        """Upserts the user's presence row with last_seen set to now."""
        return await self._write(
            user_id,
            status=status,
            typing_in_conversation_id=typing_in_conversation_id,
        )

    async def touch(self, user_id: UUID) -> Presence:
        """Heartbeat: marks the user online without touching the typing pointer."""
        return await self._write(
            user_id, status=PresenceStatus.ONLINE, keep_typing=True
        )

    async def _write(self, user_id: UUID, **fields) -> Presence:
        now = datetime.now(timezone.utc)
        for attempt in range(2):
            try:
                presence = await self.presence_repo.upsert(
                    user_id, last_seen=now, **fields
                )
                await self.session.commit()
                return presence
            except IntegrityError as e:
                # The first write for this user raced another one
                await self.session.rollback()
                if attempt:
                    logger.error(f"Presence upsert conflict for {user_id}: {e}", exc_info=True)
                    raise DatabaseError("Failed to update presence.")
            except SQLAlchemyError as e:
                await self.session.rollback()
                logger.error(f"Database error updating presence: {e}", exc_info=True)
                raise DatabaseError("Failed to update presence.")

    async def snapshot(self) -> dict[UUID, Presence]:
        """Current presence of every user that has ever been seen."""
        try:
            rows = await self.presence_repo.list_all()
        except SQLAlchemyError as e:
            logger.error(f"Database error reading presence: {e}", exc_info=True)
            raise DatabaseError("Failed to read presence.")
        return {row.user_id: row for row in rows}

    async def mark_stale_offline(self, stale_after: timedelta) -> int:
        """Flips online rows without a recent heartbeat to offline."""
        cutoff = datetime.now(timezone.utc) - stale_after
        try:
            stale = await self.presence_repo.list_stale_online(cutoff)
            for row in stale:
                row.status = PresenceStatus.OFFLINE
                row.typing_in_conversation_id = None
            if stale:
                await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error(f"Database error sweeping presence: {e}", exc_info=True)
            raise DatabaseError("Failed to sweep stale presence.")
        if stale:
            logger.info(f"Marked {len(stale)} stale presence rows offline")
        return len(stale)
