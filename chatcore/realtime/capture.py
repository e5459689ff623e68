import logging
from typing import Any

from sqlalchemy import event, inspect
from sqlalchemy.orm import Session

from .feed import ChangeEvent, ChangeFeed, ChangeType

logger = logging.getLogger(__name__)

CAPTURED_TABLES = frozenset(
    {"conversations", "conversation_participants", "messages", "presence"}
)

_PENDING_KEY = "chatcore_pending_changes"


def _row_values(obj) -> dict[str, Any]:
    state = inspect(obj)
    return {attr.key: state.dict.get(attr.key) for attr in state.mapper.column_attrs}


def _table_of(obj) -> str | None:
    table = getattr(obj, "__table__", None)
    return table.name if table is not None else None


class ChangeCapture:
    """
    Records inserts, updates and deletes of the chat tables as sessions
    flush, and hands them to a ChangeFeed once the transaction commits.
    Rolled back work is never published.
    """

    def __init__(self, feed: ChangeFeed):
        self.feed = feed
        self.installed = False
        # Each capture keeps its own pending list in session.info
        self.pending_key = f"{_PENDING_KEY}:{id(self)}"

    def install(self) -> "ChangeCapture":
        if not self.installed:
            event.listen(Session, "after_flush", self._after_flush)
            event.listen(Session, "after_commit", self._after_commit)
            event.listen(Session, "after_rollback", self._after_rollback)
            self.installed = True
        return self

    def remove(self) -> None:
        if self.installed:
            event.remove(Session, "after_flush", self._after_flush)
            event.remove(Session, "after_commit", self._after_commit)
            event.remove(Session, "after_rollback", self._after_rollback)
            self.installed = False

    def _after_flush(self, session: Session, flush_context) -> None:
        pending = session.info.setdefault(self.pending_key, [])
        batches = (
            (ChangeType.INSERT, session.new),
            (ChangeType.UPDATE, [o for o in session.dirty if session.is_modified(o)]),
            (ChangeType.DELETE, session.deleted),
        )
        for change_type, objects in batches:
            for obj in objects:
                table = _table_of(obj)
                if table in CAPTURED_TABLES:
                    pending.append(ChangeEvent(table, change_type, _row_values(obj)))

    def _after_commit(self, session: Session) -> None:
        pending = session.info.pop(self.pending_key, [])
        for change in pending:
            self.feed.publish(change)
        if pending:
            logger.debug(f"Published {len(pending)} committed changes")

    def _after_rollback(self, session: Session) -> None:
        discarded = session.info.pop(self.pending_key, [])
        if discarded:
            logger.debug(f"Discarded {len(discarded)} rolled back changes")


_captures: dict[int, ChangeCapture] = {}


def install_change_capture(feed: ChangeFeed) -> ChangeCapture:
    """Hooks the feed into every Session; installing twice is a no-op."""
    capture = _captures.get(id(feed))
    if capture is None:
        capture = _captures[id(feed)] = ChangeCapture(feed)
    return capture.install()
