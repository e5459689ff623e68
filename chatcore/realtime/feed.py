import enum
import itertools
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping

logger = logging.getLogger(__name__)


class ChangeType(str, enum.Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


ALL_EVENTS = frozenset(ChangeType)


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    type: ChangeType
    record: Mapping[str, Any]


ChangeCallback = Callable[[ChangeEvent], None]

_subscription_ids = itertools.count(1)


@dataclass(eq=False)
class Subscription:
    table: str
    callback: ChangeCallback
    events: frozenset[ChangeType] = ALL_EVENTS
    filter: Mapping[str, Any] | None = None
    id: int = field(default_factory=lambda: next(_subscription_ids))

    def matches(self, event: ChangeEvent) -> bool:
        if event.table != self.table or event.type not in self.events:
            return False
        if not self.filter:
            return True
        return all(
            str(event.record.get(column)) == str(value)
            for column, value in self.filter.items()
        )


class ChangeFeed:
    """
    In-process publish/subscribe hub for row changes.

    Callbacks run synchronously inside publish(); they should only schedule
    work (set an event, put on a queue) and return.
    """

    def __init__(self):
        self._subscriptions: dict[str, list[Subscription]] = defaultdict(list)

    def subscribe(
        self,
        table: str,
        callback: ChangeCallback,
        events: Iterable[ChangeType] | None = None,
        filter: Mapping[str, Any] | None = None,
    ) -> Subscription:
        subscription = Subscription(
            table=table,
            callback=callback,
            events=frozenset(events) if events else ALL_EVENTS,
            filter=dict(filter) if filter else None,
        )
        self._subscriptions[table].append(subscription)
        logger.debug(f"Subscription {subscription.id} added on {table}")
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        """Removes a subscription; unknown subscriptions are ignored."""
        subscribers = self._subscriptions.get(subscription.table, [])
        if subscription in subscribers:
            subscribers.remove(subscription)
            logger.debug(f"Subscription {subscription.id} removed from {subscription.table}")

    def publish(self, event: ChangeEvent) -> int:
        delivered = 0
        for subscription in list(self._subscriptions.get(event.table, [])):
            if not subscription.matches(event):
                continue
            try:
                subscription.callback(event)
                delivered += 1
            except Exception as e:
                logger.error(
                    f"Change callback for subscription {subscription.id} failed: {e}",
                    exc_info=True,
                )
        return delivered

    def subscriber_count(self, table: str | None = None) -> int:
        if table is not None:
            return len(self._subscriptions.get(table, []))
        return sum(len(subs) for subs in self._subscriptions.values())


# Process-wide feed the application and its session hooks share
change_feed = ChangeFeed()
