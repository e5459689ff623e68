from .capture import ChangeCapture, install_change_capture
from .connection import ChatConnection
from .feed import ALL_EVENTS, ChangeEvent, ChangeFeed, ChangeType, Subscription, change_feed
from .presence_debouncer import (
    PresenceDebouncer,
    PresenceThrottle,
    get_presence_throttle,
    presence_throttle,
)
from .read_models import (
    ConversationListReadModel,
    MessageThreadReadModel,
    PresenceReadModel,
    ReadModel,
    ReadModelState,
)

__all__ = [
    "ALL_EVENTS",
    "ChangeCapture",
    "ChangeEvent",
    "ChangeFeed",
    "ChangeType",
    "ChatConnection",
    "ConversationListReadModel",
    "MessageThreadReadModel",
    "PresenceDebouncer",
    "PresenceReadModel",
    "PresenceThrottle",
    "ReadModel",
    "ReadModelState",
    "Subscription",
    "change_feed",
    "get_presence_throttle",
    "install_change_capture",
    "presence_throttle",
]
