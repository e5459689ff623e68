# Makes 'models' a package and simplifies imports

from .base import BaseModel, metadata
from .conversation import Conversation
from .message import Message
from .participant import Participant
from .presence import Presence
from .user import User

__all__ = [
    "BaseModel",
    "metadata",
    "User",
    "Conversation",
    "Message",
    "Participant",
    "Presence",
]
