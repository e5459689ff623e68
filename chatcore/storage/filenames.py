import re
import uuid
from datetime import datetime, timezone

from chatcore.schemas.message import MessageKind

_BRACKETS = re.compile(r"[(){}]")
_WHITESPACE = re.compile(r"\s+")
_UNSAFE = re.compile(r"[^A-Za-z0-9._-]")
_REPEATED_UNDERSCORE = re.compile(r"_{2,}")


def sanitize_filename(filename: str) -> str:
    """
    Reduces a user-supplied filename to characters every storage backend
    accepts in a key.

    >>> sanitize_filename("My (Report) {final}.pdf")
    'My_Report_final.pdf'
    """
    name = _BRACKETS.sub("", filename)
    name = _WHITESPACE.sub("_", name)
    name = _UNSAFE.sub("_", name)
    name = _REPEATED_UNDERSCORE.sub("_", name)
    name = name.strip("_")
    return name or "file"


def build_storage_key(
    sender_id: uuid.UUID,
    conversation_id: uuid.UUID,
    filename: str,
    now: datetime | None = None,
) -> str:
    """Namespaces an attachment by sender, conversation and upload time (ms)."""
    now = now or datetime.now(timezone.utc)
    millis = int(now.timestamp() * 1000)
    return f"{sender_id}/{conversation_id}/{millis}-{sanitize_filename(filename)}"


def classify_attachment(content_type: str | None) -> MessageKind:
    if content_type and content_type.lower().startswith("image/"):
        return MessageKind.IMAGE
    return MessageKind.FILE
