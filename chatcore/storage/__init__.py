from .base import AttachmentStorage, StorageError
from .factory import get_attachment_storage
from .filenames import build_storage_key, classify_attachment, sanitize_filename

__all__ = [
    "AttachmentStorage",
    "StorageError",
    "get_attachment_storage",
    "build_storage_key",
    "classify_attachment",
    "sanitize_filename",
]
