from abc import ABC, abstractmethod


class StorageError(Exception):
    """Raised when the storage backend cannot complete an operation."""


class AttachmentStorage(ABC):
    """Object storage for chat attachments, addressed by key."""

    @abstractmethod
    async def upload(self, key: str, data: bytes, content_type: str) -> None:
        """Stores the bytes under key, replacing nothing that already exists."""

    @abstractmethod
    async def public_url(self, key: str) -> str:
        """Returns a URL that resolves to the stored object without credentials."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Removes the object. Deleting a missing key is not an error."""
