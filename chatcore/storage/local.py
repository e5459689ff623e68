import asyncio
import logging
from pathlib import Path
from urllib.parse import quote

from .base import AttachmentStorage, StorageError

logger = logging.getLogger(__name__)


class LocalAttachmentStorage(AttachmentStorage):
    """
    Keeps attachments on the local filesystem. The application mounts the
    root directory as static files under public_base_url.
    """

    def __init__(self, root: str | Path, public_base_url: str = "/attachments"):
        self.root = Path(root)
        self.public_base_url = public_base_url.rstrip("/")

    def _path_for(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root.resolve() not in path.parents:
            raise StorageError(f"Key escapes the storage root: {key}")
        return path

    def _write(self, path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)

    async def upload(self, key: str, data: bytes, content_type: str) -> None:
        path = self._path_for(key)
        try:
            await asyncio.to_thread(self._write, path, data)
        except OSError as e:
            raise StorageError(f"Could not write {key}: {e}") from e
        logger.debug(f"Stored attachment {key} ({len(data)} bytes, {content_type})")

    async def public_url(self, key: str) -> str:
        return f"{self.public_base_url}/{quote(key)}"

    async def delete(self, key: str) -> None:
        path = self._path_for(key)
        try:
            await asyncio.to_thread(path.unlink, True)
        except OSError as e:
            raise StorageError(f"Could not delete {key}: {e}") from e
