from functools import lru_cache

from chatcore.core.config import settings

from .base import AttachmentStorage
from .local import LocalAttachmentStorage
from .s3 import S3AttachmentStorage


@lru_cache
def get_attachment_storage() -> AttachmentStorage:
    """Dependency provider for the configured attachment backend."""
    if settings.ATTACHMENT_BACKEND == "s3":
        if not settings.S3_BUCKET:
            raise ValueError("S3_BUCKET must be set when ATTACHMENT_BACKEND=s3")
        return S3AttachmentStorage(settings.S3_BUCKET, region=settings.S3_REGION)
    return LocalAttachmentStorage(
        settings.ATTACHMENT_LOCAL_DIR,
        public_base_url=settings.ATTACHMENT_PUBLIC_BASE_URL,
    )
