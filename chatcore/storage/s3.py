"""
S3 backend for chat attachments.

Note: boto3 is imported lazily so the module loads when only the local
backend is installed.
"""

import asyncio
import logging
from urllib.parse import quote

from .base import AttachmentStorage, StorageError

logger = logging.getLogger(__name__)


class S3AttachmentStorage(AttachmentStorage):
    def __init__(self, bucket_name: str, region: str | None = None):
        self.bucket_name = bucket_name
        self.region = region
        self._s3_client = None

    @property
    def s3_client(self):
        """Get or create S3 client."""
        if self._s3_client is None:
            import boto3

            self._s3_client = boto3.client("s3", region_name=self.region)
        return self._s3_client

    async def upload(self, key: str, data: bytes, content_type: str) -> None:
        try:
            await asyncio.to_thread(
                self.s3_client.put_object,
                Bucket=self.bucket_name,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        except Exception as e:
            raise StorageError(f"Failed to upload {key} to S3: {e}") from e

    async def public_url(self, key: str) -> str:
        if self.region:
            host = f"{self.bucket_name}.s3.{self.region}.amazonaws.com"
        else:
            host = f"{self.bucket_name}.s3.amazonaws.com"
        return f"https://{host}/{quote(key)}"

    async def delete(self, key: str) -> None:
        try:
            await asyncio.to_thread(
                self.s3_client.delete_object, Bucket=self.bucket_name, Key=key
            )
        except Exception as e:
            raise StorageError(f"Failed to delete {key} from S3: {e}") from e
