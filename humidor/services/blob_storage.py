"""
Remote blob storage for captured cigar images.

Uploads are best-effort from the caller's point of view: every failure is
raised as BlobUploadError and the save flow decides to swallow it.
"""

import asyncio
import logging
import re
from typing import Optional, Protocol

from ..config import Config
from .errors import BlobUploadError

logger = logging.getLogger(__name__)


def image_blob_path(user_id: str, entry_id: str, full_name: str) -> str:
    """``cigars/{uid}/{entry_id}_{slug}.jpg``"""
    slug = re.sub(r"[^a-z0-9]+", "-", (full_name or "").lower()).strip("-") or "cigar"
    return f"cigars/{user_id}/{entry_id}_{slug[:60]}.jpg"


class BlobStorageProtocol(Protocol):
    """Protocol for image upload backends."""
    async def upload(self, path: str, data: bytes, content_type: str = "image/jpeg") -> str: ...


class GCSBlobStorage:
    """Google Cloud Storage uploads (sync client run in a thread executor)."""

    def __init__(self, bucket_name: Optional[str] = None):
        self.bucket_name = bucket_name or Config.gcs_image_bucket()
        self._client = None

    def _get_bucket(self):
        if not self.bucket_name:
            raise BlobUploadError("GCS_IMAGE_BUCKET not configured")
        if self._client is None:
            from google.cloud import storage
            self._client = storage.Client()
        return self._client.bucket(self.bucket_name)

    def _upload_sync(self, path: str, data: bytes, content_type: str) -> str:
        from google.api_core import exceptions as gcs_exceptions
        from google.auth import exceptions as auth_exceptions

        try:
            blob = self._get_bucket().blob(path)
            blob.upload_from_string(data, content_type=content_type, timeout=Config.remote_timeout() * 3)
        except (gcs_exceptions.GoogleAPIError, auth_exceptions.GoogleAuthError) as e:
            raise BlobUploadError(f"Upload to gs://{self.bucket_name}/{path} failed: {e}") from e
        return blob.public_url

    async def upload(self, path: str, data: bytes, content_type: str = "image/jpeg") -> str:
        """
        Upload image bytes and return their public URL.

        Raises:
            BlobUploadError: Missing bucket configuration or upload failure.
        """
        url = await asyncio.get_running_loop().run_in_executor(
            None, lambda: self._upload_sync(path, data, content_type)
        )
        logger.info(f"Uploaded image to {url} ({len(data) / 1024:.0f}KB)")
        return url


class InMemoryBlobStorage:
    """Keeps uploads in a dict (USE_MOCKS / tests)."""

    def __init__(self, base_url: str = "memory://images", fail: bool = False):
        self.base_url = base_url.rstrip("/")
        self.fail = fail
        self.blobs: dict[str, bytes] = {}

    async def upload(self, path: str, data: bytes, content_type: str = "image/jpeg") -> str:
        if self.fail:
            raise BlobUploadError(f"Simulated upload failure for {path}")
        self.blobs[path] = data
        return f"{self.base_url}/{path}"


def get_blob_storage(use_mock: Optional[bool] = None) -> BlobStorageProtocol:
    """Build the configured blob storage."""
    if use_mock is None:
        use_mock = Config.use_mocks()
    if use_mock:
        return InMemoryBlobStorage()
    if not Config.gcs_image_bucket():
        logger.warning("GCS_IMAGE_BUCKET not set; entries will be saved without a remote image")
    return GCSBlobStorage()
