"""
Tests for the app-private image cache and blob storage helpers.
"""

import os
from unittest.mock import MagicMock, patch

import httpx
import pytest
from google.api_core.exceptions import Forbidden
from google.auth.exceptions import DefaultCredentialsError

from humidor.services.blob_storage import GCSBlobStorage, InMemoryBlobStorage, get_blob_storage, image_blob_path
from humidor.services.errors import BlobUploadError
from humidor.services.image_cache import ImageCache, sanitize_filename


class TestSanitizeFilename:
    @pytest.mark.parametrize("filename,expected", [
        ("band.jpg", "band.jpg"),
        ("../../etc/passwd", "passwd.jpg"),
        ("C:\\Users\\me\\IMG 001.HEIC", "IMG_001.HEIC"),
        ("", "capture.jpg"),
        (None, "capture.jpg"),
        ("...", "capture.jpg"),
    ])
    def test_sanitize(self, filename, expected):
        assert sanitize_filename(filename) == expected


class TestImageCache:
    def test_persist_writes_unique_files(self, image_cache, jpeg_bytes):
        first = image_cache.persist(jpeg_bytes, "band.jpg")
        second = image_cache.persist(jpeg_bytes, "band.jpg")

        assert first != second
        assert os.path.isabs(first)
        assert first.endswith("_band.jpg")
        assert image_cache.read(first) == jpeg_bytes

    def test_no_temp_files_left(self, image_cache, jpeg_bytes):
        image_cache.persist(jpeg_bytes, "band.jpg")
        leftovers = [p for p in image_cache.cache_dir.iterdir() if p.name.endswith(".tmp")]
        assert leftovers == []

    def test_empty_data_rejected(self, image_cache):
        with pytest.raises(ValueError):
            image_cache.persist(b"", "band.jpg")

    @pytest.mark.asyncio
    async def test_cache_remote_downloads_once(self, tmp_path, jpeg_bytes):
        calls = []

        def handler(request):
            calls.append(str(request.url))
            return httpx.Response(200, content=jpeg_bytes)

        cache = ImageCache(cache_dir=str(tmp_path / "images"), transport=httpx.MockTransport(handler))
        url = "https://cdn.test/cigars/u1/abc_cohiba.jpg"

        path = await cache.cache_remote(url)
        again = await cache.cache_remote(url)

        assert path == again
        assert path.endswith(".jpg")
        assert cache.read(path) == jpeg_bytes
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_cache_remote_failure_returns_url(self, tmp_path):
        cache = ImageCache(
            cache_dir=str(tmp_path / "images"),
            transport=httpx.MockTransport(lambda r: httpx.Response(404)),
        )
        url = "https://cdn.test/missing.jpg"
        assert await cache.cache_remote(url) == url


class TestBlobStorage:
    def test_blob_path_slug(self):
        assert image_blob_path("u1", "e1", "Padrón 1964 Anniversary!") == "cigars/u1/e1_padr-n-1964-anniversary.jpg"

    def test_blob_path_empty_name(self):
        assert image_blob_path("u1", "e1", "") == "cigars/u1/e1_cigar.jpg"

    @pytest.mark.asyncio
    async def test_in_memory_upload(self, blobs):
        url = await blobs.upload("cigars/u1/e1_x.jpg", b"data")
        assert url == "memory://images/cigars/u1/e1_x.jpg"
        assert blobs.blobs["cigars/u1/e1_x.jpg"] == b"data"

    @pytest.mark.asyncio
    async def test_in_memory_failure(self):
        with pytest.raises(BlobUploadError):
            await InMemoryBlobStorage(fail=True).upload("p", b"data")


class TestGCSBlobStorage:
    """Tests for GCS uploads with the storage client mocked out."""

    @pytest.mark.asyncio
    async def test_upload_returns_public_url(self):
        client = MagicMock()
        blob = client.bucket.return_value.blob.return_value
        blob.public_url = "https://storage.googleapis.com/humidor/cigars/u1/e1_x.jpg"

        with patch("google.cloud.storage.Client", return_value=client):
            url = await GCSBlobStorage(bucket_name="humidor").upload("cigars/u1/e1_x.jpg", b"data")

        assert url == blob.public_url
        client.bucket.assert_called_once_with("humidor")
        client.bucket.return_value.blob.assert_called_once_with("cigars/u1/e1_x.jpg")
        assert blob.upload_from_string.call_args.kwargs["content_type"] == "image/jpeg"

    @pytest.mark.asyncio
    async def test_missing_credentials_raise_upload_error(self):
        with patch("google.cloud.storage.Client", side_effect=DefaultCredentialsError("no creds")):
            with pytest.raises(BlobUploadError):
                await GCSBlobStorage(bucket_name="humidor").upload("cigars/u1/e1_x.jpg", b"data")

    @pytest.mark.asyncio
    async def test_api_error_raises_upload_error(self):
        client = MagicMock()
        client.bucket.return_value.blob.return_value.upload_from_string.side_effect = Forbidden("denied")

        with patch("google.cloud.storage.Client", return_value=client):
            with pytest.raises(BlobUploadError):
                await GCSBlobStorage(bucket_name="humidor").upload("cigars/u1/e1_x.jpg", b"data")

    @pytest.mark.asyncio
    async def test_missing_bucket_raises_upload_error(self, monkeypatch):
        monkeypatch.delenv("GCS_IMAGE_BUCKET", raising=False)
        with pytest.raises(BlobUploadError):
            await GCSBlobStorage().upload("cigars/u1/e1_x.jpg", b"data")

    def test_factory_never_falls_back_to_memory(self, monkeypatch):
        monkeypatch.delenv("GCS_IMAGE_BUCKET", raising=False)
        assert isinstance(get_blob_storage(use_mock=False), GCSBlobStorage)
        assert isinstance(get_blob_storage(use_mock=True), InMemoryBlobStorage)
