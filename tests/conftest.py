"""
Pytest configuration for the humidor tests.
"""

import io

import pytest
from PIL import Image

from humidor.db import ensure_schema
from humidor.models import IdentificationRecord, LogEntryDraft
from humidor.services.blob_storage import InMemoryBlobStorage
from humidor.services.image_cache import ImageCache
from humidor.services.local_store import LocalKeyValueStore, PendingSyncQueue
from humidor.services.remote_store import InMemoryRemoteStore
from humidor.services.vision import VisionResult


def pytest_configure(config):
    """Configure pytest-asyncio mode."""
    config.addinivalue_line(
        "markers", "asyncio: mark test as an asyncio test"
    )

    # Mark the service as ready for tests (bypasses warmup middleware)
    # This is needed because TestClient doesn't trigger lifespan events
    from main import set_ready
    set_ready(True)


@pytest.fixture
def db_path(tmp_path):
    """Create a fresh local DB with schema applied."""
    path = str(tmp_path / "humidor.db")
    ensure_schema(path)
    return path


@pytest.fixture
def kv_store(db_path):
    store = LocalKeyValueStore(db_path)
    yield store
    store.close()


@pytest.fixture
def queue(kv_store):
    return PendingSyncQueue(kv_store)


@pytest.fixture
def remote():
    return InMemoryRemoteStore()


@pytest.fixture
def blobs():
    return InMemoryBlobStorage()


@pytest.fixture
def image_cache(tmp_path):
    return ImageCache(cache_dir=str(tmp_path / "images"))


@pytest.fixture
def jpeg_bytes():
    """A tiny real JPEG."""
    buf = io.BytesIO()
    Image.new("RGB", (16, 8), (200, 160, 40)).save(buf, format="JPEG")
    return buf.getvalue()


@pytest.fixture
def image_path(tmp_path, jpeg_bytes):
    path = tmp_path / "band.jpg"
    path.write_bytes(jpeg_bytes)
    return str(path)


@pytest.fixture
def vision_result():
    return VisionResult(probable_name="", band_description="Cohiba Robusto label, yellow/black")


@pytest.fixture
def make_draft(image_path):
    """Factory for log entry drafts owned by user u1."""
    def _make(**overrides) -> LogEntryDraft:
        fields = {
            "user_id": "u1",
            "full_name": "Cohiba Robusto",
            "notes": "Creamy, cedar finish",
            "overall_rating": 4,
            "image_local_path": image_path,
            "identification": IdentificationRecord(
                full_name="Cohiba Robusto",
                description="A rich Cuban robusto.",
                origin_country="Cuba",
                strength="Medium",
                brand="Cohiba",
                line="Robusto",
            ),
        }
        fields.update(overrides)
        return LogEntryDraft(**fields)
    return _make
