"""
App-private image file cache.

Captured images are copied here as soon as they arrive so they survive a
process restart before any remote upload succeeds. Remote-only images can be
pulled down with cache_remote() to keep them viewable offline.
"""

import hashlib
import logging
import os
import re
import time
import uuid
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

import httpx

from ..config import Config

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def sanitize_filename(filename: Optional[str], default: str = "capture.jpg") -> str:
    """Basename only, unsafe characters collapsed to '_', never empty."""
    name = os.path.basename((filename or "").replace("\\", "/"))
    name = _UNSAFE_CHARS.sub("_", name).strip("._")
    if not name:
        return default
    if "." not in name:
        name = f"{name}.jpg"
    return name[-80:]


class ImageCache:
    """Writes image bytes into Config.image_cache_dir()."""

    def __init__(self, cache_dir: Optional[str] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.cache_dir = Path(cache_dir or Config.image_cache_dir())
        self._transport = transport

    def _write_atomic(self, path: Path, data: bytes) -> None:
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(f".{path.name}.tmp")
        with open(tmp, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)

    def persist(self, data: bytes, filename: Optional[str] = None) -> str:
        """
        Copy captured bytes into the cache under a unique sanitized name.

        Returns:
            Absolute path of the cached file.
        """
        if not data:
            raise ValueError("Cannot cache an empty image")
        unique = f"{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}_{sanitize_filename(filename)}"
        path = self.cache_dir / unique
        self._write_atomic(path, data)
        logger.debug(f"Cached captured image at {path} ({len(data) / 1024:.0f}KB)")
        return str(path.resolve())

    def read(self, path: str) -> bytes:
        with open(path, "rb") as f:
            return f.read()

    async def cache_remote(self, url: str) -> str:
        """
        Download a remote image into the cache.

        Returns:
            The local path, or ``url`` unchanged when the download fails.
        """
        if not url:
            return url
        suffix = Path(urlparse(url).path).suffix or ".jpg"
        path = self.cache_dir / f"remote_{hashlib.sha256(url.encode()).hexdigest()[:16]}{suffix}"
        if path.exists():
            return str(path.resolve())

        try:
            async with httpx.AsyncClient(timeout=Config.remote_timeout(), transport=self._transport) as client:
                response = await client.get(url, follow_redirects=True)
                response.raise_for_status()
                self._write_atomic(path, response.content)
        except (httpx.HTTPError, OSError) as e:
            logger.warning(f"Could not cache remote image {url}: {e}")
            return url
        return str(path.resolve())


_cache_instance: Optional[ImageCache] = None


def get_image_cache() -> ImageCache:
    """Get the singleton image cache."""
    global _cache_instance
    if _cache_instance is None:
        _cache_instance = ImageCache()
    return _cache_instance
