"""
Vision description extraction for cigar band photos.

The vision model is asked for a literal description of everything visible on
the band (words, symbols, colors, layout) and explicitly not for a brand
verdict; resolving the identity is left to the assistant, which sees the
description alongside the catalog. A regex heuristic then pulls an
opportunistic "probable name" out of phrases such as `the band reads "..."`.

Two providers share VisionExtractorProtocol:
1. OpenAI chat completions over httpx (default)
2. Anthropic Claude messages API via the anthropic SDK

Every failure surfaces as ExtractionError; there is no internal fallback.
"""

import asyncio
import base64
import io
import logging
import re
from dataclasses import dataclass
from typing import Optional, Protocol

import httpx
from PIL import Image, UnidentifiedImageError

from ..config import Config
from .errors import ExtractionError

logger = logging.getLogger(__name__)

# Try to import anthropic for the Claude provider
try:
    import anthropic
    ANTHROPIC_AVAILABLE = True
except ModuleNotFoundError:
    anthropic = None  # type: ignore
    ANTHROPIC_AVAILABLE = False


VISION_PROMPT = (
    "Describe the cigar band shown in the image, including all visible words, "
    "symbols, colors, and layout. Focus on descriptive detail, not just the brand name. "
    "Quote any printed text exactly as it appears."
)

# `reads "Cohiba"`, `the label says 'Padron 1964'`
_QUOTED_NAME = re.compile(
    r"\b(?:label says|says|reads)\s*:?\s*[‘'\"“]([^’'\"”\n]{2,60})[’'\"”]",
    re.IGNORECASE,
)
# `reads Cohiba Robusto, with ...`
_UNQUOTED_NAME = re.compile(
    r"\b(?:label says|says|reads)\s+([A-Za-z0-9][A-Za-z0-9 \-]*)",
    re.IGNORECASE,
)
_MAX_UNQUOTED_WORDS = 5


@dataclass(frozen=True)
class VisionResult:
    """Literal band description plus the heuristically extracted name."""
    probable_name: str
    band_description: str


def extract_probable_name(description: str) -> str:
    """
    Pull a probable cigar name out of a band description.

    Quoted fragments after "reads"/"says"/"label says" win; otherwise the
    first few words after those verbs are used.

    Returns:
        The fragment, or "" when nothing follows those verbs.
    """
    if not description:
        return ""

    quoted = _QUOTED_NAME.search(description)
    if quoted:
        return " ".join(quoted.group(1).split())

    unquoted = _UNQUOTED_NAME.search(description)
    if unquoted:
        words = unquoted.group(1).split()[:_MAX_UNQUOTED_WORDS]
        return " ".join(words).strip(" -")

    return ""


def _compress_image_for_vision(image_bytes: bytes, max_size: int = Config.VISION_MAX_IMAGE_BYTES) -> bytes:
    """
    Normalize image to JPEG and compress to fit within the vision size limit.

    Strategy:
    1. If already JPEG and under limit, return as-is (fast path)
    2. If non-JPEG (PNG, WebP, etc.), convert to JPEG
    3. If oversized, reduce JPEG quality (85 → 25)
    4. If still too large, resize progressively (80% → 30%)

    Raises:
        ExtractionError: If the bytes are not a decodable image
    """
    is_jpeg = image_bytes[:2] == b'\xff\xd8'
    if is_jpeg and len(image_bytes) <= max_size:
        return image_bytes

    try:
        img = Image.open(io.BytesIO(image_bytes))
        img.load()
    except (UnidentifiedImageError, OSError) as e:
        raise ExtractionError(f"Captured image could not be decoded: {e}") from e

    if img.mode not in ("RGB", "L"):
        img = img.convert("RGB")

    if len(image_bytes) <= max_size:
        output = io.BytesIO()
        img.save(output, format="JPEG", quality=95)
        return output.getvalue()

    logger.info(f"Compressing image for vision: {len(image_bytes) / 1024 / 1024:.1f}MB → target {max_size / 1024 / 1024:.1f}MB")

    quality = 85
    while quality >= 25:
        output = io.BytesIO()
        img.save(output, format="JPEG", quality=quality)
        if output.tell() <= max_size:
            return output.getvalue()
        quality -= 15

    scale = 0.8
    while scale >= 0.3:
        new_size = (max(1, int(img.width * scale)), max(1, int(img.height * scale)))
        resized = img.resize(new_size, Image.Resampling.LANCZOS)
        output = io.BytesIO()
        resized.save(output, format="JPEG", quality=70)
        if output.tell() <= max_size:
            logger.info(f"Resized to {new_size[0]}x{new_size[1]} (scale={scale:.1f})")
            return output.getvalue()
        scale -= 0.1

    logger.warning(f"Could not compress image below {max_size / 1024 / 1024:.1f}MB, sending anyway")
    return output.getvalue()


def _to_vision_result(description: Optional[str]) -> VisionResult:
    description = (description or "").strip()
    if not description:
        raise ExtractionError("Vision model returned no description")
    probable = extract_probable_name(description)
    logger.info(f"Vision description: {len(description)} chars, probable name '{probable}'")
    logger.debug(f"Vision raw description: {description[:500]}")
    return VisionResult(probable_name=probable, band_description=description)


class VisionExtractorProtocol(Protocol):
    """Protocol for vision extractors (allows swapping providers and mocking)."""
    async def extract(self, image_bytes: bytes) -> VisionResult: ...


class OpenAIVisionExtractor:
    """Band description via an OpenAI-compatible chat completions endpoint."""

    DEFAULT_MODEL = "gpt-4o"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the extractor.

        Args:
            api_key: OpenAI API key. Falls back to OPENAI_API_KEY env var.
            model: Vision-capable model name.
            base_url: API base URL. Defaults to Config.openai_base_url().
            timeout: Request timeout in seconds.
            transport: Optional httpx transport (tests inject MockTransport).
        """
        self.api_key = api_key or Config.openai_api_key()
        self.model = model or self.DEFAULT_MODEL
        self.base_url = (base_url or Config.openai_base_url()).rstrip("/")
        self.timeout = timeout or Config.http_timeout()
        self._transport = transport

    def _build_payload(self, image_b64: str) -> dict:
        return {
            "model": self.model,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": VISION_PROMPT},
                        {
                            "type": "image_url",
                            "image_url": {"url": f"data:image/jpeg;base64,{image_b64}", "detail": "high"},
                        },
                    ],
                }
            ],
        }

    async def extract(self, image_bytes: bytes) -> VisionResult:
        """
        Describe the cigar band in the image.

        Raises:
            ExtractionError: On missing configuration, network/HTTP failure or
                an empty/unparseable response.
        """
        if not image_bytes:
            raise ExtractionError("No image data")
        if not self.api_key:
            raise ExtractionError("OPENAI_API_KEY not configured")

        image_b64 = base64.standard_b64encode(_compress_image_for_vision(image_bytes)).decode("utf-8")
        headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self.base_url}/chat/completions",
                    json=self._build_payload(image_b64),
                    headers=headers,
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as e:
            logger.error(f"Vision API error: {e}")
            raise ExtractionError(f"Vision request failed: {e}") from e
        except ValueError as e:
            raise ExtractionError(f"Vision response was not JSON: {e}") from e

        try:
            description = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise ExtractionError(f"Unexpected vision response shape: {e}") from e

        return _to_vision_result(description)


class ClaudeVisionExtractor:
    """Band description via the Anthropic messages API."""

    DEFAULT_MODEL = "claude-3-5-sonnet-latest"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        max_tokens: int = 1000,
        timeout: Optional[float] = None,
    ):
        self.api_key = api_key or Config.anthropic_api_key()
        self.model = model or self.DEFAULT_MODEL
        self.max_tokens = max_tokens
        self.timeout = timeout or Config.http_timeout()
        self._client: Optional["anthropic.Anthropic"] = None

    def _get_client(self) -> "anthropic.Anthropic":
        """Get or create Anthropic client."""
        if self._client is None:
            if not ANTHROPIC_AVAILABLE:
                raise ExtractionError("anthropic package not installed")
            if not self.api_key:
                raise ExtractionError("ANTHROPIC_API_KEY not configured")
            self._client = anthropic.Anthropic(api_key=self.api_key, timeout=self.timeout)
        return self._client

    async def extract(self, image_bytes: bytes) -> VisionResult:
        if not image_bytes:
            raise ExtractionError("No image data")

        client = self._get_client()
        image_b64 = base64.standard_b64encode(_compress_image_for_vision(image_bytes)).decode("utf-8")

        try:
            # Sync client wrapped for async compatibility
            response = await asyncio.get_running_loop().run_in_executor(
                None,
                lambda: client.messages.create(
                    model=self.model,
                    max_tokens=self.max_tokens,
                    messages=[
                        {
                            "role": "user",
                            "content": [
                                {
                                    "type": "image",
                                    "source": {
                                        "type": "base64",
                                        "media_type": "image/jpeg",
                                        "data": image_b64,
                                    },
                                },
                                {"type": "text", "text": VISION_PROMPT},
                            ],
                        }
                    ],
                )
            )
        except anthropic.APIError as e:
            logger.error(f"Claude vision API error: {e}")
            raise ExtractionError(f"Vision request failed: {e}") from e

        description = response.content[0].text if response.content else ""
        return _to_vision_result(description)


class MockVisionExtractor:
    """Returns a canned description (USE_MOCKS / tests)."""

    def __init__(self, description: Optional[str] = None, error: Optional[Exception] = None):
        from ..mocks.fixtures import MOCK_BAND_DESCRIPTION
        self.description = description if description is not None else MOCK_BAND_DESCRIPTION
        self.error = error
        self.calls = 0

    async def extract(self, image_bytes: bytes) -> VisionResult:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return _to_vision_result(self.description)


def get_vision_extractor(use_mock: Optional[bool] = None) -> VisionExtractorProtocol:
    """Build the configured vision extractor."""
    if use_mock is None:
        use_mock = Config.use_mocks()
    if use_mock:
        return MockVisionExtractor()

    provider = Config.vision_provider()
    if provider == "claude":
        return ClaudeVisionExtractor(model=Config.vision_model())
    if provider != "openai":
        logger.warning(f"Unknown VISION_PROVIDER '{provider}', using openai")
    return OpenAIVisionExtractor(model=Config.vision_model())
