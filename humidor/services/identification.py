"""
Identification orchestrator.

    image → vision extractor → assistant resolver → usable check
          → local catalog rescue (fallbacks only) → remote catalog cross-check

identify() describes the image and resolves it. reidentify() is the
thumbs-down recovery path: it reuses the description of the same image and
re-runs only the resolver with the user's corrected name as a hint.

The remote catalog is authoritative once populated: when it knows the
resolved brand/line its metadata replaces the assistant's guesses. When it
does not, a pending contribution is staged in the background for curation;
that write never blocks or fails identification.
"""

import asyncio
import hashlib
import logging
from collections import OrderedDict
from typing import Optional

from ..feature_flags import FeatureFlags, get_feature_flags
from ..models import IdentificationRecord, PendingContribution
from .assistant import AssistantResolverProtocol
from .cancellation import CancellationToken
from .catalog_matcher import CigarCatalogMatcher
from .errors import RemoteStoreError
from .records import PARTIAL_MESSAGE, UNKNOWN_CIGAR, build_fallback_record, merge_identification
from .remote_store import RemoteStoreProtocol
from .vision import VisionExtractorProtocol, VisionResult

logger = logging.getLogger(__name__)


class IdentificationOrchestrator:
    """Coordinates extractor, resolver and catalogs for one identification."""

    def __init__(
        self,
        extractor: VisionExtractorProtocol,
        resolver: AssistantResolverProtocol,
        catalog: Optional[CigarCatalogMatcher] = None,
        remote: Optional[RemoteStoreProtocol] = None,
        flags: Optional[FeatureFlags] = None,
        vision_cache_size: int = 32,
    ):
        """
        Initialize orchestrator.

        Args:
            extractor: Vision description extractor.
            resolver: Assistant resolver.
            catalog: Local fuzzy matcher used to rescue fallback records.
            remote: Remote store holding the authoritative catalog.
            flags: Feature flags (catalog cross-check, pending contributions).
            vision_cache_size: Descriptions kept for reidentify(), keyed by image hash.
        """
        self.extractor = extractor
        self.resolver = resolver
        self.catalog = catalog
        self.remote = remote
        self.flags = flags or get_feature_flags()
        self._vision_cache: OrderedDict[str, VisionResult] = OrderedDict()
        self._vision_cache_size = vision_cache_size
        self._background: set[asyncio.Task] = set()

    @staticmethod
    def _hash_image(image_bytes: bytes) -> str:
        """Compute SHA256 hash of image bytes."""
        return hashlib.sha256(image_bytes).hexdigest()

    async def _describe(self, image: bytes, reuse: bool) -> VisionResult:
        key = self._hash_image(image)
        if reuse and key in self._vision_cache:
            self._vision_cache.move_to_end(key)
            logger.debug(f"Reusing band description for image {key[:12]}")
            return self._vision_cache[key]

        vision = await self.extractor.extract(image)
        self._vision_cache[key] = vision
        self._vision_cache.move_to_end(key)
        while len(self._vision_cache) > self._vision_cache_size:
            self._vision_cache.popitem(last=False)
        return vision

    async def identify(
        self,
        image: bytes,
        user_id: Optional[str] = None,
        interests: Optional[list[str]] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> IdentificationRecord:
        """
        Identify the cigar in a captured image.

        Raises:
            ExtractionError: The vision step failed; nothing to resolve.
            IdentificationCancelled: The owning session was cancelled.
        """
        vision = await self._describe(image, reuse=False)
        return await self._resolve(vision, user_id, interests, None, cancel_token)

    async def reidentify(
        self,
        image: bytes,
        user_id: Optional[str] = None,
        interests: Optional[list[str]] = None,
        corrected_name: Optional[str] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> IdentificationRecord:
        """
        Re-run resolution steered by the user's corrected name.

        The band description is reused when this image was described
        before; otherwise it is extracted again.
        """
        vision = await self._describe(image, reuse=True)
        return await self._resolve(vision, user_id, interests, corrected_name, cancel_token)

    async def _resolve(
        self,
        vision: VisionResult,
        user_id: Optional[str],
        interests: Optional[list[str]],
        name_hint: Optional[str],
        cancel_token: Optional[CancellationToken],
    ) -> IdentificationRecord:
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        record = await self.resolver.resolve(
            vision, interests=interests, name_hint=name_hint, user_id=user_id, cancel_token=cancel_token
        )

        if not record.is_usable:
            logger.info(f"Assistant record unusable (name='{record.full_name}'), using partial fallback")
            record = build_fallback_record(name_hint or vision.probable_name, PARTIAL_MESSAGE).model_copy(
                update={"is_user_corrected": bool(name_hint)}
            )

        if record.is_fallback:
            record = self._rescue_from_local_catalog(record, vision, name_hint)

        record = await self._cross_check(record, user_id)

        # Suppress late results for a session that went away mid-flight
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        logger.info(
            f"Identified '{record.full_name}' (fallback={record.is_fallback}, "
            f"catalog={record.from_catalog}, corrected={record.is_user_corrected})"
        )
        return record

    def _rescue_from_local_catalog(
        self,
        record: IdentificationRecord,
        vision: VisionResult,
        name_hint: Optional[str],
    ) -> IdentificationRecord:
        """Give a fallback record a brand/line from the bundled catalog when possible."""
        if self.catalog is None or record.brand:
            return record

        for query in (name_hint, vision.probable_name, vision.band_description):
            if not query:
                continue
            entry = self.catalog.match(query)
            if entry is None:
                continue
            logger.info(f"Local catalog matched '{query[:40]}' -> {entry.full_name}")
            update = {"brand": entry.brand, "line": entry.line}
            if record.full_name == UNKNOWN_CIGAR:
                update["full_name"] = entry.full_name
            return record.model_copy(update=update)
        return record

    async def _cross_check(self, record: IdentificationRecord, user_id: Optional[str]) -> IdentificationRecord:
        """Prefer authoritative remote catalog metadata; stage unknown brands."""
        if self.remote is None or not self.flags.feature_catalog_crosscheck or not record.brand:
            return record

        try:
            entry = await self.remote.find_catalog_entry(record.brand, record.line or "")
        except RemoteStoreError as e:
            logger.warning(f"Catalog cross-check skipped for {record.brand}/{record.line}: {e}")
            return record

        if entry is not None:
            merged = merge_identification(record, catalog=entry)
            return merged.model_copy(update={"is_fallback": False})

        if self.flags.feature_pending_contributions and user_id:
            self._stage_contribution(record, user_id)
        return record

    def _stage_contribution(self, record: IdentificationRecord, user_id: str) -> None:
        """Fire-and-forget write of an uncatalogued brand/line."""
        contribution = PendingContribution(
            user_id=user_id,
            full_name=record.full_name,
            brand=record.brand or "",
            line=record.line or "",
            identification=record,
        )
        task = asyncio.create_task(self._write_contribution(contribution))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _write_contribution(self, contribution: PendingContribution) -> None:
        try:
            await self.remote.add_pending_contribution(contribution)
            logger.info(f"Staged pending contribution: {contribution.brand} {contribution.line}".rstrip())
        except RemoteStoreError as e:
            logger.warning(f"Pending contribution for {contribution.brand} not staged: {e}")

    async def drain(self) -> None:
        """Wait for staged contribution writes (tests, shutdown)."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
