"""
Persistence & sync manager for humidor log entries.

save() always ends in exactly one of two places: the remote document store,
or the local pending-sync queue (pendingSync=true). The image upload before
it is best-effort and only affects imageRemoteUrl. Stats are updated in the
background after a remote write and never block or fail the save.

load() merges remote entries with queued ones, de-duplicated by id (the
remote copy wins, and a queued copy that already made it remotely is removed
from the queue). Entries whose image only exists remotely are pulled
into the local image cache so the history stays viewable offline.

sync_pending() retries every queued entry for a user on each call; entries
that still fail stay queued with no retry ceiling.

All queue mutations and remote writes for one user run under a per-user
asyncio.Lock, so concurrent save/sync calls cannot lose or double-write an
entry.
"""

import asyncio
import logging
import os
import sqlite3
from dataclasses import dataclass, field
from typing import Optional

from ..config import Config
from ..models import LogEntry, LogEntryDraft, truncate_notes
from ..models.enums import SaveStatus
from .blob_storage import BlobStorageProtocol, image_blob_path
from .errors import (
    BlobUploadError,
    PersistenceError,
    QueueCorruptedError,
    RemoteReadError,
    RemoteStoreError,
    SyncRetryableError,
)
from .image_cache import ImageCache
from .local_store import PendingSyncQueue
from .remote_store import RemoteStoreProtocol
from .stats import StatsNotifier

logger = logging.getLogger(__name__)


SAVED_MESSAGE = "Cigar saved to your humidor."
QUEUED_MESSAGE = (
    "We couldn't reach the server, so this cigar was saved locally for now. "
    "It will sync automatically next time you open your humidor."
)


@dataclass
class SaveOutcome:
    """Where a save ended up, plus the message shown to the user."""
    status: SaveStatus
    entry: LogEntry
    message: str


@dataclass
class SyncReport:
    """Entry ids written remotely vs. still queued after one sync pass."""
    synced: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


class PersistenceManager:
    """Saves, loads, edits and syncs a user's log entries."""

    def __init__(
        self,
        remote: RemoteStoreProtocol,
        queue: PendingSyncQueue,
        blobs: BlobStorageProtocol,
        stats: Optional[StatsNotifier] = None,
        image_cache: Optional[ImageCache] = None,
    ):
        self.remote = remote
        self.queue = queue
        self.blobs = blobs
        self.stats = stats
        self.image_cache = image_cache
        self._locks: dict[str, asyncio.Lock] = {}
        self._background: set[asyncio.Task] = set()

    def _lock(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = self._locks[user_id] = asyncio.Lock()
        return lock

    # === Background work ===

    def _spawn(self, coro, label: str) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)

        def _done(t: asyncio.Task) -> None:
            self._background.discard(t)
            if not t.cancelled() and t.exception() is not None:
                logger.warning(f"Background {label} failed: {t.exception()}")

        task.add_done_callback(_done)

    def _notify_stats(self, entry: LogEntry) -> None:
        if self.stats is not None:
            self._spawn(self.stats.notify(entry.user_id, entry), f"stats update for {entry.id}")

    async def drain(self) -> None:
        """Wait for background stats updates (tests, shutdown)."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # === Save ===

    async def _upload_image(self, user_id: str, entry_id: str, full_name: str, local_path: str) -> str:
        """Best-effort upload; returns "" on any failure."""
        if not local_path:
            return ""
        try:
            with open(local_path, "rb") as f:
                data = f.read()
            return await self.blobs.upload(image_blob_path(user_id, entry_id, full_name), data)
        except (BlobUploadError, OSError) as e:
            logger.warning(f"Image upload skipped for {entry_id}: {e}")
            return ""

    async def save(self, draft: LogEntryDraft) -> SaveOutcome:
        """
        Persist a confirmed draft.

        Returns:
            SaveOutcome with SAVED_REMOTE, or QUEUED_LOCAL when the remote
            write failed and the entry went to the local queue.

        Raises:
            PersistenceError: Neither the remote store nor the local queue
                accepted the entry, or the draft has no image at all.
        """
        remote_url = await self._upload_image(draft.user_id, draft.id, draft.full_name, draft.image_local_path)
        if not draft.image_local_path and not remote_url:
            raise PersistenceError(f"Log {draft.id} has no local image and the upload failed")

        entry = LogEntry.from_draft(draft, image_remote_url=remote_url)

        async with self._lock(draft.user_id):
            try:
                await self.remote.create_log(entry)
            except RemoteStoreError as e:
                logger.warning(f"Remote write failed for log {entry.id}, queueing locally: {e}")
                try:
                    queued = self.queue.append(entry)
                except (QueueCorruptedError, sqlite3.Error, OSError) as qe:
                    logger.error(f"Local queue write failed for log {entry.id}: {qe}")
                    raise PersistenceError(f"Log {entry.id} could not be saved remotely or locally: {qe}") from qe
                return SaveOutcome(status=SaveStatus.QUEUED_LOCAL, entry=queued, message=QUEUED_MESSAGE)

        logger.info(f"Saved log {entry.id} for {entry.user_id}: '{entry.full_name}'")
        self._notify_stats(entry)
        return SaveOutcome(status=SaveStatus.SAVED_REMOTE, entry=entry, message=SAVED_MESSAGE)

    # === Load ===

    async def load(self, user_id: str) -> list[LogEntry]:
        """
        Merged remote + queued history, newest first.

        A remote read failure degrades to queued entries only.

        Raises:
            QueueCorruptedError: The local queue cannot be decoded.
        """
        async with self._lock(user_id):
            queued = self.queue.entries(user_id)
            try:
                remote = await self.remote.list_logs(user_id)
            except RemoteReadError as e:
                logger.warning(f"Remote log read failed for {user_id}, showing local entries only: {e}")
                remote = []

            remote_ids = {e.id for e in remote}
            for stale in (q for q in queued if q.id in remote_ids):
                logger.info(f"Dropping queued copy of {stale.id}; already stored remotely")
                self.queue.remove(stale.id)

            merged = remote + [q for q in queued if q.id not in remote_ids]
        merged = await self._cache_remote_images(merged)
        return sorted(merged, key=lambda e: e.submitted_at, reverse=True)

    async def _cache_remote_images(self, entries: list[LogEntry]) -> list[LogEntry]:
        """Point remote-only entries at a locally cached copy of their image."""
        if self.image_cache is None:
            return entries
        missing = [
            i for i, e in enumerate(entries)
            if e.image_remote_url and not (e.image_local_path and os.path.exists(e.image_local_path))
        ]
        if not missing:
            return entries

        paths = await asyncio.gather(*(self.image_cache.cache_remote(entries[i].image_remote_url) for i in missing))
        entries = list(entries)
        for i, path in zip(missing, paths):
            if path != entries[i].image_remote_url:
                entries[i] = entries[i].model_copy(update={"image_local_path": path})
        return entries

    def pending_count(self, user_id: str) -> int:
        return self.queue.count(user_id)

    # === Sync ===

    async def _sync_one(self, entry: LogEntry) -> LogEntry:
        if not entry.image_remote_url and entry.image_local_path:
            url = await self._upload_image(entry.user_id, entry.id, entry.full_name, entry.image_local_path)
            if url:
                entry = entry.model_copy(update={"image_remote_url": url})

        synced = entry.model_copy(update={"pending_sync": False})
        try:
            await self.remote.create_log(synced)
        except RemoteStoreError as e:
            raise SyncRetryableError(f"Log {entry.id} still not writable: {e}") from e
        return synced

    async def sync_pending(self, user_id: str) -> SyncReport:
        """
        Retry every queued entry for a user once.

        Never raises for remote failures; they are logged and the entry
        stays queued for the next pass.
        """
        report = SyncReport()
        async with self._lock(user_id):
            for entry in self.queue.entries(user_id):
                try:
                    synced = await self._sync_one(entry)
                except SyncRetryableError as e:
                    logger.warning(f"Sync retry deferred: {e}")
                    report.failed.append(entry.id)
                    continue
                self.queue.remove(entry.id)
                report.synced.append(entry.id)
                self._notify_stats(synced)

        if report.synced or report.failed:
            logger.info(f"Sync for {user_id}: {len(report.synced)} synced, {len(report.failed)} still queued")
        return report

    # === Edit ===

    async def update_entry(
        self,
        user_id: str,
        entry_id: str,
        rating: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> Optional[LogEntry]:
        """
        Edit rating and/or notes in place.

        Queued entries are edited in the local queue, others remotely.

        Returns:
            The updated entry, or None if it could not be re-read remotely.

        Raises:
            ValueError: Rating outside MIN_RATING..MAX_RATING.
            RemoteNotFoundError: No such entry for this user.
            RemoteWriteError: The remote update failed.
        """
        updates: dict = {}
        if rating is not None:
            if not Config.MIN_RATING <= rating <= Config.MAX_RATING:
                raise ValueError(f"Rating must be between {Config.MIN_RATING} and {Config.MAX_RATING}")
            updates["overall_rating"] = rating
        if notes is not None:
            updates["notes"] = truncate_notes(notes)

        async with self._lock(user_id):
            queued = self.queue.get(entry_id)
            if queued is not None and queued.user_id == user_id:
                updated = queued.model_copy(update=updates)
                if updates:
                    self.queue.replace(updated)
                return updated

            if updates:
                fields = {"overallRating": updates["overall_rating"]} if "overall_rating" in updates else {}
                if "notes" in updates:
                    fields["notes"] = updates["notes"]
                await self.remote.update_log(user_id, entry_id, fields)

            try:
                remote = await self.remote.list_logs(user_id)
            except RemoteReadError as e:
                logger.warning(f"Could not re-read log {entry_id} after update: {e}")
                return None
        return next((e for e in remote if e.id == entry_id), None)
