"""
Device-local durable storage.

LocalKeyValueStore is a small SQLite key-value table (created by Alembic
migration 001). Each write runs in its own BEGIN IMMEDIATE transaction on a
WAL journal, so a crash leaves either the previous value or the new one,
never a partial write.

PendingSyncQueue keeps log entries that could not be written remotely as one
JSON array per install, filtered by user on read. Every mutation is a single
atomic read-modify-write.
"""

import json
import logging
from typing import Callable, Optional

from pydantic import ValidationError

from ..db import BaseRepository
from ..models import LogEntry
from .errors import QueueCorruptedError

logger = logging.getLogger(__name__)


class LocalKeyValueStore(BaseRepository):
    """Crash-safe string key-value store backed by the kv_store table."""

    REMEMBER_LOGIN_KEY = "remember_login"

    def __init__(self, db_path: Optional[str] = None):
        super().__init__(db_path, use_wal=True)

    def get(self, key: str) -> Optional[str]:
        conn = self._get_connection()
        row = conn.execute("SELECT value FROM kv_store WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else None

    def set(self, key: str, value: str) -> None:
        with self._transaction() as cursor:
            cursor.execute(
                """
                INSERT INTO kv_store (key, value, updated_at) VALUES (?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = CURRENT_TIMESTAMP
                """,
                (key, value),
            )

    def delete(self, key: str) -> None:
        with self._transaction() as cursor:
            cursor.execute("DELETE FROM kv_store WHERE key = ?", (key,))

    def update(self, key: str, mutate: Callable[[Optional[str]], Optional[str]]) -> Optional[str]:
        """
        Atomically replace a value with ``mutate(current)``.

        Returning None from ``mutate`` deletes the key. An exception raised by
        ``mutate`` rolls back and leaves the stored value untouched.
        """
        with self._transaction() as cursor:
            row = cursor.execute("SELECT value FROM kv_store WHERE key = ?", (key,)).fetchone()
            new_value = mutate(row["value"] if row else None)
            if new_value is None:
                cursor.execute("DELETE FROM kv_store WHERE key = ?", (key,))
            else:
                cursor.execute(
                    """
                    INSERT INTO kv_store (key, value, updated_at) VALUES (?, ?, CURRENT_TIMESTAMP)
                    ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = CURRENT_TIMESTAMP
                    """,
                    (key, new_value),
                )
        return new_value

    # === Remember last login ===

    def remember_login(self, user_id: str) -> None:
        self.set(self.REMEMBER_LOGIN_KEY, user_id)

    def remembered_login(self) -> Optional[str]:
        return self.get(self.REMEMBER_LOGIN_KEY) or None

    def forget_login(self) -> None:
        self.delete(self.REMEMBER_LOGIN_KEY)


class PendingSyncQueue:
    """
    Ordered queue of log entries waiting for a remote write.

    Entries are stored as camelCase documents with ``pendingSync=true``.
    Undecodable content raises QueueCorruptedError; nothing is silently dropped.
    """

    KEY = "pending_sync_queue"

    def __init__(self, store: LocalKeyValueStore):
        self.store = store

    @staticmethod
    def _decode(raw: Optional[str]) -> list[dict]:
        if raw is None or raw == "":
            return []
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise QueueCorruptedError(f"Pending sync queue is not valid JSON: {e}") from e
        if not isinstance(data, list) or not all(isinstance(d, dict) for d in data):
            raise QueueCorruptedError("Pending sync queue is not a JSON array of documents")
        return data

    @staticmethod
    def _encode(documents: list[dict]) -> Optional[str]:
        return json.dumps(documents) if documents else None

    @staticmethod
    def _to_entry(document: dict) -> LogEntry:
        try:
            return LogEntry.model_validate(document)
        except ValidationError as e:
            raise QueueCorruptedError(f"Queued entry {document.get('id', '?')} is invalid: {e}") from e

    def _documents(self) -> list[dict]:
        return self._decode(self.store.get(self.KEY))

    def entries(self, user_id: str) -> list[LogEntry]:
        """Queued entries for one user, oldest first."""
        return [self._to_entry(d) for d in self._documents() if d.get("userId") == user_id]

    def count(self, user_id: str) -> int:
        return sum(1 for d in self._documents() if d.get("userId") == user_id)

    def append(self, entry: LogEntry) -> LogEntry:
        """Queue an entry (replacing a queued copy with the same id)."""
        queued = entry.model_copy(update={"pending_sync": True})
        document = queued.to_document()

        def mutate(raw: Optional[str]) -> Optional[str]:
            documents = [d for d in self._decode(raw) if d.get("id") != entry.id]
            documents.append(document)
            return self._encode(documents)

        self.store.update(self.KEY, mutate)
        logger.info(f"Queued log {entry.id} for {entry.user_id} (pending sync)")
        return queued

    def remove(self, entry_id: str) -> bool:
        """Drop an entry by id. Returns True if it was queued."""
        removed = False

        def mutate(raw: Optional[str]) -> Optional[str]:
            nonlocal removed
            documents = self._decode(raw)
            kept = [d for d in documents if d.get("id") != entry_id]
            removed = len(kept) != len(documents)
            return self._encode(kept)

        self.store.update(self.KEY, mutate)
        return removed

    def replace(self, entry: LogEntry) -> bool:
        """Overwrite a queued entry in place. Returns False if it is not queued."""
        replaced = False
        document = entry.model_copy(update={"pending_sync": True}).to_document()

        def mutate(raw: Optional[str]) -> Optional[str]:
            nonlocal replaced
            documents = self._decode(raw)
            for i, d in enumerate(documents):
                if d.get("id") == entry.id:
                    documents[i] = document
                    replaced = True
            return self._encode(documents)

        self.store.update(self.KEY, mutate)
        return replaced

    def get(self, entry_id: str) -> Optional[LogEntry]:
        for document in self._documents():
            if document.get("id") == entry_id:
                return self._to_entry(document)
        return None

    def clear(self, user_id: Optional[str] = None) -> None:
        """Empty the queue, or only one user's part of it."""
        if user_id is None:
            self.store.delete(self.KEY)
            return
        self.store.update(
            self.KEY,
            lambda raw: self._encode([d for d in self._decode(raw) if d.get("userId") != user_id]),
        )


# Singleton instance
_store_instance: Optional[LocalKeyValueStore] = None


def get_local_store() -> LocalKeyValueStore:
    """Get the singleton local key-value store."""
    global _store_instance
    if _store_instance is None:
        _store_instance = LocalKeyValueStore()
    return _store_instance


def get_pending_queue() -> PendingSyncQueue:
    return PendingSyncQueue(get_local_store())
