"""
Tests for the local key-value store and the pending-sync queue.
"""

import pytest

from humidor.models import LogEntry
from humidor.services.errors import QueueCorruptedError
from humidor.services.local_store import LocalKeyValueStore, PendingSyncQueue


class TestLocalKeyValueStore:
    """Tests for the SQLite-backed key-value store."""

    def test_set_get_delete(self, kv_store):
        assert kv_store.get("k") is None
        kv_store.set("k", "v1")
        kv_store.set("k", "v2")
        assert kv_store.get("k") == "v2"
        kv_store.delete("k")
        assert kv_store.get("k") is None

    def test_update_is_atomic_on_error(self, kv_store):
        kv_store.set("k", "original")

        def explode(current):
            raise RuntimeError("crash mid-write")

        with pytest.raises(RuntimeError):
            kv_store.update("k", explode)
        assert kv_store.get("k") == "original"

    def test_update_none_deletes(self, kv_store):
        kv_store.set("k", "v")
        kv_store.update("k", lambda current: None)
        assert kv_store.get("k") is None

    def test_values_survive_reopen(self, db_path):
        first = LocalKeyValueStore(db_path)
        first.set("k", "persisted")
        first.close()

        second = LocalKeyValueStore(db_path)
        assert second.get("k") == "persisted"
        second.close()

    def test_remember_login(self, kv_store):
        assert kv_store.remembered_login() is None
        kv_store.remember_login("u1")
        assert kv_store.remembered_login() == "u1"
        kv_store.forget_login()
        assert kv_store.remembered_login() is None


class TestPendingSyncQueue:
    """Tests for the local queue of entries awaiting a remote write."""

    @pytest.fixture
    def entry(self, make_draft):
        return LogEntry.from_draft(make_draft())

    def test_append_marks_pending(self, queue, entry):
        queued = queue.append(entry)
        assert queued.pending_sync
        assert not entry.pending_sync

        entries = queue.entries("u1")
        assert [e.id for e in entries] == [entry.id]
        assert entries[0].pending_sync
        assert entries[0].full_name == "Cohiba Robusto"

    def test_append_same_id_replaces(self, queue, entry):
        queue.append(entry)
        queue.append(entry.model_copy(update={"notes": "second"}))
        entries = queue.entries("u1")
        assert len(entries) == 1
        assert entries[0].notes == "second"

    def test_entries_filtered_by_user(self, queue, make_draft):
        queue.append(LogEntry.from_draft(make_draft()))
        queue.append(LogEntry.from_draft(make_draft(user_id="u2")))
        assert queue.count("u1") == 1
        assert queue.count("u2") == 1
        assert queue.entries("u3") == []

    def test_order_preserved(self, queue, make_draft):
        ids = []
        for i in range(3):
            entry = LogEntry.from_draft(make_draft(full_name=f"Cigar {i}"))
            queue.append(entry)
            ids.append(entry.id)
        assert [e.id for e in queue.entries("u1")] == ids

    def test_remove(self, queue, entry):
        queue.append(entry)
        assert queue.remove(entry.id)
        assert not queue.remove(entry.id)
        assert queue.count("u1") == 0

    def test_replace(self, queue, entry):
        assert not queue.replace(entry)
        queue.append(entry)
        assert queue.replace(entry.model_copy(update={"overall_rating": 2}))
        assert queue.get(entry.id).overall_rating == 2

    def test_clear_one_user(self, queue, make_draft):
        queue.append(LogEntry.from_draft(make_draft()))
        queue.append(LogEntry.from_draft(make_draft(user_id="u2")))
        queue.clear("u1")
        assert queue.count("u1") == 0
        assert queue.count("u2") == 1
        queue.clear()
        assert queue.count("u2") == 0

    def test_survives_reopen(self, db_path, entry):
        store = LocalKeyValueStore(db_path)
        PendingSyncQueue(store).append(entry)
        store.close()

        reopened = LocalKeyValueStore(db_path)
        assert PendingSyncQueue(reopened).get(entry.id) is not None
        reopened.close()

    def test_corrupted_json_raises(self, kv_store, queue):
        kv_store.set(PendingSyncQueue.KEY, "{not json")
        with pytest.raises(QueueCorruptedError):
            queue.entries("u1")

    def test_non_array_raises(self, kv_store, queue):
        kv_store.set(PendingSyncQueue.KEY, '{"id": "x"}')
        with pytest.raises(QueueCorruptedError):
            queue.count("u1")

    def test_invalid_entry_raises(self, kv_store, queue):
        kv_store.set(PendingSyncQueue.KEY, '[{"id": "x", "userId": "u1"}]')
        with pytest.raises(QueueCorruptedError):
            queue.entries("u1")

    def test_corruption_not_overwritten_by_append(self, kv_store, queue, entry):
        kv_store.set(PendingSyncQueue.KEY, "{not json")
        with pytest.raises(QueueCorruptedError):
            queue.append(entry)
        assert kv_store.get(PendingSyncQueue.KEY) == "{not json"
