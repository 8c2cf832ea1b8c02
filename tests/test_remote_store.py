"""
Tests for the remote document store clients.
"""

import json

import httpx
import pytest

from humidor.models import IdentificationRecord, LogEntry, PendingContribution, RemoteCatalogEntry, UserStats
from humidor.services.errors import RemoteNotFoundError, RemoteReadError, RemoteWriteError
from humidor.services.remote_store import HttpRemoteStore, InMemoryRemoteStore, get_remote_store


class FakeDocumentAPI:
    """Minimal REST document store behind an httpx MockTransport."""

    def __init__(self):
        self.documents: dict[str, dict] = {}
        self.requests: list[httpx.Request] = []
        self.fail = False

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail:
            return httpx.Response(503, json={"error": "unavailable"})

        path = request.url.path
        if request.method in ("PUT", "POST"):
            self.documents[path] = json.loads(request.content)
            return httpx.Response(200, json={"ok": True})
        if request.method == "PATCH":
            if path not in self.documents:
                return httpx.Response(404, json={"error": "missing"})
            self.documents[path].update(json.loads(request.content))
            return httpx.Response(200, json={"ok": True})

        if path.endswith("/logs"):
            prefix = path + "/"
            docs = [d for p, d in self.documents.items() if p.startswith(prefix)]
            return httpx.Response(200, json={"documents": docs})
        if path == "/catalog":
            brand = request.url.params.get("brand")
            if brand == "Broken":
                return httpx.Response(200, json={"documents": [{"brand": "Broken"}]})
            if brand == "Cohiba":
                return httpx.Response(200, json={"documents": [
                    {"brand": "Cohiba", "line": "Robusto", "description": "Catalog text", "originCountry": "Cuba"},
                ]})
            return httpx.Response(200, json={"documents": []})
        if path in self.documents:
            return httpx.Response(200, json=self.documents[path])
        return httpx.Response(404, json={"error": "missing"})


@pytest.fixture
def api():
    return FakeDocumentAPI()


@pytest.fixture
def store(api):
    return HttpRemoteStore(base_url="https://store.test", token="tok", transport=httpx.MockTransport(api.handler))


@pytest.fixture
def entry(make_draft):
    return LogEntry.from_draft(make_draft(), image_remote_url="https://cdn.test/a.jpg", pending_sync=True)


class TestHttpRemoteStore:
    """Tests for the REST client."""

    @pytest.mark.asyncio
    async def test_create_and_list(self, api, store, entry):
        await store.create_log(entry)

        request = api.requests[0]
        assert request.method == "PUT"
        assert request.url.path == f"/users/u1/logs/{entry.id}"
        assert request.headers["authorization"] == "Bearer tok"
        body = json.loads(request.content)
        assert body["fullName"] == "Cohiba Robusto"
        assert body["pendingSync"] is False

        logs = await store.list_logs("u1")
        assert [e.id for e in logs] == [entry.id]
        assert not logs[0].pending_sync

    @pytest.mark.asyncio
    async def test_list_skips_malformed_documents(self, api, store, entry):
        await store.create_log(entry)
        api.documents["/users/u1/logs/bad"] = {"id": "bad"}
        logs = await store.list_logs("u1")
        assert [e.id for e in logs] == [entry.id]

    @pytest.mark.asyncio
    async def test_update_log_patches_fields(self, api, store, entry):
        await store.create_log(entry)
        await store.update_log("u1", entry.id, {"overallRating": 2})
        assert api.documents[f"/users/u1/logs/{entry.id}"]["overallRating"] == 2

    @pytest.mark.asyncio
    async def test_write_failure_raises(self, api, store, entry):
        api.fail = True
        with pytest.raises(RemoteWriteError):
            await store.create_log(entry)

    @pytest.mark.asyncio
    async def test_read_failure_raises(self, api, store):
        api.fail = True
        with pytest.raises(RemoteReadError):
            await store.list_logs("u1")

    @pytest.mark.asyncio
    async def test_unconfigured_raises(self, monkeypatch, entry):
        monkeypatch.delenv("REMOTE_STORE_URL", raising=False)
        store = HttpRemoteStore(base_url="")
        with pytest.raises(RemoteWriteError):
            await store.create_log(entry)
        with pytest.raises(RemoteReadError):
            await store.list_logs("u1")

    @pytest.mark.asyncio
    async def test_stats_missing_then_put(self, store):
        assert await store.get_stats("u1") is None
        await store.put_stats("u1", UserStats(log_count=3, total_rating=12))
        stats = await store.get_stats("u1")
        assert stats.log_count == 3
        assert stats.average_rating == 4.0

    @pytest.mark.asyncio
    async def test_find_catalog_entry(self, store):
        found = await store.find_catalog_entry("Cohiba", "Robusto")
        assert found.origin_country == "Cuba"
        assert await store.find_catalog_entry("Nobody", "") is None

    @pytest.mark.asyncio
    async def test_malformed_catalog_entry_is_a_read_error(self, store):
        with pytest.raises(RemoteReadError):
            await store.find_catalog_entry("Broken", "Anything")

    @pytest.mark.asyncio
    async def test_update_missing_log_is_not_found(self, store):
        with pytest.raises(RemoteNotFoundError):
            await store.update_log("u1", "missing", {"overallRating": 2})

    @pytest.mark.asyncio
    async def test_bands_merge(self, api, store):
        assert await store.list_bands("u1") == []
        await store.award_bands("u1", ["first-ash"])
        await store.award_bands("u1", ["first-ash", "daily-draw"])
        assert api.documents["/users/u1/bands"] == {"bandIds": ["first-ash", "daily-draw"]}

    @pytest.mark.asyncio
    async def test_pending_contribution_posted(self, api, store):
        contribution = PendingContribution(
            user_id="u1",
            full_name="Foundation Charter Oak",
            brand="Foundation",
            line="Charter Oak",
            identification=IdentificationRecord(full_name="Foundation Charter Oak"),
        )
        await store.add_pending_contribution(contribution)
        body = api.documents["/pending_contributions"]
        assert body["brand"] == "Foundation"
        assert body["identification"]["fullName"] == "Foundation Charter Oak"


class TestInMemoryRemoteStore:
    @pytest.mark.asyncio
    async def test_create_is_idempotent_by_id(self, remote, entry):
        await remote.create_log(entry)
        await remote.create_log(entry)
        assert len(await remote.list_logs("u1")) == 1

    @pytest.mark.asyncio
    async def test_update_unknown_raises(self, remote):
        with pytest.raises(RemoteNotFoundError):
            await remote.update_log("u1", "missing", {"notes": "x"})

    @pytest.mark.asyncio
    async def test_catalog_equality_lookup(self):
        remote = InMemoryRemoteStore(catalog=[RemoteCatalogEntry(brand="Oliva", line="Serie V")])
        assert await remote.find_catalog_entry("Oliva", "Serie V") is not None
        assert await remote.find_catalog_entry("Oliva", "Serie O") is None

    @pytest.mark.asyncio
    async def test_simulated_failures(self, remote, entry):
        remote.fail_writes = True
        remote.fail_reads = True
        with pytest.raises(RemoteWriteError):
            await remote.create_log(entry)
        with pytest.raises(RemoteReadError):
            await remote.list_logs("u1")


class TestGetRemoteStore:
    def test_mock_mode(self):
        assert isinstance(get_remote_store(use_mock=True), InMemoryRemoteStore)

    @pytest.mark.asyncio
    async def test_unconfigured_url_never_falls_back_to_memory(self, monkeypatch, entry):
        monkeypatch.delenv("REMOTE_STORE_URL", raising=False)
        store = get_remote_store(use_mock=False)
        assert isinstance(store, HttpRemoteStore)
        with pytest.raises(RemoteWriteError):
            await store.create_log(entry)
