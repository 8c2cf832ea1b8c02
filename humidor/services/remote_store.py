"""
Remote document store collaborator.

Holds per-user log entries, per-user stats and earned bands, the global
authoritative cigar catalog and the global pending-contribution collection.

HttpRemoteStore talks to a REST document API over httpx with a bearer token:

    PUT    /users/{uid}/logs/{id}          create (idempotent by id)
    GET    /users/{uid}/logs               list, newest first
    PATCH  /users/{uid}/logs/{id}          update fields
    GET    /users/{uid}/stats              404 → no stats yet
    PUT    /users/{uid}/stats
    GET    /catalog?brand=..&line=..       equality query
    POST   /pending_contributions
    GET    /users/{uid}/bands
    PUT    /users/{uid}/bands

InMemoryRemoteStore backs USE_MOCKS and the tests, with switchable failures.
"""

import logging
from typing import Optional, Protocol

import httpx
from pydantic import ValidationError

from ..config import Config
from ..models import LogEntry, PendingContribution, RemoteCatalogEntry, UserStats
from .errors import RemoteNotFoundError, RemoteReadError, RemoteWriteError

logger = logging.getLogger(__name__)


def _remote_document(entry: LogEntry) -> dict:
    """Remote copies are never marked pending."""
    return entry.model_copy(update={"pending_sync": False}).to_document()


def _sort_newest_first(entries: list[LogEntry]) -> list[LogEntry]:
    return sorted(entries, key=lambda e: e.submitted_at, reverse=True)


class RemoteStoreProtocol(Protocol):
    """Protocol for the remote document store (allows swapping backends)."""
    async def create_log(self, entry: LogEntry) -> None: ...

    async def list_logs(self, user_id: str) -> list[LogEntry]: ...

    async def update_log(self, user_id: str, entry_id: str, fields: dict) -> None: ...

    async def get_stats(self, user_id: str) -> Optional[UserStats]: ...

    async def put_stats(self, user_id: str, stats: UserStats) -> None: ...

    async def find_catalog_entry(self, brand: str, line: str) -> Optional[RemoteCatalogEntry]: ...

    async def add_pending_contribution(self, contribution: PendingContribution) -> None: ...

    async def list_bands(self, user_id: str) -> list[str]: ...

    async def award_bands(self, user_id: str, band_ids: list[str]) -> None: ...


class HttpRemoteStore:
    """REST client for the remote document store."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or Config.remote_store_url()).rstrip("/")
        self.token = token or Config.remote_store_token()
        self.timeout = timeout or Config.remote_timeout()
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=self.timeout,
            transport=self._transport,
        )

    async def _write(self, method: str, path: str, payload: dict) -> None:
        if not self.base_url:
            raise RemoteWriteError("REMOTE_STORE_URL not configured")
        try:
            async with self._client() as client:
                response = await client.request(method, path, json=payload)
                if method == "PATCH" and response.status_code == 404:
                    raise RemoteNotFoundError(f"{path} does not exist")
                response.raise_for_status()
        except httpx.HTTPError as e:
            raise RemoteWriteError(f"{method} {path} failed: {e}") from e

    async def _read(self, path: str, params: Optional[dict] = None, allow_missing: bool = False):
        if not self.base_url:
            raise RemoteReadError("REMOTE_STORE_URL not configured")
        try:
            async with self._client() as client:
                response = await client.get(path, params=params)
                if allow_missing and response.status_code == 404:
                    return None
                response.raise_for_status()
                return response.json()
        except httpx.HTTPError as e:
            raise RemoteReadError(f"GET {path} failed: {e}") from e
        except ValueError as e:
            raise RemoteReadError(f"GET {path} returned non-JSON: {e}") from e

    async def create_log(self, entry: LogEntry) -> None:
        await self._write("PUT", f"/users/{entry.user_id}/logs/{entry.id}", _remote_document(entry))

    async def list_logs(self, user_id: str) -> list[LogEntry]:
        data = await self._read(f"/users/{user_id}/logs", params={"orderBy": "submittedAt", "direction": "desc"})
        documents = data.get("documents", []) if isinstance(data, dict) else (data or [])

        entries = []
        for doc in documents:
            try:
                entries.append(LogEntry.model_validate(doc))
            except ValidationError as e:
                logger.warning(f"Skipping malformed remote log for {user_id}: {e.error_count()} errors")
        return _sort_newest_first(entries)

    async def update_log(self, user_id: str, entry_id: str, fields: dict) -> None:
        await self._write("PATCH", f"/users/{user_id}/logs/{entry_id}", fields)

    async def get_stats(self, user_id: str) -> Optional[UserStats]:
        data = await self._read(f"/users/{user_id}/stats", allow_missing=True)
        if not data:
            return None
        return UserStats.model_validate(data)

    async def put_stats(self, user_id: str, stats: UserStats) -> None:
        await self._write("PUT", f"/users/{user_id}/stats", stats.to_document())

    async def find_catalog_entry(self, brand: str, line: str) -> Optional[RemoteCatalogEntry]:
        data = await self._read("/catalog", params={"brand": brand, "line": line})
        documents = data.get("documents", []) if isinstance(data, dict) else (data or [])
        if not documents:
            return None
        try:
            return RemoteCatalogEntry.model_validate(documents[0])
        except ValidationError as e:
            raise RemoteReadError(f"Malformed catalog entry for {brand}/{line}: {e.error_count()} errors") from e

    async def add_pending_contribution(self, contribution: PendingContribution) -> None:
        await self._write("POST", "/pending_contributions", contribution.to_document())

    async def list_bands(self, user_id: str) -> list[str]:
        data = await self._read(f"/users/{user_id}/bands", allow_missing=True)
        if not data:
            return []
        return list(data.get("bandIds", [])) if isinstance(data, dict) else list(data)

    async def award_bands(self, user_id: str, band_ids: list[str]) -> None:
        earned = await self.list_bands(user_id)
        merged = earned + [b for b in band_ids if b not in earned]
        await self._write("PUT", f"/users/{user_id}/bands", {"bandIds": merged})


class InMemoryRemoteStore:
    """
    Dict-backed remote store for mock mode and tests.

    Set ``fail_writes`` / ``fail_reads`` to simulate an unreachable backend.
    """

    def __init__(self, catalog: Optional[list[RemoteCatalogEntry]] = None):
        self.logs: dict[str, dict[str, LogEntry]] = {}
        self.stats: dict[str, UserStats] = {}
        self.bands: dict[str, list[str]] = {}
        self.catalog: list[RemoteCatalogEntry] = list(catalog or [])
        self.pending_contributions: list[PendingContribution] = []
        self.fail_writes = False
        self.fail_reads = False
        self.write_count = 0

    def _check_write(self, what: str) -> None:
        if self.fail_writes:
            raise RemoteWriteError(f"Simulated remote write failure ({what})")
        self.write_count += 1

    def _check_read(self, what: str) -> None:
        if self.fail_reads:
            raise RemoteReadError(f"Simulated remote read failure ({what})")

    async def create_log(self, entry: LogEntry) -> None:
        self._check_write("create_log")
        stored = entry.model_copy(update={"pending_sync": False}, deep=True)
        self.logs.setdefault(entry.user_id, {})[entry.id] = stored

    async def list_logs(self, user_id: str) -> list[LogEntry]:
        self._check_read("list_logs")
        return _sort_newest_first([e.model_copy(deep=True) for e in self.logs.get(user_id, {}).values()])

    async def update_log(self, user_id: str, entry_id: str, fields: dict) -> None:
        self._check_write("update_log")
        current = self.logs.get(user_id, {}).get(entry_id)
        if current is None:
            raise RemoteNotFoundError(f"No remote log {entry_id} for {user_id}")
        merged = {**current.to_document(), **fields}
        self.logs[user_id][entry_id] = LogEntry.model_validate(merged)

    async def get_stats(self, user_id: str) -> Optional[UserStats]:
        self._check_read("get_stats")
        stats = self.stats.get(user_id)
        return stats.model_copy(deep=True) if stats else None

    async def put_stats(self, user_id: str, stats: UserStats) -> None:
        self._check_write("put_stats")
        self.stats[user_id] = stats.model_copy(deep=True)

    async def find_catalog_entry(self, brand: str, line: str) -> Optional[RemoteCatalogEntry]:
        self._check_read("find_catalog_entry")
        for entry in self.catalog:
            if entry.brand == brand and entry.line == line:
                return entry
        return None

    async def add_pending_contribution(self, contribution: PendingContribution) -> None:
        self._check_write("add_pending_contribution")
        self.pending_contributions.append(contribution)

    async def list_bands(self, user_id: str) -> list[str]:
        self._check_read("list_bands")
        return list(self.bands.get(user_id, []))

    async def award_bands(self, user_id: str, band_ids: list[str]) -> None:
        self._check_write("award_bands")
        earned = self.bands.setdefault(user_id, [])
        earned.extend(b for b in band_ids if b not in earned)


def get_remote_store(use_mock: Optional[bool] = None) -> RemoteStoreProtocol:
    """Build the configured remote store."""
    if use_mock is None:
        use_mock = Config.use_mocks()
    if use_mock:
        return InMemoryRemoteStore()
    if not Config.remote_store_url():
        logger.warning("REMOTE_STORE_URL not set; every save will stay in the local pending queue")
    return HttpRemoteStore()
