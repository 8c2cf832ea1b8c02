"""
Humidor log endpoints: history, edits, sync and the remember-login preference.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException

from ..feature_flags import FeatureFlags, get_feature_flags
from ..models import (
    LogEntry,
    LogListResponse,
    LogUpdateRequest,
    RememberLoginRequest,
    RememberLoginResponse,
    SyncResponse,
)
from ..services.errors import QueueCorruptedError, RemoteNotFoundError, RemoteStoreError
from ..services.local_store import LocalKeyValueStore
from ..services.persistence import PersistenceManager
from .dependencies import get_kv_store, get_persistence_manager

logger = logging.getLogger(__name__)
router = APIRouter()


def _queue_corrupted(e: QueueCorruptedError) -> HTTPException:
    logger.error(f"Local pending queue unreadable: {e}")
    return HTTPException(status_code=500, detail="Local pending-sync storage is corrupted")


@router.get("/users/{user_id}/logs", response_model=LogListResponse)
async def list_logs(
    user_id: str,
    persistence: PersistenceManager = Depends(get_persistence_manager),
    flags: FeatureFlags = Depends(get_feature_flags),
) -> LogListResponse:
    """Merged remote + locally queued history, newest first."""
    try:
        if flags.feature_sync_on_load:
            await persistence.sync_pending(user_id)
        entries = await persistence.load(user_id)
        pending = persistence.pending_count(user_id)
    except QueueCorruptedError as e:
        raise _queue_corrupted(e)
    return LogListResponse(entries=entries, pending_count=pending)


@router.patch("/users/{user_id}/logs/{entry_id}", response_model=LogEntry)
async def update_log(
    user_id: str,
    entry_id: str,
    request: LogUpdateRequest,
    persistence: PersistenceManager = Depends(get_persistence_manager),
) -> LogEntry:
    """Edit rating and/or notes of an existing entry."""
    try:
        entry = await persistence.update_entry(user_id, entry_id, request.overall_rating, request.notes)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except QueueCorruptedError as e:
        raise _queue_corrupted(e)
    except RemoteNotFoundError:
        raise HTTPException(status_code=404, detail=f"Log entry {entry_id} not found")
    except RemoteStoreError as e:
        logger.warning(f"Log update failed for {entry_id}: {e}")
        raise HTTPException(status_code=502, detail="Could not update this entry right now")

    if entry is None:
        raise HTTPException(status_code=404, detail=f"Log entry {entry_id} not found")
    return entry


@router.post("/users/{user_id}/sync", response_model=SyncResponse)
async def sync(
    user_id: str,
    persistence: PersistenceManager = Depends(get_persistence_manager),
) -> SyncResponse:
    """Retry every locally queued entry for the user once."""
    try:
        report = await persistence.sync_pending(user_id)
    except QueueCorruptedError as e:
        raise _queue_corrupted(e)
    return SyncResponse(synced=report.synced, failed=report.failed)


@router.get("/preferences/remember-login", response_model=RememberLoginResponse)
async def remembered_login(store: LocalKeyValueStore = Depends(get_kv_store)) -> RememberLoginResponse:
    return RememberLoginResponse(user_id=store.remembered_login())


@router.put("/preferences/remember-login", response_model=RememberLoginResponse)
async def remember_login(
    request: RememberLoginRequest,
    store: LocalKeyValueStore = Depends(get_kv_store),
) -> RememberLoginResponse:
    store.remember_login(request.user_id)
    return RememberLoginResponse(user_id=request.user_id)


@router.delete("/preferences/remember-login", response_model=RememberLoginResponse)
async def forget_login(store: LocalKeyValueStore = Depends(get_kv_store)) -> RememberLoginResponse:
    store.forget_login()
    return RememberLoginResponse(user_id=None)
