"""
Dependency injection for the Humidor routes.

Singletons via lru_cache; tests swap them with app.dependency_overrides.
"""

from functools import lru_cache

from ..feature_flags import get_feature_flags
from ..services.assistant import get_assistant_resolver
from ..services.blob_storage import get_blob_storage
from ..services.catalog_matcher import get_catalog_matcher
from ..services.identification import IdentificationOrchestrator
from ..services.image_cache import get_image_cache
from ..services.local_store import LocalKeyValueStore, get_local_store, get_pending_queue
from ..services.persistence import PersistenceManager
from ..services.remote_store import RemoteStoreProtocol, get_remote_store
from ..services.session import SessionManager
from ..services.stats import StatsNotifier
from ..services.vision import get_vision_extractor


@lru_cache(maxsize=1)
def get_remote() -> RemoteStoreProtocol:
    return get_remote_store()


@lru_cache(maxsize=1)
def get_persistence_manager() -> PersistenceManager:
    """Get or create the persistence manager (singleton via lru_cache)."""
    flags = get_feature_flags()
    remote = get_remote()
    stats = StatsNotifier(remote, award_bands=flags.feature_band_awards) if flags.feature_stats else None
    return PersistenceManager(
        remote=remote,
        queue=get_pending_queue(),
        blobs=get_blob_storage(),
        stats=stats,
        image_cache=get_image_cache(),
    )


@lru_cache(maxsize=1)
def get_orchestrator() -> IdentificationOrchestrator:
    return IdentificationOrchestrator(
        extractor=get_vision_extractor(),
        resolver=get_assistant_resolver(),
        catalog=get_catalog_matcher(),
        remote=get_remote(),
        flags=get_feature_flags(),
    )


@lru_cache(maxsize=1)
def get_session_manager() -> SessionManager:
    """Get or create the session manager (singleton via lru_cache)."""
    return SessionManager(
        orchestrator=get_orchestrator(),
        persistence=get_persistence_manager(),
        image_cache=get_image_cache(),
    )


def get_kv_store() -> LocalKeyValueStore:
    return get_local_store()
