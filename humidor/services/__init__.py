from .catalog_matcher import CigarCatalogMatcher, get_catalog_matcher
from .vision import VisionResult, get_vision_extractor
from .assistant import AssistantResolver, get_assistant_resolver
from .identification import IdentificationOrchestrator
from .persistence import PersistenceManager, SaveOutcome, SyncReport
from .session import IdentificationSession, SessionManager

__all__ = [
    "CigarCatalogMatcher",
    "get_catalog_matcher",
    "VisionResult",
    "get_vision_extractor",
    "AssistantResolver",
    "get_assistant_resolver",
    "IdentificationOrchestrator",
    "PersistenceManager",
    "SaveOutcome",
    "SyncReport",
    "IdentificationSession",
    "SessionManager",
]
