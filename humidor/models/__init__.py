from .enums import (
    SessionState,
    SaveStatus,
    AccuracyFeedback,
    RunStatus,
)
from .cigar import (
    IdentificationRecord,
    RemoteCatalogEntry,
    LogEntryDraft,
    LogEntry,
    PendingContribution,
    UserStats,
    truncate_notes,
)
from .response import (
    SessionResponse,
    ReanalyzeRequest,
    FeedbackRequest,
    SaveRequest,
    SaveResponse,
    LogUpdateRequest,
    LogListResponse,
    SyncResponse,
    RememberLoginRequest,
    RememberLoginResponse,
)

__all__ = [
    "SessionState",
    "SaveStatus",
    "AccuracyFeedback",
    "RunStatus",
    "IdentificationRecord",
    "RemoteCatalogEntry",
    "LogEntryDraft",
    "LogEntry",
    "PendingContribution",
    "UserStats",
    "truncate_notes",
    "SessionResponse",
    "ReanalyzeRequest",
    "FeedbackRequest",
    "SaveRequest",
    "SaveResponse",
    "LogUpdateRequest",
    "LogListResponse",
    "SyncResponse",
    "RememberLoginRequest",
    "RememberLoginResponse",
]
