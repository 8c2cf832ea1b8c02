"""
Pydantic request/response models for the Humidor HTTP API.
"""

from typing import Optional

from pydantic import BaseModel, Field

from ..config import Config
from .cigar import IdentificationRecord, LogEntry
from .enums import AccuracyFeedback, SaveStatus, SessionState


class SessionResponse(BaseModel):
    """Current view of an identification session."""
    session_id: str = Field(..., description="Identifier of the add-a-cigar session")
    state: SessionState = Field(..., description="Current session state")
    image_local_path: str = Field("", description="App-private copy of the captured image")
    identification: Optional[IdentificationRecord] = Field(None, description="Latest identification")
    suggested_name: str = Field("", description="Name pre-filled for the user to confirm")
    name_editable: bool = Field(False, description="True after a thumbs-down, enables name correction")
    ai_accuracy_feedback: Optional[AccuracyFeedback] = None


class ReanalyzeRequest(BaseModel):
    """User-corrected name used to steer a second identification."""
    corrected_name: str = Field(..., min_length=1, description="Name the user believes is correct")


class FeedbackRequest(BaseModel):
    """Thumbs up/down on the AI identification."""
    feedback: AccuracyFeedback


class SaveRequest(BaseModel):
    """User edits confirmed at save time."""
    full_name: str = Field(..., min_length=1, description="Final cigar name")
    notes: str = Field("", description=f"Tasting notes (truncated to {Config.NOTES_MAX_LENGTH} chars)")
    overall_rating: Optional[int] = Field(None, ge=Config.MIN_RATING, le=Config.MAX_RATING)


class SaveResponse(BaseModel):
    """Outcome of saving a log entry."""
    status: SaveStatus
    message: str
    entry: LogEntry


class LogUpdateRequest(BaseModel):
    """In-place edit of rating and/or notes."""
    overall_rating: Optional[int] = Field(None, ge=Config.MIN_RATING, le=Config.MAX_RATING)
    notes: Optional[str] = None


class LogListResponse(BaseModel):
    """Merged remote + queued history for a user."""
    entries: list[LogEntry] = Field(default_factory=list)
    pending_count: int = Field(0, description="Entries still waiting in the local queue")


class SyncResponse(BaseModel):
    """Result of one opportunistic sync pass."""
    synced: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)


class RememberLoginRequest(BaseModel):
    user_id: str = Field(..., min_length=1)


class RememberLoginResponse(BaseModel):
    user_id: Optional[str] = None
