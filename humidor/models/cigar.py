"""
Pydantic document models for identifications and humidor log entries.

Documents serialize with camelCase keys (``model_dump(by_alias=True)``), the
shape used by the remote document store, the local pending-sync queue and the
assistant's JSON answers. Python code uses the snake_case attribute names.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from ..config import Config
from .enums import AccuracyFeedback

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def truncate_notes(notes: Optional[str]) -> str:
    """Clamp tasting notes to Config.NOTES_MAX_LENGTH characters."""
    notes = (notes or "").strip()
    if len(notes) > Config.NOTES_MAX_LENGTH:
        logger.info(f"Truncating notes from {len(notes)} to {Config.NOTES_MAX_LENGTH} chars")
        notes = notes[:Config.NOTES_MAX_LENGTH].rstrip()
    return notes


class Document(BaseModel):
    """Base for camelCase-serialized documents."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_document(self) -> dict:
        """Serialize to a JSON-safe camelCase dict."""
        return self.model_dump(by_alias=True, mode="json")


class IdentificationRecord(Document):
    """Structured best-guess metadata about a scanned cigar."""
    full_name: str = ""
    description: str = ""
    origin_country: str = ""
    wrapper_type: str = ""
    strength: str = ""
    common_notes: str = ""
    recommended_pairings: str = ""
    brand: Optional[str] = None
    line: Optional[str] = None
    is_fallback: bool = False
    is_user_corrected: bool = False
    from_catalog: bool = False

    @property
    def is_usable(self) -> bool:
        """True when the record names the cigar and describes it."""
        return bool(self.full_name.strip() and self.description.strip())


class RemoteCatalogEntry(Document):
    """Authoritative catalog metadata for one brand/line."""
    brand: str
    line: str
    description: str = ""
    origin_country: str = ""
    wrapper_type: str = ""
    strength: str = ""
    common_notes: str = ""
    recommended_pairings: str = ""


class LogEntryDraft(Document):
    """User-confirmed entry before persistence.

    ``id`` and ``submitted_at`` are assigned here so a queued local copy and
    its eventual remote document share one identity.
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    full_name: str
    notes: str = ""
    overall_rating: Optional[int] = Field(None, ge=Config.MIN_RATING, le=Config.MAX_RATING)
    submitted_at: datetime = Field(default_factory=_utcnow)
    image_local_path: str = ""
    identification: IdentificationRecord = Field(default_factory=IdentificationRecord)
    ai_accuracy_feedback: Optional[AccuracyFeedback] = None
    ai_raw_response: str = ""

    @field_validator("notes", mode="before")
    @classmethod
    def _clamp_notes(cls, v: Optional[str]) -> str:
        return truncate_notes(v)

    @field_validator("full_name")
    @classmethod
    def _require_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("full_name must not be empty")
        return v


class LogEntry(LogEntryDraft):
    """A persisted humidor log entry (remote document or queued local copy)."""
    image_remote_url: str = ""
    from_catalog: bool = False
    pending_sync: bool = False

    @computed_field
    @property
    def is_user_corrected(self) -> bool:
        return self.identification.is_user_corrected

    @model_validator(mode="after")
    def _require_image_reference(self) -> "LogEntry":
        if not self.image_local_path and not self.image_remote_url:
            raise ValueError("log entry needs a local image path or a remote image URL")
        return self

    @classmethod
    def from_draft(cls, draft: LogEntryDraft, image_remote_url: str = "", pending_sync: bool = False) -> "LogEntry":
        """Promote a draft to a persisted entry."""
        return cls(
            **draft.model_dump(),
            image_remote_url=image_remote_url,
            from_catalog=draft.identification.from_catalog,
            pending_sync=pending_sync,
        )


class PendingContribution(Document):
    """A brand/line the remote catalog does not know yet, staged for curation."""
    user_id: str
    full_name: str
    brand: str
    line: str = ""
    identification: IdentificationRecord
    staged_at: datetime = Field(default_factory=_utcnow)


class UserStats(Document):
    """Per-user aggregate counters fed by saved log entries."""
    log_count: int = 0
    total_rating: int = 0
    body_counts: dict[str, int] = Field(default_factory=dict)
    countries: list[str] = Field(default_factory=list)
    bands_earned: int = 0

    @property
    def average_rating(self) -> float:
        return self.total_rating / self.log_count if self.log_count else 0.0
