"""
Add-a-cigar session: an explicit state machine around one capture.

    idle → image_captured → identifying → reviewing → saving → saved | queued_local
                       ↑          │   ↑        │          │
                       └──────────┘   └────────┘          └→ reviewing (save failed)

A capture whose identification keeps failing can still be saved by name
straight from image_captured.

Any non-terminal state except saving can move to cancelled. Transitions not
in TRANSITIONS raise InvalidTransition. At most one identification runs per
session at a time (SessionBusyError), and each session carries a
CancellationToken so a cancelled session never receives a late result.

SessionManager forgets a session as soon as it reaches a terminal state
(saved, queued_local, cancelled) and keeps at most ``max_sessions`` live ones,
evicting the oldest idle session first.
"""

import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import Optional

from ..models import IdentificationRecord, LogEntry, LogEntryDraft, SessionResponse
from ..models.enums import AccuracyFeedback, SaveStatus, SessionState
from .cancellation import CancellationToken
from .errors import (
    ExtractionError,
    InvalidTransition,
    PersistenceError,
    SessionBusyError,
    SessionNotFound,
)
from .identification import IdentificationOrchestrator
from .image_cache import ImageCache
from .persistence import PersistenceManager, SaveOutcome
from .records import merge_identification

logger = logging.getLogger(__name__)


TRANSITIONS: dict[SessionState, set[SessionState]] = {
    SessionState.IDLE: {SessionState.IMAGE_CAPTURED, SessionState.CANCELLED},
    SessionState.IMAGE_CAPTURED: {SessionState.IDENTIFYING, SessionState.SAVING, SessionState.CANCELLED},
    SessionState.IDENTIFYING: {SessionState.REVIEWING, SessionState.IMAGE_CAPTURED, SessionState.CANCELLED},
    SessionState.REVIEWING: {SessionState.IDENTIFYING, SessionState.SAVING, SessionState.CANCELLED},
    SessionState.SAVING: {
        SessionState.SAVED,
        SessionState.QUEUED_LOCAL,
        SessionState.REVIEWING,
        SessionState.IMAGE_CAPTURED,
    },
    SessionState.SAVED: set(),
    SessionState.QUEUED_LOCAL: set(),
    SessionState.CANCELLED: set(),
}


@dataclass
class IdentificationSession:
    """State for one capture, from image to saved log entry."""
    user_id: str
    interests: list[str] = field(default_factory=list)
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    state: SessionState = SessionState.IDLE
    image_local_path: str = ""
    identification: Optional[IdentificationRecord] = None
    suggested_name: str = ""
    name_editable: bool = False
    feedback: Optional[AccuracyFeedback] = None
    ai_raw_response: str = ""
    saved_entry: Optional[LogEntry] = None
    in_flight: bool = False
    cancel_token: CancellationToken = field(default_factory=CancellationToken)

    def transition(self, target: SessionState) -> None:
        if target not in TRANSITIONS[self.state]:
            raise InvalidTransition(f"Session {self.session_id}: cannot go from {self.state.value} to {target.value}")
        logger.debug(f"Session {self.session_id}: {self.state.value} → {target.value}")
        self.state = target

    def apply_identification(self, record: IdentificationRecord) -> None:
        self.identification = record
        self.ai_raw_response = json.dumps(record.to_document())
        self.suggested_name = record.full_name
        self.transition(SessionState.REVIEWING)

    def to_response(self) -> SessionResponse:
        return SessionResponse(
            session_id=self.session_id,
            state=self.state,
            image_local_path=self.image_local_path,
            identification=self.identification,
            suggested_name=self.suggested_name,
            name_editable=self.name_editable,
            ai_accuracy_feedback=self.feedback,
        )


class SessionManager:
    """Owns live sessions by id and drives them through the pipeline."""

    def __init__(
        self,
        orchestrator: IdentificationOrchestrator,
        persistence: PersistenceManager,
        image_cache: ImageCache,
        max_sessions: int = 500,
    ):
        self.orchestrator = orchestrator
        self.persistence = persistence
        self.image_cache = image_cache
        self.max_sessions = max_sessions
        self._sessions: dict[str, IdentificationSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def create(
        self,
        user_id: str,
        image_bytes: bytes,
        filename: Optional[str] = None,
        interests: Optional[list[str]] = None,
    ) -> IdentificationSession:
        """Start a session, copying the captured image into the file cache first."""
        session = IdentificationSession(
            user_id=user_id,
            interests=[i for i in (interests or []) if i],
        )
        session.cancel_token.label = session.session_id
        session.image_local_path = self.image_cache.persist(image_bytes, filename)
        session.transition(SessionState.IMAGE_CAPTURED)
        self._sessions[session.session_id] = session
        self._evict(keep=session.session_id)
        logger.info(f"Session {session.session_id} created for {user_id}")
        return session

    def get(self, session_id: str) -> IdentificationSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(f"No session {session_id}")
        return session

    def remove(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)

    def _evict(self, keep: str) -> None:
        """Drop the oldest sessions with nothing in flight once over max_sessions."""
        excess = len(self._sessions) - self.max_sessions
        if excess <= 0:
            return
        idle = [sid for sid, s in self._sessions.items() if not s.in_flight and sid != keep][:excess]
        for sid in idle:
            self._sessions.pop(sid).cancel_token.cancel()
        logger.info(f"Evicted {len(idle)} stale sessions")

    def _read_image(self, session: IdentificationSession) -> bytes:
        try:
            return self.image_cache.read(session.image_local_path)
        except OSError as e:
            raise ExtractionError(f"Captured image is no longer readable: {e}") from e

    def _begin_identification(self, session: IdentificationSession) -> None:
        if session.in_flight:
            raise SessionBusyError(f"Session {session.session_id} is already identifying")
        session.transition(SessionState.IDENTIFYING)
        session.in_flight = True

    def _abort_identification(self, session: IdentificationSession) -> None:
        if session.state != SessionState.IDENTIFYING:
            return
        if session.identification is not None:
            session.transition(SessionState.REVIEWING)
        else:
            session.transition(SessionState.IMAGE_CAPTURED)

    async def identify(self, session_id: str) -> IdentificationSession:
        """
        Run the first identification for a session.

        Raises:
            ExtractionError: Vision failed; the session returns to image_captured.
            IdentificationCancelled: The session was cancelled mid-flight.
        """
        session = self.get(session_id)
        self._begin_identification(session)
        try:
            image = self._read_image(session)
            record = await self.orchestrator.identify(
                image, session.user_id, session.interests, cancel_token=session.cancel_token
            )
            session.cancel_token.raise_if_cancelled()
        except ExtractionError:
            self._abort_identification(session)
            raise
        finally:
            session.in_flight = False

        session.apply_identification(record)
        return session

    def give_feedback(self, session_id: str, feedback: AccuracyFeedback) -> IdentificationSession:
        """Thumbs up keeps the suggestion; thumbs down clears it for correction."""
        session = self.get(session_id)
        if session.state != SessionState.REVIEWING:
            raise InvalidTransition(f"Session {session_id}: feedback needs reviewing, not {session.state.value}")
        session.feedback = feedback
        if feedback == AccuracyFeedback.DOWN:
            session.suggested_name = ""
            session.name_editable = True
        return session

    async def reanalyze(self, session_id: str, corrected_name: str) -> IdentificationSession:
        """Re-resolve with the user's corrected name as a hint."""
        corrected_name = (corrected_name or "").strip()
        if not corrected_name:
            raise ValueError("corrected_name must not be empty")

        session = self.get(session_id)
        self._begin_identification(session)
        try:
            image = self._read_image(session)
            record = await self.orchestrator.reidentify(
                image, session.user_id, session.interests, corrected_name, cancel_token=session.cancel_token
            )
            session.cancel_token.raise_if_cancelled()
        except ExtractionError:
            self._abort_identification(session)
            raise
        finally:
            session.in_flight = False

        session.apply_identification(record)
        return session

    async def save(
        self,
        session_id: str,
        full_name: str,
        notes: str = "",
        overall_rating: Optional[int] = None,
    ) -> SaveOutcome:
        """
        Persist the reviewed identification as a log entry.

        Raises:
            ValueError: Invalid name/rating (draft validation).
            PersistenceError: Nothing accepted the entry; session returns to reviewing.
        """
        session = self.get(session_id)
        if session.in_flight:
            raise SessionBusyError(f"Session {session_id} is still identifying")

        record = merge_identification(session.identification or IdentificationRecord(), final_name=full_name)
        if session.identification is None or record.full_name != session.identification.full_name:
            record = record.model_copy(update={"is_user_corrected": True})

        draft = LogEntryDraft(
            user_id=session.user_id,
            full_name=full_name,
            notes=notes,
            overall_rating=overall_rating,
            image_local_path=session.image_local_path,
            identification=record,
            ai_accuracy_feedback=session.feedback,
            ai_raw_response=session.ai_raw_response,
        )

        session.transition(SessionState.SAVING)
        try:
            outcome = await self.persistence.save(draft)
        except PersistenceError:
            session.transition(SessionState.REVIEWING if session.identification else SessionState.IMAGE_CAPTURED)
            raise

        session.saved_entry = outcome.entry
        session.transition(
            SessionState.SAVED if outcome.status == SaveStatus.SAVED_REMOTE else SessionState.QUEUED_LOCAL
        )
        self.remove(session_id)
        return outcome

    def cancel(self, session_id: str) -> IdentificationSession:
        """Cancel a session; an in-flight identification stops at its next checkpoint."""
        session = self.get(session_id)
        session.transition(SessionState.CANCELLED)
        session.cancel_token.cancel()
        self.remove(session_id)
        return session
