"""
Enums for type-safe string constants in the Humidor service.
"""

from enum import Enum


class SessionState(str, Enum):
    """Lifecycle of one add-a-cigar interaction."""
    IDLE = "idle"
    IMAGE_CAPTURED = "image_captured"
    IDENTIFYING = "identifying"
    REVIEWING = "reviewing"
    SAVING = "saving"
    SAVED = "saved"
    QUEUED_LOCAL = "queued_local"
    CANCELLED = "cancelled"


class SaveStatus(str, Enum):
    """Where a saved log entry ended up."""
    SAVED_REMOTE = "saved_remote"
    QUEUED_LOCAL = "queued_local"


class AccuracyFeedback(str, Enum):
    """User thumbs up/down on the AI identification."""
    UP = "up"
    DOWN = "down"


class RunStatus(str, Enum):
    """Assistant run statuses we act on."""
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    CANCELLING = "cancelling"
    EXPIRED = "expired"
    INCOMPLETE = "incomplete"
    REQUIRES_ACTION = "requires_action"


# No tools are attached to the assistant, so requires_action can never progress
TERMINAL_FAILURE_STATUSES = {
    RunStatus.FAILED.value,
    RunStatus.CANCELLED.value,
    RunStatus.EXPIRED.value,
    RunStatus.INCOMPLETE.value,
    RunStatus.REQUIRES_ACTION.value,
}
