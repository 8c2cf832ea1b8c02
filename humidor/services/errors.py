"""
Error taxonomy for the identification and persistence pipeline.

Only ExtractionError aborts a user-visible flow. The other kinds degrade
to a safe default (fallback record, local queue, silent retry) and exist so
that the degradation is explicit and loggable.
"""


class HumidorError(Exception):
    """Base class for all Humidor service errors."""


class ExtractionError(HumidorError):
    """Vision call or its response failed; the identification attempt is over."""


class ResolutionDegraded(HumidorError):
    """Assistant run failed, timed out or returned an unparseable answer."""


class IdentificationCancelled(HumidorError):
    """The session owning this identification was cancelled."""


class RemoteStoreError(HumidorError):
    """Remote document store call failed (network, auth, quota)."""


class RemoteWriteError(RemoteStoreError):
    """A write to the remote document store failed."""


class RemoteNotFoundError(RemoteWriteError):
    """The document to update does not exist remotely."""


class RemoteReadError(RemoteStoreError):
    """A read from the remote document store failed."""


class BlobUploadError(HumidorError):
    """Image upload to remote blob storage failed."""


class SyncRetryableError(HumidorError):
    """A queued entry could not be written during a sync pass; it stays queued."""


class QueueCorruptedError(HumidorError):
    """The local pending-sync queue holds data that cannot be decoded."""


class PersistenceError(HumidorError):
    """Neither the remote store nor the local queue accepted the entry."""


class SessionError(HumidorError):
    """Base class for identification session errors."""


class SessionNotFound(SessionError):
    """No session with the requested id."""


class SessionBusyError(SessionError):
    """An identification is already in flight for this session."""


class InvalidTransition(SessionError):
    """The requested operation is not allowed in the session's current state."""
