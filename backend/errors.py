"""
Error taxonomy for the local queue and the remote store.
"""


class SyncError(Exception):
    """Base class for every error raised by the sync queue."""


class StorageError(SyncError):
    """Local persistence failed (disk full, locked database, ...)."""


class RecordNotFound(SyncError):
    """A record lookup missed. Signals a consistency bug."""

    def __init__(self, record_id: str):
        super().__init__(f"Record {record_id} not found")
        self.record_id = record_id


class RemoteError(SyncError):
    """Base class for classified remote store failures."""

    retryable = False


class Unreachable(RemoteError):
    """Network or connectivity failure."""

    retryable = True


class Transient(RemoteError):
    """Server-side error that is safe to retry."""

    retryable = True


class PermissionDenied(RemoteError):
    """Auth or security rules rejected the request."""


class Rejected(RemoteError):
    """The remote store refused the payload."""
