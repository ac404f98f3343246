"""
Firebase Realtime Database wrapper with failure classification.
Every SDK error is mapped onto the errors module taxonomy so the
coordinator can decide between retrying and surfacing.
"""
import logging
from datetime import datetime
from typing import List

import firebase_admin
from firebase_admin import credentials, db, exceptions
from pydantic import ValidationError

from errors import PermissionDenied, Rejected, RemoteError, Transient, Unreachable
from schemas import AttendanceRecord

logger = logging.getLogger(__name__)

UNREACHABLE_ERRORS = (
    exceptions.UnavailableError,
    exceptions.DeadlineExceededError,
    exceptions.CancelledError,
)
PERMISSION_ERRORS = (
    exceptions.PermissionDeniedError,
    exceptions.UnauthenticatedError,
)
REJECTED_ERRORS = (
    exceptions.InvalidArgumentError,
    exceptions.FailedPreconditionError,
    exceptions.AlreadyExistsError,
    exceptions.NotFoundError,
    exceptions.OutOfRangeError,
)


def classify(error: Exception) -> RemoteError:
    """Map an SDK exception onto the remote error taxonomy."""
    if isinstance(error, RemoteError):
        return error
    message = str(error) or error.__class__.__name__
    if isinstance(error, UNREACHABLE_ERRORS):
        return Unreachable(message)
    if isinstance(error, PERMISSION_ERRORS):
        return PermissionDenied(message)
    if isinstance(error, REJECTED_ERRORS):
        return Rejected(message)
    if isinstance(error, exceptions.FirebaseError):
        return Transient(message)
    if isinstance(error, OSError):
        return Unreachable(message)
    if isinstance(error, (ValueError, TypeError)):
        # SDK-side validation of keys and values
        return Rejected(message)
    return Transient(message)


class RemoteSyncClient:
    """
    Single-record upload and fetch against one collection node.

    Args:
        reference: firebase_admin.db.Reference for the collection root
    """

    def __init__(self, reference):
        self.reference = reference

    @classmethod
    def connect(cls, credentials_path: str, database_url: str, collection: str = "attendance"):
        """Build a client from a service-account file, reusing the default app."""
        try:
            app = firebase_admin.get_app()
        except ValueError:
            cred = credentials.Certificate(credentials_path)
            app = firebase_admin.initialize_app(cred, {"databaseURL": database_url})
            logger.info("Firebase app initialized for %s", database_url)
        return cls(db.reference(collection, app=app))

    def upload(self, record: AttendanceRecord) -> None:
        """Write a record under its id. Raises a RemoteError subclass on failure."""
        try:
            self.reference.child(record.id).set(record.to_remote())
        except Exception as e:
            error = classify(e)
            logger.warning("Upload of %s failed (%s): %s", record.id, type(error).__name__, error)
            raise error from (None if error is e else e)
        logger.debug("Uploaded record %s", record.id)

    def fetch(self, start: datetime, end: datetime) -> List[AttendanceRecord]:
        """Records with timestamp in [start, end), oldest first. Read-only."""
        try:
            result = self.reference.order_by_child("timestamp")\
                .start_at(start.isoformat())\
                .end_at(end.isoformat())\
                .get()
        except Exception as e:
            error = classify(e)
            logger.warning("History fetch failed (%s): %s", type(error).__name__, error)
            raise error from (None if error is e else e)

        records = []
        for key, data in (result or {}).items():
            if not isinstance(data, dict):
                continue
            try:
                record = AttendanceRecord.from_remote({"id": key, **data})
            except ValidationError as e:
                logger.warning("Skipping malformed remote record %s: %s", key, e)
                continue
            if start <= record.timestamp < end:
                records.append(record)
        records.sort(key=lambda r: (r.timestamp, r.id))
        return records

    def test_connection(self) -> bool:
        """Shallow read of the collection root."""
        try:
            self.reference.get(shallow=True)
        except Exception as e:
            error = classify(e)
            logger.info("Connection test failed (%s): %s", type(error).__name__, error)
            raise error from (None if error is e else e)
        return True


class OfflineClient:
    """Stand-in used when Firebase cannot be configured. Always unreachable."""

    def __init__(self, reason: str = "Remote store not configured"):
        self.reason = reason

    def upload(self, record: AttendanceRecord) -> None:
        raise Unreachable(self.reason)

    def fetch(self, start: datetime, end: datetime) -> List[AttendanceRecord]:
        raise Unreachable(self.reason)

    def test_connection(self) -> bool:
        raise Unreachable(self.reason)
