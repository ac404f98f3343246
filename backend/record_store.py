"""
Durable local persistence for attendance records awaiting delivery.
"""
import logging
from contextlib import contextmanager
from typing import Iterable, Iterator, Optional

from sqlalchemy.exc import SQLAlchemyError

from errors import RecordNotFound, StorageError
from models import AttendanceType, QueuedRecord, SyncState
from schemas import AttendanceRecord

logger = logging.getLogger(__name__)

QUEUED_STATES = (SyncState.PENDING, SyncState.FAILED)


def _to_record(row: QueuedRecord) -> AttendanceRecord:
    return AttendanceRecord(
        id=row.id,
        user_id=row.user_id,
        user_name=row.user_name,
        type=AttendanceType(row.type),
        timestamp=row.timestamp,
        photo_path=row.photo_path,
        face_data=row.face_data,
        confidence=row.confidence,
        sync_state=SyncState(row.sync_state),
    )


def _state_values(states: Iterable[SyncState]):
    return [SyncState(s).value for s in states]


class RecordStore:
    """
    SQLite-backed queue of records in pending or failed state.

    Every write commits before returning. Delivered records are deleted,
    so the table only ever holds what still has to reach the remote store.
    """

    def __init__(self, session_factory):
        self.session_factory = session_factory

    @contextmanager
    def _session(self, action: str):
        db = self.session_factory()
        try:
            yield db
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Local store failed to %s: %s", action, e)
            raise StorageError(f"Failed to {action}: {e}") from e
        finally:
            db.close()

    def put(self, record: AttendanceRecord) -> AttendanceRecord:
        """Insert or overwrite a record by id."""
        with self._session(f"store record {record.id}") as db:
            row = db.get(QueuedRecord, record.id)
            if row is None:
                row = QueuedRecord(id=record.id)
                db.add(row)
            row.user_id = record.user_id
            row.user_name = record.user_name
            row.type = record.type.value
            row.timestamp = record.timestamp
            row.photo_path = record.photo_path
            row.face_data = record.face_data
            row.confidence = record.confidence
            row.sync_state = record.sync_state.value
            if record.sync_state != SyncState.FAILED:
                row.failure_reason = None
            db.commit()
        return record

    def get(self, record_id: str) -> AttendanceRecord:
        with self._session(f"read record {record_id}") as db:
            row = db.get(QueuedRecord, record_id)
            if row is None:
                raise RecordNotFound(record_id)
            return _to_record(row)

    def failure_reason(self, record_id: str) -> Optional[str]:
        with self._session(f"read record {record_id}") as db:
            row = db.get(QueuedRecord, record_id)
            if row is None:
                raise RecordNotFound(record_id)
            return row.failure_reason

    def list_pending(self, states: Iterable[SyncState] = QUEUED_STATES) -> Iterator[AttendanceRecord]:
        """
        Yield queued records oldest first.

        The ordering is fixed when the generator starts; records removed
        while it is being consumed are skipped. Call again to restart.
        """
        values = _state_values(states)
        with self._session("list pending records") as db:
            ids = [
                row_id for (row_id,) in db.query(QueuedRecord.id)
                .filter(QueuedRecord.sync_state.in_(values))
                .order_by(QueuedRecord.timestamp.asc(), QueuedRecord.id.asc())
                .all()
            ]

        for record_id in ids:
            try:
                record = self.get(record_id)
            except RecordNotFound:
                continue
            if record.sync_state.value in values:
                yield record

    def next_pending(self) -> Optional[AttendanceRecord]:
        """Oldest record still in pending state, if any."""
        return next(self.list_pending((SyncState.PENDING,)), None)

    def mark_delivered(self, record_id: str) -> None:
        """Remove a delivered record. Raises RecordNotFound when absent."""
        with self._session(f"mark record {record_id} delivered") as db:
            row = db.get(QueuedRecord, record_id)
            if row is None:
                raise RecordNotFound(record_id)
            db.delete(row)
            db.commit()

    def mark_failed(self, record_id: str, reason: str) -> None:
        with self._session(f"mark record {record_id} failed") as db:
            row = db.get(QueuedRecord, record_id)
            if row is None:
                raise RecordNotFound(record_id)
            row.sync_state = SyncState.FAILED.value
            row.failure_reason = reason
            db.commit()

    def requeue_failed(self) -> int:
        """Move every failed record back to pending."""
        with self._session("requeue failed records") as db:
            moved = db.query(QueuedRecord)\
                .filter(QueuedRecord.sync_state == SyncState.FAILED.value)\
                .update(
                    {QueuedRecord.sync_state: SyncState.PENDING.value,
                     QueuedRecord.failure_reason: None},
                    synchronize_session=False,
                )
            db.commit()
        if moved:
            logger.info("Re-queued %d failed record(s)", moved)
        return moved

    def count(self, states: Iterable[SyncState] = QUEUED_STATES) -> int:
        with self._session("count records") as db:
            return db.query(QueuedRecord)\
                .filter(QueuedRecord.sync_state.in_(_state_values(states)))\
                .count()

    def in_range(self, start, end) -> list:
        """Queued records captured in [start, end), oldest first."""
        with self._session("query records by date") as db:
            rows = db.query(QueuedRecord)\
                .filter(QueuedRecord.timestamp >= start, QueuedRecord.timestamp < end)\
                .order_by(QueuedRecord.timestamp.asc())\
                .all()
            return [_to_record(row) for row in rows]
