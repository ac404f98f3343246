from datetime import datetime, timedelta

import pytest
from sqlalchemy.exc import OperationalError

from errors import RecordNotFound, StorageError
from models import QueuedRecord, SyncState
from record_store import RecordStore


def test_put_then_get(store, make_record):
    record = make_record()
    store.put(record)

    loaded = store.get(record.id)
    assert loaded == record
    assert loaded.face_data["headEulerAngleY"] == 9.0


def test_put_overwrites_by_id(store, make_record):
    record = make_record()
    store.put(record)
    store.put(record.model_copy(update={"user_name": "Renamed"}))

    assert store.get(record.id).user_name == "Renamed"
    assert store.count() == 1


def test_table_holds_record_fields_only():
    assert set(QueuedRecord.__table__.columns.keys()) == {
        "id", "user_id", "user_name", "type", "timestamp", "photo_path",
        "face_data", "confidence", "sync_state", "failure_reason",
    }


def test_get_missing_raises(store):
    with pytest.raises(RecordNotFound):
        store.get("nope")


def test_list_pending_is_oldest_first(store, make_record):
    base = datetime(2026, 10, 19, 9, 0, 0)
    late = make_record(timestamp=base + timedelta(minutes=10))
    early = make_record(timestamp=base)
    middle = make_record(timestamp=base + timedelta(minutes=5))
    for record in (late, early, middle):
        store.put(record)

    assert [r.id for r in store.list_pending()] == [early.id, middle.id, late.id]


def test_list_pending_is_restartable(store, make_record):
    for _ in range(3):
        store.put(make_record())

    first = [r.id for r in store.list_pending()]
    second = [r.id for r in store.list_pending()]
    assert first == second
    assert len(first) == 3


def test_list_pending_skips_records_removed_while_iterating(store, make_record):
    a, b, c = make_record(), make_record(), make_record()
    for record in (a, b, c):
        store.put(record)

    pending = store.list_pending()
    assert next(pending).id == a.id
    store.mark_delivered(b.id)
    assert [r.id for r in pending] == [c.id]


def test_list_pending_includes_failed_by_default(store, make_record):
    a, b = make_record(), make_record()
    store.put(a)
    store.put(b)
    store.mark_failed(a.id, "PermissionDenied: rules")

    assert [r.id for r in store.list_pending()] == [a.id, b.id]
    assert [r.id for r in store.list_pending((SyncState.PENDING,))] == [b.id]
    assert store.next_pending().id == b.id


def test_mark_delivered_removes_record(store, make_record):
    record = make_record()
    store.put(record)
    store.mark_delivered(record.id)

    assert store.count() == 0
    with pytest.raises(RecordNotFound):
        store.get(record.id)


def test_mark_delivered_missing_raises(store):
    with pytest.raises(RecordNotFound):
        store.mark_delivered("nope")


def test_mark_failed_and_requeue(store, make_record):
    a, b = make_record(), make_record()
    store.put(a)
    store.put(b)
    store.mark_failed(a.id, "Rejected: bad payload")

    assert store.get(a.id).sync_state == SyncState.FAILED
    assert store.failure_reason(a.id) == "Rejected: bad payload"
    assert store.count((SyncState.FAILED,)) == 1
    assert store.count() == 2

    assert store.requeue_failed() == 1
    assert store.get(a.id).sync_state == SyncState.PENDING
    assert store.failure_reason(a.id) is None
    assert store.requeue_failed() == 0


def test_in_range_filters_by_timestamp(store, make_record):
    base = datetime(2026, 10, 19)
    inside = make_record(timestamp=base + timedelta(hours=9))
    outside = make_record(timestamp=base + timedelta(days=1, hours=1))
    store.put(inside)
    store.put(outside)

    records = store.in_range(base, base + timedelta(days=1))
    assert [r.id for r in records] == [inside.id]


class BrokenSession:
    def get(self, *args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("database or disk is full"))

    def rollback(self):
        pass

    def close(self):
        pass


def test_write_failure_raises_storage_error(make_record):
    store = RecordStore(BrokenSession)

    with pytest.raises(StorageError, match="disk is full"):
        store.put(make_record())
