from datetime import datetime, timedelta

import pytest
from firebase_admin import exceptions

from errors import PermissionDenied, Rejected, Transient, Unreachable
from models import SyncState
from remote_client import OfflineClient, RemoteSyncClient, classify


class FakeChild:
    def __init__(self, parent, key):
        self.parent = parent
        self.key = key

    def set(self, value):
        if self.parent.error:
            raise self.parent.error
        self.parent.data[self.key] = value


class FakeReference:
    """Mimics the parts of firebase_admin.db.Reference the client uses."""

    def __init__(self, data=None, error=None):
        self.data = dict(data or {})
        self.error = error
        self.query = []

    def child(self, key):
        return FakeChild(self, key)

    def get(self, shallow=False):
        if self.error:
            raise self.error
        if shallow:
            return {key: True for key in self.data}
        return dict(self.data)

    def order_by_child(self, path):
        self.query.append(("order_by_child", path))
        return self

    def start_at(self, value):
        self.query.append(("start_at", value))
        return self

    def end_at(self, value):
        self.query.append(("end_at", value))
        return self


@pytest.mark.parametrize("error, expected", [
    (exceptions.UnavailableError("network down"), Unreachable),
    (exceptions.DeadlineExceededError("timed out"), Unreachable),
    (exceptions.PermissionDeniedError("Permission denied"), PermissionDenied),
    (exceptions.UnauthenticatedError("bad token"), PermissionDenied),
    (exceptions.InvalidArgumentError("invalid data"), Rejected),
    (exceptions.InternalError("server error"), Transient),
    (exceptions.UnknownError("???"), Transient),
    (ConnectionResetError("reset"), Unreachable),
    (ValueError("Invalid key"), Rejected),
])
def test_classify(error, expected):
    assert isinstance(classify(error), expected)


def test_retryable_flags():
    assert Unreachable("x").retryable
    assert Transient("x").retryable
    assert not PermissionDenied("x").retryable
    assert not Rejected("x").retryable


def test_upload_writes_document_under_id(make_record):
    reference = FakeReference()
    client = RemoteSyncClient(reference)
    record = make_record()

    client.upload(record)

    document = reference.data[record.id]
    assert document["user_id"] == record.user_id
    assert document["type"] == "check_in"
    assert document["timestamp"] == record.timestamp.isoformat()
    assert "sync_state" not in document


def test_upload_classifies_failures(make_record):
    client = RemoteSyncClient(FakeReference(error=exceptions.PermissionDeniedError("Permission denied")))

    with pytest.raises(PermissionDenied):
        client.upload(make_record())


def test_fetch_returns_records_in_range_oldest_first(make_record):
    day = datetime(2026, 10, 19)
    late = make_record(timestamp=day + timedelta(hours=17))
    early = make_record(timestamp=day + timedelta(hours=8))
    tomorrow = make_record(timestamp=day + timedelta(days=1))
    reference = FakeReference({r.id: r.to_remote() for r in (late, early, tomorrow)})
    reference.data["broken"] = {"user_id": "only"}
    client = RemoteSyncClient(reference)

    records = client.fetch(day, day + timedelta(days=1))

    assert [r.id for r in records] == [early.id, late.id]
    assert all(r.sync_state == SyncState.DELIVERED for r in records)
    assert reference.query[0] == ("order_by_child", "timestamp")


def test_fetch_handles_empty_result():
    client = RemoteSyncClient(FakeReference())
    assert client.fetch(datetime(2026, 1, 1), datetime(2026, 1, 2)) == []


def test_test_connection():
    assert RemoteSyncClient(FakeReference()).test_connection() is True

    client = RemoteSyncClient(FakeReference(error=exceptions.UnavailableError("offline")))
    with pytest.raises(Unreachable):
        client.test_connection()


def test_offline_client_is_always_unreachable(make_record):
    client = OfflineClient("not configured")

    with pytest.raises(Unreachable, match="not configured"):
        client.test_connection()
    with pytest.raises(Unreachable):
        client.upload(make_record())
