import itertools
import time
from datetime import datetime, timedelta

import pytest

from database import make_session_factory
from models import AttendanceType
from record_store import RecordStore
from schemas import AttendanceRecord
from sync_coordinator import Backoff, SyncCoordinator


class FakeRemote:
    """In-memory remote store. Failures are queued per record id."""

    def __init__(self):
        self.uploaded = []
        self.attempts = []
        self.failures = {}
        self.connection_error = None
        self.connection_tests = 0
        self.remote_records = []
        self.fetch_error = None
        self.on_upload = None

    @property
    def calls(self):
        return len(self.attempts) + self.connection_tests

    def upload(self, record):
        self.attempts.append(record.id)
        if self.on_upload:
            self.on_upload(record)
        error = self.failures.pop(record.id, None)
        if error is not None:
            raise error
        self.uploaded.append(record.id)

    def fetch(self, start, end):
        if self.fetch_error is not None:
            raise self.fetch_error
        return [r for r in self.remote_records if start <= r.timestamp < end]

    def test_connection(self):
        self.connection_tests += 1
        if self.connection_error is not None:
            raise self.connection_error
        return True


class FakeTimer:
    def __init__(self, delay, fn):
        self.delay = delay
        self.fn = fn
        self.cancelled = False

    def cancel(self):
        self.cancelled = True

    def fire(self):
        self.fn()


class RecordingScheduler:
    def __init__(self):
        self.timers = []

    def __call__(self, delay, fn):
        timer = FakeTimer(delay, fn)
        self.timers.append(timer)
        return timer

    @property
    def active(self):
        return [t for t in self.timers if not t.cancelled]


class DeferredRunner:
    """Collects background work instead of running it."""

    def __init__(self):
        self.jobs = []

    def __call__(self, fn):
        self.jobs.append(fn)

    def run_all(self):
        jobs, self.jobs = self.jobs, []
        for job in jobs:
            job()


def run_now(fn):
    fn()


@pytest.fixture
def session_factory(tmp_path):
    return make_session_factory(f"sqlite:///{tmp_path / 'queue.db'}")


@pytest.fixture
def store(session_factory):
    return RecordStore(session_factory)


@pytest.fixture
def remote():
    return FakeRemote()


@pytest.fixture
def scheduler():
    return RecordingScheduler()


@pytest.fixture
def coordinator(store, remote, scheduler):
    return SyncCoordinator(store, remote, backoff=Backoff(2, 60), runner=run_now, scheduler=scheduler)


@pytest.fixture
def make_record():
    base = datetime(2026, 10, 19, 8, 0, 0)
    counter = itertools.count(1)

    def _make(**overrides):
        n = next(counter)
        data = dict(
            id=f"rec-{n:03d}",
            user_id=f"user_{n}",
            user_name=f"Employee {n}",
            type=AttendanceType.CHECK_IN,
            timestamp=base + timedelta(minutes=n),
            photo_path=f"/photos/{n}.jpg",
            face_data={"headEulerAngleY": 9.0, "smilingProbability": 0.4},
        )
        data.update(overrides)
        return AttendanceRecord(**data)

    return _make


@pytest.fixture
def local_tz(monkeypatch):
    """Switch the process timezone for the duration of a test."""
    if not hasattr(time, "tzset"):
        pytest.skip("time.tzset is not available on this platform")

    def _set(name):
        monkeypatch.setenv("TZ", name)
        time.tzset()

    yield _set
    monkeypatch.undo()
    time.tzset()
