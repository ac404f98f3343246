"""
Sync coordinator: owns the connection state machine and drains the
local queue into the remote store.

    disconnected --reconnect--> connecting --ok--> connected --drain--> draining
         ^                          |                  ^                   |
         +----------fail------------+                  +----queue empty----+
         +----------------------unreachable-----------------------------+
"""
import logging
import threading
import time
from datetime import datetime
from typing import Callable, Optional

import history as history_view
from errors import (
    PermissionDenied,
    RecordNotFound,
    Rejected,
    RemoteError,
    StorageError,
    Transient,
    Unreachable,
)
from models import SyncState
from schemas import (
    AttendanceRecord,
    HistoryResponse,
    ReconnectResult,
    SyncStatusSnapshot,
    utcnow,
)
from status import CoordinatorState, build_snapshot

logger = logging.getLogger(__name__)


class Backoff:
    """Exponential delay with a cap, e.g. 2s, 4s, 8s ... 60s."""

    def __init__(self, base: float = 2.0, cap: float = 60.0, factor: float = 2.0):
        if base <= 0 or cap < base or factor < 1:
            raise ValueError("Invalid backoff parameters")
        self.base = base
        self.cap = cap
        self.factor = factor
        self._next = base

    @property
    def current(self) -> float:
        return self._next

    def next_delay(self) -> float:
        delay = self._next
        self._next = min(self._next * self.factor, self.cap)
        return delay

    def reset(self):
        self._next = self.base


def _start_thread(fn: Callable[[], None]):
    thread = threading.Thread(target=fn, name="attendance-sync", daemon=True)
    thread.start()
    return thread


def _start_timer(delay: float, fn: Callable[[], None]):
    timer = threading.Timer(delay, fn)
    timer.daemon = True
    timer.start()
    return timer


class SyncCoordinator:
    """
    Single owner of sync state for the process.

    Args:
        store: RecordStore holding pending and failed records
        client: RemoteSyncClient for the remote database
        backoff: retry delay policy
        runner: runs a callable in the background (thread by default)
        scheduler: runs a callable after a delay, returns a handle with cancel()
        connected: start in the connected state
    """

    def __init__(
        self,
        store,
        client,
        backoff: Optional[Backoff] = None,
        runner: Callable = _start_thread,
        scheduler: Callable = _start_timer,
        connected: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.client = client
        self.backoff = backoff or Backoff()
        self._runner = runner
        self._scheduler = scheduler
        self._clock = clock

        self._lock = threading.RLock()
        self._state = CoordinatorState.CONNECTED if connected else CoordinatorState.DISCONNECTED
        self._permission_error = False
        self._last_error: Optional[str] = None
        self._last_sync_at: Optional[datetime] = None
        self._timer = None
        self._retry_at: Optional[float] = None
        self._closed = False

    @property
    def state(self) -> CoordinatorState:
        with self._lock:
            return self._state

    # Commands

    def start(self):
        """Test the remote connection in the background, or drain if already connected."""
        if self.state == CoordinatorState.CONNECTED:
            self.trigger_drain()
        else:
            self._runner(self._auto_reconnect)

    def submit(self, record: AttendanceRecord) -> AttendanceRecord:
        """
        Queue a record locally. Never waits on the network.

        Raises StorageError when the local write fails; nothing is queued then.
        """
        record = record.with_state(SyncState.PENDING)
        with self._lock:
            self.store.put(record)
            # A scheduled retry owns the next drain
            online = self._state == CoordinatorState.CONNECTED and self._retry_at is None
        logger.info("Queued %s record %s for %s", record.type.value, record.id, record.user_id)

        if online:
            self.trigger_drain()
        return record

    def request_reconnect(self) -> ReconnectResult:
        """Manual retry from the UI. Also resurfaces failed records."""
        return self._reconnect(manual=True)

    def trigger_drain(self) -> bool:
        """Start a drain pass unless one is running or the store is offline."""
        with self._lock:
            if self._closed or self._state != CoordinatorState.CONNECTED:
                return False
            self._state = CoordinatorState.DRAINING
        self._runner(self._run_drain)
        return True

    def shutdown(self):
        with self._lock:
            self._closed = True
            self._cancel_timer()
        logger.info("Sync coordinator stopped")

    # Queries

    def status(self) -> SyncStatusSnapshot:
        with self._lock:
            return self._snapshot()

    def pending_records(self):
        with self._lock:
            return list(self.store.list_pending())

    def history(self, start: datetime, end: datetime, type_filter: str = "all") -> HistoryResponse:
        """Remote history merged with records still queued locally."""
        offline = False
        try:
            remote = self.client.fetch(start, end)
        except (Unreachable, Transient) as e:
            logger.warning("History unavailable from remote store, showing local records: %s", e)
            remote = []
            offline = True

        with self._lock:
            local = self.store.in_range(start, end)

        return history_view.build_history(remote, local, type_filter, offline=offline)

    # Internals

    def _snapshot(self) -> SyncStatusSnapshot:
        next_retry_in = None
        if self._retry_at is not None:
            next_retry_in = self._retry_at - self._clock()
        return build_snapshot(
            self._state,
            self.store,
            permission_error=self._permission_error,
            last_error=self._last_error,
            last_sync_at=self._last_sync_at,
            next_retry_in=next_retry_in,
        )

    def _auto_reconnect(self):
        try:
            self._reconnect(manual=False)
        except Exception:
            logger.exception("Background reconnection crashed")

    def _reconnect(self, manual: bool) -> ReconnectResult:
        with self._lock:
            if self._state in (CoordinatorState.DRAINING, CoordinatorState.CONNECTING):
                return ReconnectResult(
                    success=self._state == CoordinatorState.DRAINING,
                    message="Sync already in progress",
                    status=self._snapshot(),
                )
            if self._closed or (self._state == CoordinatorState.CONNECTED and not manual):
                return ReconnectResult(success=not self._closed, message="No reconnection needed",
                                       status=self._snapshot())
            self._state = CoordinatorState.CONNECTING
            self._cancel_timer()

        logger.info("Testing connection to remote store (%s)", "manual" if manual else "automatic")
        try:
            self.client.test_connection()
        except RemoteError as e:
            with self._lock:
                self._state = CoordinatorState.DISCONNECTED
                self._last_error = str(e)
                if isinstance(e, PermissionDenied):
                    self._permission_error = True
            logger.warning("Remote store unavailable (%s): %s", type(e).__name__, e)
            if e.retryable:
                self._schedule_retry(self._auto_reconnect)
            return ReconnectResult(success=False, message=f"Reconnection failed: {e}", status=self.status())

        with self._lock:
            self._state = CoordinatorState.CONNECTED
            self._permission_error = False
            self._last_error = None
            if manual:
                self.store.requeue_failed()
        logger.info("Connected to remote store")

        self.trigger_drain()
        return ReconnectResult(success=True, message="Connection restored", status=self.status())

    def _run_drain(self):
        try:
            self._drain()
        except StorageError:
            logger.exception("Local store failed during drain")
            with self._lock:
                if self._state == CoordinatorState.DRAINING:
                    self._state = CoordinatorState.CONNECTED
            self._schedule_retry(self.trigger_drain)
        except Exception:
            logger.exception("Drain pass crashed")
        finally:
            with self._lock:
                if self._state == CoordinatorState.DRAINING:
                    self._state = CoordinatorState.CONNECTED

    def _drain(self):
        delivered = 0
        while True:
            with self._lock:
                if self._closed:
                    return
                record = self.store.next_pending()
                if record is None:
                    self._state = CoordinatorState.CONNECTED
                    self.backoff.reset()
                    self._cancel_timer()
                    if delivered:
                        logger.info("Drain complete: %d record(s) delivered", delivered)
                    return

            try:
                self.client.upload(record)
            except Transient as e:
                with self._lock:
                    self._state = CoordinatorState.CONNECTED
                    self._last_error = str(e)
                self._schedule_retry(self.trigger_drain)
                return
            except Unreachable as e:
                with self._lock:
                    self._state = CoordinatorState.DISCONNECTED
                    self._last_error = str(e)
                logger.warning("Lost connection while draining at record %s", record.id)
                self._schedule_retry(self._auto_reconnect)
                return
            except (PermissionDenied, Rejected) as e:
                with self._lock:
                    self._last_error = str(e)
                    if isinstance(e, PermissionDenied):
                        self._permission_error = True
                    self._settle(record, failed_reason=f"{type(e).__name__}: {e}")
                logger.error("Record %s needs attention: %s", record.id, e)
                continue

            with self._lock:
                self._settle(record)
                self._last_sync_at = utcnow()
            delivered += 1

    def _settle(self, record: AttendanceRecord, failed_reason: Optional[str] = None):
        try:
            if failed_reason is None:
                self.store.mark_delivered(record.id)
            else:
                self.store.mark_failed(record.id, failed_reason)
        except RecordNotFound as e:
            logger.error("Consistency error while settling record: %s", e)

    def _schedule_retry(self, fn: Callable[[], None]):
        with self._lock:
            if self._closed:
                return
            self._cancel_timer()
            delay = self.backoff.next_delay()
            self._retry_at = self._clock() + delay
            self._timer = self._scheduler(delay, lambda: self._fire(fn))
        logger.info("Next sync attempt in %.1fs", delay)

    def _fire(self, fn: Callable[[], None]):
        with self._lock:
            self._timer = None
            self._retry_at = None
            if self._closed:
                return
        fn()

    def _cancel_timer(self):
        if self._timer is not None:
            self._timer.cancel()
        self._timer = None
        self._retry_at = None
