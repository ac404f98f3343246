"""
Status reporting for the sync queue.
"""
from datetime import datetime
from enum import Enum
from typing import Optional

from models import SyncState
from schemas import SyncStatusSnapshot


class CoordinatorState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DRAINING = "draining"


ONLINE_STATES = (CoordinatorState.CONNECTED, CoordinatorState.DRAINING)


def build_snapshot(
    state: CoordinatorState,
    store,
    permission_error: bool = False,
    last_error: Optional[str] = None,
    last_sync_at: Optional[datetime] = None,
    next_retry_in: Optional[float] = None,
) -> SyncStatusSnapshot:
    """
    Aggregate coordinator state and store counts into a snapshot.

    The reachability flags are derived from the state so they can never
    contradict each other. The caller holds the coordinator lock, which
    makes the counts and the state a single point-in-time view.
    """
    pending = store.count((SyncState.PENDING,))
    failed = store.count((SyncState.FAILED,))
    online = state in ONLINE_STATES
    return SyncStatusSnapshot(
        state=state.value,
        initialized=online,
        offline_mode=not online,
        has_permission_error=permission_error,
        local_records_count=pending + failed,
        failed_records_count=failed,
        last_error=last_error,
        last_sync_at=last_sync_at,
        next_retry_in=None if next_retry_in is None else round(max(next_retry_in, 0.0), 3),
    )
