import logging
from datetime import date
from typing import Optional
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Depends, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response

import history as history_view
from config import (
    FIREBASE_COLLECTION,
    FIREBASE_CREDENTIALS,
    FIREBASE_DATABASE_URL,
    SYNC_BACKOFF_BASE,
    SYNC_BACKOFF_CAP,
)
from database import SessionLocal, init_db
from errors import RemoteError, StorageError
from logger_helper import create_logging_middleware, setup_logger, setup_sync_logging
from record_store import RecordStore
from remote_client import OfflineClient, RemoteSyncClient
from schemas import SubmitRequest
from sync_coordinator import Backoff, SyncCoordinator

logger = logging.getLogger(__name__)

# Global coordinator instance
coordinator: Optional[SyncCoordinator] = None


def build_remote_client():
    """Firebase client, or an always-offline stand-in when it cannot be configured."""
    if not FIREBASE_DATABASE_URL:
        print("⚠ FIREBASE_DATABASE_URL not set, running in offline mode")
        return OfflineClient("FIREBASE_DATABASE_URL is not set")
    try:
        client = RemoteSyncClient.connect(FIREBASE_CREDENTIALS, FIREBASE_DATABASE_URL, FIREBASE_COLLECTION)
        print("✓ Firebase client configured")
        return client
    except (OSError, ValueError) as e:
        print(f"⚠ Firebase initialization failed: {e}")
        print("Falling back to offline mode...")
        return OfflineClient(str(e))


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize resources on startup."""
    global coordinator

    setup_logger()
    setup_sync_logging()

    # Initialize local queue
    init_db()
    print("✓ Local queue initialized")

    coordinator = SyncCoordinator(
        RecordStore(SessionLocal),
        build_remote_client(),
        backoff=Backoff(SYNC_BACKOFF_BASE, SYNC_BACKOFF_CAP),
    )
    coordinator.start()

    yield

    # Cleanup
    coordinator.shutdown()
    print("Shutting down...")

app = FastAPI(
    title="Face Attendance Sync",
    description="Local-first attendance queue with Firebase synchronization",
    version="1.0.0",
    lifespan=lifespan
)

# CORS for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Demo only - restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

create_logging_middleware(app, logging.getLogger("performance_logger"))


def get_coordinator() -> SyncCoordinator:
    if coordinator is None:
        raise HTTPException(status_code=503, detail="Sync coordinator not initialized")
    return coordinator


def _parse_filter(type_filter: str) -> str:
    if type_filter not in history_view.TYPE_FILTERS:
        raise HTTPException(status_code=400, detail=f"Invalid type filter: {type_filter}")
    return type_filter


@app.get("/health")
async def health_check(sync: SyncCoordinator = Depends(get_coordinator)):
    """Health check endpoint with sync info."""
    status = sync.status()
    return {
        "status": "running",
        "sync_state": status.state,
        "online": status.initialized,
        "local_records": status.local_records_count,
    }

# Attendance Endpoints

@app.post("/attendance/", status_code=201)
def submit_attendance(request: SubmitRequest, sync: SyncCoordinator = Depends(get_coordinator)):
    """Queue a captured check-in or check-out."""
    try:
        record = sync.submit(request.to_record())
        return {
            "message": f"{record.type.value.replace('_', ' ').title()} recorded",
            "record": record,
            "status": sync.status(),
        }
    except StorageError as e:
        raise HTTPException(status_code=500, detail=f"Failed to save record: {str(e)}")

@app.get("/attendance/pending")
def list_pending(sync: SyncCoordinator = Depends(get_coordinator)):
    """Records stored locally and not yet delivered."""
    try:
        records = sync.pending_records()
        return {"records": records, "count": len(records)}
    except StorageError as e:
        raise HTTPException(status_code=500, detail=str(e))

@app.get("/attendance/history")
def attendance_history(
    day: Optional[date] = Query(None, alias="date"),
    type_filter: str = Query("all", alias="type"),
    sync: SyncCoordinator = Depends(get_coordinator),
):
    """Attendance for one day, merged from the remote store and the local queue."""
    type_filter = _parse_filter(type_filter)
    start, end = history_view.day_range(day or history_view.today())
    try:
        return sync.history(start, end, type_filter)
    except StorageError as e:
        raise HTTPException(status_code=500, detail=str(e))
    except RemoteError as e:
        raise HTTPException(status_code=502, detail=f"Remote history unavailable: {str(e)}")

@app.get("/attendance/export")
def export_attendance(
    day: Optional[date] = Query(None, alias="date"),
    type_filter: str = Query("all", alias="type"),
    sync: SyncCoordinator = Depends(get_coordinator),
):
    """Download the day's attendance as CSV."""
    type_filter = _parse_filter(type_filter)
    day = day or history_view.today()
    start, end = history_view.day_range(day)
    try:
        result = sync.history(start, end, type_filter)
    except StorageError as e:
        raise HTTPException(status_code=500, detail=str(e))
    except RemoteError as e:
        raise HTTPException(status_code=502, detail=f"Remote history unavailable: {str(e)}")

    return Response(
        content=history_view.export_csv(result.records),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="attendance_{day.isoformat()}.csv"'}
    )

# Sync Endpoints

@app.get("/sync/status")
def sync_status(sync: SyncCoordinator = Depends(get_coordinator)):
    """Current sync status snapshot."""
    try:
        return sync.status()
    except StorageError as e:
        raise HTTPException(status_code=500, detail=str(e))

@app.post("/sync/reconnect")
def reconnect(sync: SyncCoordinator = Depends(get_coordinator)):
    """Retry the connection and re-queue records that failed."""
    try:
        return sync.request_reconnect()
    except StorageError as e:
        raise HTTPException(status_code=500, detail=f"Reconnection error: {str(e)}")

@app.post("/sync/drain")
def drain(sync: SyncCoordinator = Depends(get_coordinator)):
    """Start delivering queued records if connected."""
    started = sync.trigger_drain()
    return {"started": started, "status": sync.status()}

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
