"""
Pydantic models shared by the queue, the remote client and the API.
"""
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from models import AttendanceType, SyncState

DEFAULT_CONFIDENCE = 0.8


def utcnow() -> datetime:
    """Naive UTC now, matching what SQLite hands back."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_record_id() -> str:
    """Millisecond timestamp plus a random suffix."""
    millis = int(datetime.now(timezone.utc).timestamp() * 1000)
    return f"{millis}-{uuid.uuid4().hex[:8]}"


def confidence_from_face(face_data: Dict[str, Any]) -> float:
    """
    Derive a confidence score from head yaw.

    A frontal face (yaw 0) scores 1.0, a profile (yaw 90) scores 0.0.
    Falls back to DEFAULT_CONFIDENCE when the detector gave no yaw.
    """
    yaw = face_data.get("headEulerAngleY") if face_data else None
    if yaw is None:
        return DEFAULT_CONFIDENCE
    score = 1.0 - abs(float(yaw)) / 90.0
    return max(0.0, min(1.0, score))


def _require_face_data(value: Dict[str, Any]) -> Dict[str, Any]:
    if not value:
        raise ValueError("face_data must not be empty")
    return value


class AttendanceRecord(BaseModel):
    """A single check-in or check-out. Immutable once created."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_record_id)
    user_id: str
    user_name: str
    type: AttendanceType
    timestamp: datetime = Field(default_factory=utcnow)
    photo_path: Optional[str] = None
    face_data: Dict[str, Any]
    confidence: float = Field(..., ge=0.0, le=1.0)
    sync_state: SyncState = SyncState.PENDING

    @model_validator(mode="before")
    @classmethod
    def _derive_confidence(cls, data: Any) -> Any:
        # Computed once from detection geometry, a supplied value wins
        if isinstance(data, dict) and data.get("confidence") is None:
            data = dict(data)
            data["confidence"] = confidence_from_face(data.get("face_data") or {})
        return data

    check_face_data = field_validator("face_data")(_require_face_data)

    @field_validator("timestamp")
    @classmethod
    def _naive_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    def with_state(self, state: SyncState) -> "AttendanceRecord":
        return self.model_copy(update={"sync_state": state})

    def to_remote(self) -> Dict[str, Any]:
        """Document stored in the remote database."""
        return self.model_dump(mode="json", exclude={"sync_state"})

    @classmethod
    def from_remote(cls, data: Dict[str, Any]) -> "AttendanceRecord":
        return cls.model_validate({**data, "sync_state": SyncState.DELIVERED})


class SubmitRequest(BaseModel):
    user_id: str
    user_name: str
    type: AttendanceType
    face_data: Dict[str, Any]
    photo_path: Optional[str] = None
    timestamp: Optional[datetime] = None
    confidence: Optional[float] = Field(None, ge=0.0, le=1.0)

    check_face_data = field_validator("face_data")(_require_face_data)

    def to_record(self) -> AttendanceRecord:
        data = self.model_dump(exclude_none=True)
        return AttendanceRecord(**data)


class SyncStatusSnapshot(BaseModel):
    """Point-in-time summary of the sync queue for display."""
    model_config = ConfigDict(frozen=True)

    state: str
    initialized: bool
    offline_mode: bool
    has_permission_error: bool
    local_records_count: int
    failed_records_count: int = 0
    last_error: Optional[str] = None
    last_sync_at: Optional[datetime] = None
    next_retry_in: Optional[float] = None


class ReconnectResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool
    message: str
    status: SyncStatusSnapshot


class HistorySummary(BaseModel):
    total: int
    check_in: int
    check_out: int
    users: int


class HistoryResponse(BaseModel):
    records: List[AttendanceRecord]
    summary: HistorySummary
    offline: bool = False
