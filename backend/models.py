"""
SQLAlchemy models for the local attendance queue.
"""
from enum import Enum

from sqlalchemy import Column, String, DateTime, Float, JSON, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class AttendanceType(str, Enum):
    CHECK_IN = "check_in"
    CHECK_OUT = "check_out"


class SyncState(str, Enum):
    PENDING = "pending"
    DELIVERED = "delivered"
    FAILED = "failed"


class QueuedRecord(Base):
    """Attendance record waiting for delivery to the remote store."""
    __tablename__ = "queued_records"

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    user_name = Column(String, nullable=False)
    type = Column(String, nullable=False)
    timestamp = Column(DateTime, nullable=False, index=True)
    photo_path = Column(String, nullable=True)  # Not owned, never deleted here
    face_data = Column(JSON, nullable=False)
    confidence = Column(Float, nullable=False)
    sync_state = Column(String, nullable=False, default=SyncState.PENDING.value, index=True)
    failure_reason = Column(Text, nullable=True)
