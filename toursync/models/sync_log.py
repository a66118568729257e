import uuid
from datetime import datetime
from sqlalchemy import Column, String, Date, Text, DateTime, Integer, Float, Index
from ..database import Base
import enum


class SyncType(str, enum.Enum):
    AUTO = "auto"      # Periodic scheduler
    MANUAL = "manual"  # Triggered from the dashboard
    FULL = "full"      # One-year window


class SyncStatus(str, enum.Enum):
    STARTED = "started"
    COMPLETED = "completed"
    PARTIAL = "partial"  # Some records failed
    FAILED = "failed"    # Run aborted or every record failed


class SyncLog(Base):
    """Audit row for one sync run"""
    __tablename__ = "sync_logs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    sync_type = Column(String(20), default=SyncType.MANUAL.value)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    status = Column(String(20), default=SyncStatus.STARTED.value)

    bookings_found = Column(Integer, default=0)
    bookings_synced = Column(Integer, default=0)
    bookings_created = Column(Integer, default=0)
    bookings_updated = Column(Integer, default=0)
    bookings_failed = Column(Integer, default=0)

    search_variant = Column(String(50), nullable=True)
    error_message = Column(Text, nullable=True)
    triggered_by = Column(String(100), nullable=True)
    duration_seconds = Column(Float, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_sync_log_created_at", "created_at"),
    )

    def __repr__(self):
        return f"<SyncLog {self.sync_type} {self.status} {self.start_date}..{self.end_date}>"
