import uuid
from datetime import datetime
from sqlalchemy import Column, String, Date, Numeric, Text, DateTime, Index, Boolean, Integer, JSON
from ..database import Base
import enum


GUIDE_PAYMENT_AWAITING = "awaiting guide payment"


class ExternalSource(str, enum.Enum):
    """How the tour arrived in the system"""
    MANUAL = "manual"  # Created by an operator
    BOKUN = "bokun"    # Pulled by the booking sync


class Tour(Base):
    """
    One scheduled tour booking.

    Columns fall into two ownership groups:
    - upstream-sourced: rewritten by every sync that matches this row
    - operator-owned (guide_id, guide_name, notes): never touched by sync
    """
    __tablename__ = "tours"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # Identity (never regressed to NULL once known)
    external_id = Column(String(100), nullable=True)  # Confirmation code
    upstream_booking_id = Column(String(100), nullable=True)  # Bokun booking id
    confirmation_code = Column(String(100), nullable=True)
    product_id = Column(Integer, nullable=True)
    external_source = Column(String(20), default=ExternalSource.BOKUN.value)

    # Schedule
    date = Column(Date, nullable=False)
    time = Column(String(5), nullable=False, default="09:00")
    duration = Column(String(50), nullable=True)

    # Descriptive
    title = Column(String(255), nullable=False)
    language = Column(String(50), nullable=True)
    participant_count = Column(Integer, default=1)
    participant_names = Column(JSON, nullable=True)
    customer_name = Column(String(200), nullable=True)
    customer_email = Column(String(255), nullable=True)
    customer_phone = Column(String(50), nullable=True)
    booking_channel = Column(String(100), nullable=True)
    amount = Column(Numeric(10, 2), default=0)

    # Status
    cancelled = Column(Boolean, default=False)
    assignment_needed = Column(Boolean, default=True)
    guide_payment_status = Column(String(50), default=GUIDE_PAYMENT_AWAITING)

    # Reschedule history
    rescheduled = Column(Boolean, default=False)
    original_date = Column(Date, nullable=True)
    original_time = Column(String(5), nullable=True)
    rescheduled_at = Column(DateTime, nullable=True)

    # Sync bookkeeping
    last_sync_timestamp = Column(DateTime, nullable=True)
    raw_payload = Column(JSON, nullable=True)

    # Operator-owned
    guide_id = Column(String(36), nullable=True)
    guide_name = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_tour_upstream_booking_id", "upstream_booking_id"),
        Index("ix_tour_external_id", "external_id"),
        Index("ix_tour_date_time", "date", "time"),
    )

    def __repr__(self):
        return f"<Tour {self.external_id} - {self.date} {self.time}>"
