from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime, date
from decimal import Decimal

from ..models.tour import GUIDE_PAYMENT_AWAITING


class CustomerInfo(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


class ParticipantName(BaseModel):
    first: str = ""
    last: str = ""


class CanonicalTourRecord(BaseModel):
    """Normalized form of one upstream booking, produced by BookingTransformer"""
    # Identity
    external_id: Optional[str] = None
    upstream_booking_id: Optional[str] = None
    confirmation_code: Optional[str] = None
    product_id: Optional[int] = None

    # Schedule
    date: date
    time: str = Field(default="09:00", pattern=r"^\d{2}:\d{2}$")
    duration: Optional[str] = None

    # Descriptive
    title: str = "Bokun Tour"
    language: Optional[str] = None
    participant_count: int = Field(default=1, ge=0)
    participant_names: Optional[List[ParticipantName]] = None
    customer: CustomerInfo = Field(default_factory=CustomerInfo)
    booking_channel: Optional[str] = None
    amount: Decimal = Decimal("0")

    # Status
    cancelled: bool = False
    assignment_needed: bool = True
    guide_payment_status: str = GUIDE_PAYMENT_AWAITING

    # Reschedule history (filled by ReconciliationEngine, never by the transformer)
    rescheduled: bool = False
    original_date: Optional[date] = None
    original_time: Optional[str] = None
    rescheduled_at: Optional[datetime] = None

    last_sync_timestamp: Optional[datetime] = None
    raw_payload: Dict[str, Any] = Field(default_factory=dict)

    @property
    def booking_ref(self) -> str:
        """Human-readable reference used in logs and error messages"""
        return self.external_id or self.upstream_booking_id or "unknown"


class TourResponse(BaseModel):
    id: str
    external_id: Optional[str]
    upstream_booking_id: Optional[str]
    confirmation_code: Optional[str]
    title: str
    date: date
    time: str
    duration: Optional[str]
    language: Optional[str]
    participant_count: int
    participant_names: Optional[List[Dict[str, str]]] = None
    customer_name: Optional[str]
    customer_email: Optional[str]
    customer_phone: Optional[str]
    booking_channel: Optional[str]
    amount: Decimal
    cancelled: bool
    assignment_needed: bool
    guide_payment_status: str
    rescheduled: bool
    original_date: Optional[date]
    original_time: Optional[str]
    rescheduled_at: Optional[datetime]
    guide_id: Optional[str]
    guide_name: Optional[str]
    last_sync_timestamp: Optional[datetime]

    class Config:
        from_attributes = True
