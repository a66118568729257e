from pydantic import BaseModel, Field, model_validator
from typing import Optional, List
from datetime import datetime, date


class SyncRequest(BaseModel):
    """Request to trigger a sync; both dates default to the standard window"""
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    triggered_by: Optional[str] = Field(default="user", max_length=100)

    @model_validator(mode='after')
    def validate_window(self):
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class SyncRunResponse(BaseModel):
    """Summary of one sync run"""
    success: bool = True
    synced_count: int
    total_bookings: int
    errors: List[str] = []
    created_count: int = 0
    updated_count: int = 0
    rescheduled_count: int = 0
    start_date: date
    end_date: date
    sync_type: str
    search_variant: Optional[str] = None
    duration_seconds: float = 0.0


class BokunConfigUpdate(BaseModel):
    access_key: str = Field(..., min_length=1, max_length=200)
    secret_key: str = Field(..., min_length=1, max_length=200)
    vendor_id: str = Field(..., min_length=1, max_length=50)
    sync_enabled: bool = True


class BokunConfigResponse(BaseModel):
    """Credential view for the dashboard - secrets are never returned"""
    configured: bool
    access_key_preview: Optional[str] = None
    vendor_id: Optional[str] = None
    sync_enabled: bool = False
    last_sync: Optional[datetime] = None


class SyncLogResponse(BaseModel):
    id: str
    sync_type: str
    start_date: Optional[date]
    end_date: Optional[date]
    status: str
    bookings_found: int
    bookings_synced: int
    bookings_created: int
    bookings_updated: int
    bookings_failed: int
    search_variant: Optional[str]
    error_message: Optional[str]
    triggered_by: Optional[str]
    duration_seconds: Optional[float]
    created_at: datetime
    completed_at: Optional[datetime]

    class Config:
        from_attributes = True


class DateWindow(BaseModel):
    start: date
    end: date


class SyncInfoResponse(BaseModel):
    default_sync_days: int
    full_sync_days: int
    past_days_buffer: int
    sync_interval_minutes: int
    default_date_range: DateWindow
    full_sync_date_range: DateWindow


class ConnectionTestResponse(BaseModel):
    success: bool
    message: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[int] = None
    base_url: str
    access_key_preview: Optional[str] = None
