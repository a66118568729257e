# Schemas package
from .tour import CanonicalTourRecord, CustomerInfo, ParticipantName, TourResponse
from .sync import (
    SyncRequest,
    SyncRunResponse,
    BokunConfigUpdate,
    BokunConfigResponse,
    SyncLogResponse,
    SyncInfoResponse,
    ConnectionTestResponse,
)

__all__ = [
    "CanonicalTourRecord", "CustomerInfo", "ParticipantName", "TourResponse",
    "SyncRequest", "SyncRunResponse", "BokunConfigUpdate", "BokunConfigResponse",
    "SyncLogResponse", "SyncInfoResponse", "ConnectionTestResponse",
]
