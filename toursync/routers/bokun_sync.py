"""
Bokun Sync API Router

Endpoints for the operator dashboard:
- Manual and full-window sync triggers (throttled)
- Unassigned upcoming tours
- Credential management (secrets never returned)
- Connection test, sync history and window info

Errors:
- configuration problems -> 400
- local Bokun rate budget exhausted -> 429
- upstream / search failures -> 502
"""

import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from ..config import settings
from ..database import get_db
from ..exceptions import RateLimitLocalError, SyncConfigurationError, SyncError
from ..schemas.sync import (
    BokunConfigResponse,
    BokunConfigUpdate,
    ConnectionTestResponse,
    SyncInfoResponse,
    SyncLogResponse,
    SyncRequest,
    SyncRunResponse,
)
from ..schemas.tour import TourResponse
from ..services.credentials import load_credentials, masked_config, save_config
from ..services.sync_orchestrator import ClientFactory, SyncOrchestrator, default_client_factory
from ..utils.clock import SystemClock, system_clock
from ..utils.rate_limiter import limiter

router = APIRouter(prefix="/api/bokun", tags=["Bokun Sync"])


def get_request_id(request: Request) -> str:
    """Get request_id from request state or generate one"""
    return getattr(request.state, 'request_id', str(uuid.uuid4())[:8])


def get_client_factory() -> ClientFactory:
    return default_client_factory


def get_clock() -> SystemClock:
    return system_clock


def get_orchestrator(
    request: Request,
    db: Session = Depends(get_db),
    client_factory: ClientFactory = Depends(get_client_factory),
    clock: SystemClock = Depends(get_clock)
) -> SyncOrchestrator:
    return SyncOrchestrator(db, client_factory=client_factory, clock=clock, request_id=get_request_id(request))


def raise_for_sync_error(e: SyncError):
    if isinstance(e, SyncConfigurationError):
        raise HTTPException(status_code=400, detail=str(e))
    if isinstance(e, RateLimitLocalError):
        raise HTTPException(
            status_code=429,
            detail=str(e),
            headers={"Retry-After": str(int(e.wait_seconds) + 1)}
        )
    raise HTTPException(status_code=502, detail=f"Bokun sync failed: {e}")


# ==================
# Sync triggers
# ==================

@router.post("/sync", response_model=SyncRunResponse)
@limiter.limit(settings.sync_endpoint_rate_limit)
async def trigger_sync(
    request: Request,
    payload: Optional[SyncRequest] = None,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator)
):
    """
    Sync bookings for a date window.

    Without dates the standard window (today .. today + SYNC_WINDOW_DAYS)
    is used. The run is blocking and may take minutes when Bokun throttles.
    """
    payload = payload or SyncRequest()
    try:
        result = await run_in_threadpool(
            orchestrator.run,
            payload.start_date,
            payload.end_date,
            "manual",
            payload.triggered_by,
        )
    except SyncError as e:
        raise_for_sync_error(e)
    return result.to_dict()


@router.post("/full-sync", response_model=SyncRunResponse)
@limiter.limit(settings.sync_endpoint_rate_limit)
async def trigger_full_sync(
    request: Request,
    triggered_by: Optional[str] = Query(default="user", max_length=100),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator)
):
    """Sync from PAST_DAYS_BUFFER days ago to FULL_SYNC_DAYS ahead"""
    try:
        result = await run_in_threadpool(orchestrator.full_sync, triggered_by)
    except SyncError as e:
        raise_for_sync_error(e)
    return result.to_dict()


# ==================
# Tours
# ==================

@router.get("/unassigned", response_model=List[TourResponse])
async def get_unassigned_tours(orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    """Upcoming Bokun tours that still need a guide"""
    return orchestrator.get_unassigned_tours()


# ==================
# Configuration
# ==================

@router.get("/config", response_model=BokunConfigResponse)
async def get_config(db: Session = Depends(get_db)):
    return masked_config(db)


@router.put("/config", response_model=BokunConfigResponse)
async def update_config(data: BokunConfigUpdate, db: Session = Depends(get_db)):
    save_config(db, data)
    return masked_config(db)


@router.get("/test", response_model=ConnectionTestResponse)
async def test_connection(
    request: Request,
    db: Session = Depends(get_db),
    client_factory: ClientFactory = Depends(get_client_factory)
):
    """Authenticated round-trip against Bokun with the stored credentials"""
    try:
        credentials = load_credentials(db, require_enabled=False)
    except SyncConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    client = client_factory(credentials, get_request_id(request))
    try:
        return await run_in_threadpool(client.test_connection)
    finally:
        client.close()


# ==================
# Observability
# ==================

@router.get("/sync-history", response_model=List[SyncLogResponse])
async def get_sync_history(
    limit: int = Query(default=20, ge=1, le=200),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator)
):
    return orchestrator.sync_history(limit)


@router.get("/sync-info", response_model=SyncInfoResponse)
async def get_sync_info(orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    return orchestrator.sync_info()
