"""
Bokun Sync Scheduler

Runs the standard-window booking sync every SYNC_INTERVAL_MINUTES inside
the API process, using APScheduler's AsyncIOScheduler. The sync itself is
blocking, so each job hands it to a worker thread.

Overlapping runs are not locked out; idempotent upserts make them converge.
max_instances=1 only stops the scheduler from stacking its own jobs.
"""

import asyncio
import logging
from datetime import datetime
from typing import Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..config import settings
from ..exceptions import SyncConfigurationError, SyncError
from ..models.sync_log import SyncType
from .sync_orchestrator import trigger_sync

logger = logging.getLogger(__name__)

JOB_ID = "bokun_booking_sync"

# Global scheduler instance
_scheduler: Optional[AsyncIOScheduler] = None
_last_sync_time: Optional[datetime] = None
_last_sync_result: Optional[Dict] = None


async def run_sync_job():
    """Job body: one standard-window sync, logged and never re-raised"""
    global _last_sync_time, _last_sync_result

    logger.info("Running scheduled Bokun sync...")
    try:
        result = await asyncio.to_thread(
            trigger_sync, sync_type=SyncType.AUTO.value, triggered_by="scheduler"
        )
    except SyncConfigurationError as e:
        logger.info(f"Scheduled Bokun sync skipped: {e}")
        return
    except SyncError as e:
        logger.error(f"Scheduled Bokun sync failed: {e}")
        _last_sync_time = datetime.utcnow()
        _last_sync_result = {"success": False, "error": str(e)}
        return

    _last_sync_time = datetime.utcnow()
    _last_sync_result = {
        "success": result.success,
        "synced_count": result.synced_count,
        "total_bookings": result.total_bookings,
        "errors": len(result.errors),
    }
    logger.info(f"Scheduled sync result: {_last_sync_result}")


def start_sync_scheduler(interval_minutes: Optional[int] = None) -> bool:
    """
    Start the periodic sync job.

    Returns:
        True if the scheduler is running afterwards
    """
    global _scheduler

    if _scheduler is not None and _scheduler.running:
        logger.warning("Sync scheduler is already running")
        return True

    minutes = interval_minutes or settings.sync_interval_minutes
    _scheduler = AsyncIOScheduler(timezone="UTC")
    _scheduler.add_job(
        run_sync_job,
        IntervalTrigger(minutes=minutes),
        id=JOB_ID,
        name=f"Bokun booking sync every {minutes} min",
        replace_existing=True,
        max_instances=1,
        coalesce=True
    )
    _scheduler.start()

    logger.info(f"Bokun sync scheduler started (every {minutes} minutes)")
    return True


def stop_sync_scheduler() -> bool:
    global _scheduler

    if _scheduler is None:
        logger.warning("Sync scheduler is not running")
        return True

    _scheduler.shutdown(wait=False)
    _scheduler = None
    logger.info("Bokun sync scheduler stopped")
    return True


def get_scheduler_status() -> Dict:
    status = {
        "running": False,
        "interval_minutes": settings.sync_interval_minutes,
        "next_run": None,
        "last_sync": _last_sync_time.isoformat() if _last_sync_time else None,
        "last_sync_result": _last_sync_result,
    }

    if _scheduler is not None and _scheduler.running:
        status["running"] = True
        job = _scheduler.get_job(JOB_ID)
        if job and job.next_run_time:
            status["next_run"] = job.next_run_time.isoformat()

    return status
