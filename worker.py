#!/usr/bin/env python
"""
Bokun Sync Worker

Standalone process that runs the standard-window Bokun sync on an
interval, for deployments where the API's in-process scheduler is
disabled (SCHEDULER_ENABLED=false).

Run with:
    python worker.py

Or with environment:
    SYNC_INTERVAL_MINUTES=5 python worker.py
    WORKER_RUN_ONCE=1 python worker.py      # single run, then exit
"""

import os
import sys
import time
import logging
import signal

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from toursync.config import settings
from toursync.database import create_tables
from toursync.exceptions import SyncConfigurationError, SyncError
from toursync.models.sync_log import SyncType
from toursync.services.sync_orchestrator import trigger_sync
from toursync.utils.logging_config import setup_logging

setup_logging(level=settings.log_level, json_format=settings.log_json, include_uvicorn=False)
logger = logging.getLogger("worker")

POLL_INTERVAL = settings.sync_interval_minutes * 60  # seconds
RUN_ONCE = os.getenv("WORKER_RUN_ONCE", "").lower() in ("1", "true", "yes")
RUNNING = True


def signal_handler(signum, frame):
    """Handle shutdown signals gracefully"""
    global RUNNING
    logger.info("Received shutdown signal, finishing current run...")
    RUNNING = False


def run_cycle(cycle: int) -> bool:
    """One sync run. Returns False when the failure is worth a non-zero exit in run-once mode."""
    start_time = time.time()
    try:
        result = trigger_sync(sync_type=SyncType.AUTO.value, triggered_by="worker")
    except SyncConfigurationError as e:
        logger.info(f"Cycle {cycle}: sync skipped ({e})")
        return True
    except SyncError as e:
        logger.error(f"Cycle {cycle}: sync failed: {e}")
        return False

    duration = time.time() - start_time
    logger.info(
        f"Cycle {cycle}: {result.synced_count}/{result.total_bookings} synced, "
        f"{len(result.errors)} errors | {duration:.2f}s"
    )
    return True


def run_worker() -> int:
    """Main worker loop"""
    logger.info("=" * 50)
    logger.info("Starting Bokun Sync Worker")
    logger.info(f"Interval: {POLL_INTERVAL}s")
    logger.info(f"Window: {settings.sync_window_days} days")
    logger.info("=" * 50)

    create_tables()

    cycle = 0
    while RUNNING:
        cycle += 1
        ok = run_cycle(cycle)
        if RUN_ONCE:
            return 0 if ok else 1

        # Sleep in short steps so a shutdown signal is honoured promptly
        waited = 0
        while RUNNING and waited < POLL_INTERVAL:
            time.sleep(1)
            waited += 1

    logger.info("Worker shutdown complete")
    return 0


if __name__ == "__main__":
    # Register signal handlers for graceful shutdown
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        sys.exit(run_worker())
    except KeyboardInterrupt:
        logger.info("Worker interrupted by user")
