"""
Tests for the periodic sync job and structured logging helpers
"""

import asyncio
import json
import logging
from unittest.mock import MagicMock, patch

from toursync.exceptions import SyncConfigurationError, UpstreamHttpError
from toursync.services import sync_scheduler
from toursync.services.sync_orchestrator import SyncRunResult
from toursync.utils.logging_config import JSONFormatter, sync_run_id_var


class TestSyncJob:

    def test_job_records_last_result(self):
        result = SyncRunResult(synced_count=3, total_bookings=4, errors=["B2: bad"])
        with patch.object(sync_scheduler, "trigger_sync", MagicMock(return_value=result)) as trigger:
            asyncio.run(sync_scheduler.run_sync_job())

        trigger.assert_called_once_with(sync_type="auto", triggered_by="scheduler")
        status = sync_scheduler.get_scheduler_status()
        assert status["last_sync_result"] == {
            "success": True,
            "synced_count": 3,
            "total_bookings": 4,
            "errors": 1,
        }
        assert status["running"] is False

    def test_job_survives_upstream_failure(self):
        failing = MagicMock(side_effect=UpstreamHttpError(503, "maintenance"))
        with patch.object(sync_scheduler, "trigger_sync", failing):
            asyncio.run(sync_scheduler.run_sync_job())

        assert sync_scheduler.get_scheduler_status()["last_sync_result"]["success"] is False

    def test_disabled_sync_is_skipped_quietly(self):
        previous = sync_scheduler.get_scheduler_status()["last_sync_result"]
        skipped = MagicMock(side_effect=SyncConfigurationError("Bokun sync is disabled"))
        with patch.object(sync_scheduler, "trigger_sync", skipped):
            asyncio.run(sync_scheduler.run_sync_job())

        assert sync_scheduler.get_scheduler_status()["last_sync_result"] == previous


class TestJSONFormatter:

    def test_includes_sync_run_id_and_extra_data(self):
        record = logging.LogRecord("toursync.test", logging.INFO, __file__, 1, "hello", None, None)
        record.extra_data = {"found": 5}

        token = sync_run_id_var.set("run-1")
        try:
            payload = json.loads(JSONFormatter().format(record))
        finally:
            sync_run_id_var.reset(token)

        assert payload["message"] == "hello"
        assert payload["sync_run_id"] == "run-1"
        assert payload["data"] == {"found": 5}
