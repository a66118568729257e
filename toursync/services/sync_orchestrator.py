"""
Sync Orchestrator

Drives one end-to-end Bokun sync run:

1. Resolve the date window (default: today .. today + SYNC_WINDOW_DAYS)
2. Load credentials - disabled/missing config aborts before any upstream call
3. Search bookings once (BookingSearchStrategy)
4. Transform + upsert each booking; per-record failures are collected,
   never abort the batch
5. Advance the global last_sync marker once, after the whole batch
6. Record the run in sync_logs

Search exhaustion and configuration errors propagate to the caller
unchanged; the sync log is marked failed first.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import date, timedelta, timezone
from typing import Callable, Dict, List, Optional, Tuple

from sqlalchemy import and_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import settings
from ..database import SessionLocal
from ..exceptions import PersistenceError, SyncConfigurationError, SyncError
from ..models.sync_log import SyncLog, SyncStatus, SyncType
from ..models.tour import Tour
from ..utils.clock import SystemClock, system_clock
from ..utils.logging_config import get_logger, sync_run_id_var
from .bokun_client import BokunClient
from .booking_search import BookingSearchStrategy
from .booking_transformer import BookingTransformer, ProductRateLookup, tour_zone
from .credentials import BokunCredentials, load_credentials, mark_synced
from .reconciliation import ReconciliationEngine, SqlAlchemyTourStore

logger = logging.getLogger(__name__)
structured_logger = get_logger(__name__)

MAX_LOGGED_ERRORS = 5

ClientFactory = Callable[[BokunCredentials, str], BokunClient]


def default_client_factory(credentials: BokunCredentials, request_id: str) -> BokunClient:
    return BokunClient(
        access_key=credentials.access_key,
        secret_key=credentials.secret_key,
        vendor_id=credentials.vendor_id,
        request_id=request_id,
    )


@dataclass
class SyncRunResult:
    """Summary of one run, returned to the caller and never persisted as such"""
    synced_count: int = 0
    total_bookings: int = 0
    errors: List[str] = field(default_factory=list)
    created_count: int = 0
    updated_count: int = 0
    rescheduled_count: int = 0
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    sync_type: str = SyncType.MANUAL.value
    search_variant: Optional[str] = None
    duration_seconds: float = 0.0
    sync_log_id: Optional[str] = None

    @property
    def success(self) -> bool:
        return not self.errors or self.synced_count > 0

    @property
    def status(self) -> str:
        if not self.errors:
            return SyncStatus.COMPLETED.value
        if self.synced_count > 0:
            return SyncStatus.PARTIAL.value
        return SyncStatus.FAILED.value

    def to_dict(self) -> Dict:
        return {
            "success": self.success,
            "synced_count": self.synced_count,
            "total_bookings": self.total_bookings,
            "errors": self.errors,
            "created_count": self.created_count,
            "updated_count": self.updated_count,
            "rescheduled_count": self.rescheduled_count,
            "start_date": self.start_date,
            "end_date": self.end_date,
            "sync_type": self.sync_type,
            "search_variant": self.search_variant,
            "duration_seconds": self.duration_seconds,
        }


class SyncOrchestrator:
    def __init__(
        self,
        db: Session,
        client_factory: Optional[ClientFactory] = None,
        clock: Optional[SystemClock] = None,
        request_id: Optional[str] = None
    ):
        self.db = db
        self.client_factory = client_factory or default_client_factory
        self.clock = clock or system_clock
        self.request_id = request_id or f"sync-{uuid.uuid4().hex[:8]}"

    # ==================
    # Windows
    # ==================

    def today(self) -> date:
        """Current date where the tours take place"""
        now = self.clock.now().replace(tzinfo=timezone.utc)
        return now.astimezone(tour_zone()).date()

    def default_window(self) -> Tuple[date, date]:
        today = self.today()
        return today, today + timedelta(days=settings.sync_window_days)

    def full_window(self) -> Tuple[date, date]:
        today = self.today()
        return (
            today - timedelta(days=settings.past_days_buffer),
            today + timedelta(days=settings.full_sync_days),
        )

    # ==================
    # Run
    # ==================

    def run(
        self,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        sync_type: str = SyncType.MANUAL.value,
        triggered_by: Optional[str] = None
    ) -> SyncRunResult:
        """
        Execute one sync run over [start_date, end_date].

        Raises:
            SyncConfigurationError: sync disabled, credentials missing or
                end_date before start_date
            SyncError: every search variant failed (last error, unchanged)
            PersistenceError: the marker or the sync log could not be saved
        """
        start_date = start_date or self.today()
        end_date = end_date or start_date + timedelta(days=settings.sync_window_days)
        if end_date < start_date:
            raise SyncConfigurationError(f"Sync window ends ({end_date}) before it starts ({start_date})")

        result = SyncRunResult(start_date=start_date, end_date=end_date, sync_type=sync_type)
        started = time.monotonic()

        sync_log = self._start_log(result, triggered_by)
        token = sync_run_id_var.set(sync_log.id)
        try:
            logger.info(
                f"[{self.request_id}] Starting {sync_type} sync {start_date} -> {end_date}"
            )
            try:
                credentials = load_credentials(self.db)
                client = self.client_factory(credentials, self.request_id)
                try:
                    search = BookingSearchStrategy(client)
                    bookings = search.search(start_date, end_date)
                    result.search_variant = search.last_variant
                    result.total_bookings = len(bookings)

                    transformer = BookingTransformer(rate_title_lookup=ProductRateLookup(client))
                    engine = ReconciliationEngine(SqlAlchemyTourStore(self.db), clock=self.clock)
                    for booking in bookings:
                        self._process_booking(booking, transformer, engine, result)
                finally:
                    client.close()

                mark_synced(self.db, self.clock.now())
                result.duration_seconds = round(time.monotonic() - started, 3)
                self._complete_log(sync_log, result)
            except SyncError as e:
                result.duration_seconds = round(time.monotonic() - started, 3)
                self._fail_log(sync_log, result, e)
                logger.error(f"[{self.request_id}] Sync aborted: {e}")
                raise
            except SQLAlchemyError as e:
                error = PersistenceError(f"Could not record sync run: {e.__class__.__name__}: {e}")
                result.duration_seconds = round(time.monotonic() - started, 3)
                self._fail_log(sync_log, result, error)
                logger.error(f"[{self.request_id}] Sync aborted: {error}")
                raise error from e

            structured_logger.sync_completed(
                sync_type=sync_type,
                found=result.total_bookings,
                synced=result.synced_count,
                failed=len(result.errors),
                duration_ms=result.duration_seconds * 1000,
            )
            return result
        finally:
            sync_run_id_var.reset(token)

    def full_sync(self, triggered_by: Optional[str] = None) -> SyncRunResult:
        start_date, end_date = self.full_window()
        return self.run(start_date, end_date, sync_type=SyncType.FULL.value, triggered_by=triggered_by)

    def _process_booking(
        self,
        booking: Dict,
        transformer: BookingTransformer,
        engine: ReconciliationEngine,
        result: SyncRunResult
    ):
        ref = booking_ref(booking)
        try:
            record = transformer.transform(booking)
            outcome = engine.upsert(record)
        except SyncError as e:
            logger.warning(f"[{self.request_id}] Skipped booking {ref}: {e}")
            result.errors.append(f"{ref}: {e}")
            return
        except Exception as e:
            self.db.rollback()
            logger.exception(f"[{self.request_id}] Unexpected error processing booking {ref}")
            result.errors.append(f"{ref}: {e.__class__.__name__}: {e}")
            return

        result.synced_count += 1
        if outcome.action == "inserted":
            result.created_count += 1
        else:
            result.updated_count += 1
        if outcome.rescheduled:
            result.rescheduled_count += 1

    # ==================
    # Sync log
    # ==================

    def _start_log(self, result: SyncRunResult, triggered_by: Optional[str]) -> SyncLog:
        sync_log = SyncLog(
            sync_type=result.sync_type,
            start_date=result.start_date,
            end_date=result.end_date,
            status=SyncStatus.STARTED.value,
            triggered_by=triggered_by,
            created_at=self.clock.now(),
        )
        self.db.add(sync_log)
        self.db.commit()
        self.db.refresh(sync_log)
        result.sync_log_id = sync_log.id
        return sync_log

    def _complete_log(self, sync_log: SyncLog, result: SyncRunResult):
        sync_log.status = result.status
        sync_log.bookings_found = result.total_bookings
        sync_log.bookings_synced = result.synced_count
        sync_log.bookings_created = result.created_count
        sync_log.bookings_updated = result.updated_count
        sync_log.bookings_failed = len(result.errors)
        sync_log.search_variant = result.search_variant
        sync_log.duration_seconds = result.duration_seconds
        sync_log.completed_at = self.clock.now()
        if result.errors:
            sync_log.error_message = "; ".join(result.errors[:MAX_LOGGED_ERRORS])
        self.db.commit()

    def _fail_log(self, sync_log: SyncLog, result: SyncRunResult, error: Exception):
        self.db.rollback()
        sync_log.status = SyncStatus.FAILED.value
        sync_log.bookings_found = result.total_bookings
        sync_log.error_message = str(error)
        sync_log.duration_seconds = result.duration_seconds
        sync_log.completed_at = self.clock.now()
        self.db.commit()

    # ==================
    # Queries
    # ==================

    def get_unassigned_tours(self, today: Optional[date] = None) -> List[Tour]:
        """Upcoming, not cancelled tours still waiting for a guide"""
        today = today or self.today()
        return self.db.query(Tour).filter(
            and_(
                Tour.assignment_needed == True,  # noqa: E712
                Tour.cancelled == False,  # noqa: E712
                Tour.date >= today
            )
        ).order_by(Tour.date, Tour.time).all()

    def sync_history(self, limit: int = 20) -> List[SyncLog]:
        return self.db.query(SyncLog).order_by(SyncLog.created_at.desc()).limit(limit).all()

    def sync_info(self) -> Dict:
        default_start, default_end = self.default_window()
        full_start, full_end = self.full_window()
        return {
            "default_sync_days": settings.sync_window_days,
            "full_sync_days": settings.full_sync_days,
            "past_days_buffer": settings.past_days_buffer,
            "sync_interval_minutes": settings.sync_interval_minutes,
            "default_date_range": {"start": default_start, "end": default_end},
            "full_sync_date_range": {"start": full_start, "end": full_end},
        }


def booking_ref(booking) -> str:
    if isinstance(booking, dict):
        return str(booking.get("confirmationCode") or booking.get("id") or "unknown")
    return "unknown"


def trigger_sync(
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    sync_type: str = SyncType.AUTO.value,
    triggered_by: Optional[str] = None
) -> SyncRunResult:
    """Run a sync in its own session (scheduler and worker entry point)"""
    db = SessionLocal()
    try:
        return SyncOrchestrator(db).run(start_date, end_date, sync_type=sync_type, triggered_by=triggered_by)
    finally:
        db.close()
