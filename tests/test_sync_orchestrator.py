"""
Tests for SyncOrchestrator

Tests cover:
- Per-record failure isolation
- Configuration errors abort before any upstream call
- Global last_sync marker advanced once per run
- Sync log bookkeeping
- Date windows and the unassigned-tours query
"""

import json
from datetime import date, datetime
from unittest.mock import MagicMock, patch

import httpx
import pytest
from sqlalchemy.exc import SQLAlchemyError

from conftest import FakeClock, make_bokun_client
from toursync.exceptions import PersistenceError, SyncConfigurationError, UpstreamHttpError
from toursync.models.bokun_config import BokunConfig
from toursync.models.sync_log import SyncLog
from toursync.models.tour import Tour
from toursync.schemas.sync import BokunConfigUpdate
from toursync.services import sync_orchestrator
from toursync.services.credentials import save_config
from toursync.services.reconciliation import SqlAlchemyTourStore
from toursync.services.sync_orchestrator import SyncOrchestrator

# 2025-06-01T08:00:00Z
START_MS = 1748764800000
DAY_MS = 86400000


def make_booking(i: int) -> dict:
    return {
        "id": i,
        "confirmationCode": f"B{i}",
        "totalPrice": 50,
        "productBookings": [{
            "status": "CONFIRMED",
            "startDateTime": START_MS + i * DAY_MS,
            "product": {"id": 42, "title": "Colosseum Tour"},
            "fields": {"totalParticipants": 2},
        }],
    }


def search_handler(bookings, calls=None):
    def handler(request):
        if calls is not None:
            calls.append(request)
        body = json.loads(request.content)
        if body["bookingRole"] == "SUPPLIER":
            return httpx.Response(200, json={"items": bookings, "totalHits": len(bookings)})
        return httpx.Response(200, json={"items": [], "totalHits": 0})
    return handler


@pytest.fixture
def configured_db(db_session):
    save_config(db_session, BokunConfigUpdate(
        access_key="access", secret_key="secret", vendor_id="1234", sync_enabled=True
    ))
    return db_session


def make_orchestrator(db, clock, handler):
    factory = MagicMock(side_effect=lambda credentials, request_id: make_bokun_client(handler, clock))
    return SyncOrchestrator(db, client_factory=factory, clock=clock, request_id="test"), factory


class TestRun:

    def test_failing_booking_does_not_abort_batch(self, configured_db, fake_clock):
        bookings = [make_booking(i) for i in range(1, 6)]
        del bookings[2]["productBookings"][0]["startDateTime"]  # B3 has no date at all

        orchestrator, _ = make_orchestrator(configured_db, fake_clock, search_handler(bookings))
        result = orchestrator.run()

        assert result.total_bookings == 5
        assert result.synced_count == 4
        assert len(result.errors) == 1
        assert result.errors[0].startswith("B3: ")
        assert result.created_count == 4
        assert result.search_variant == "structured_search"
        assert configured_db.query(Tour).count() == 4

        log = configured_db.query(SyncLog).one()
        assert log.status == "partial"
        assert log.bookings_found == 5
        assert log.bookings_synced == 4
        assert log.bookings_failed == 1
        assert "B3" in log.error_message
        assert log.completed_at is not None

    def test_database_error_on_one_booking_does_not_abort_batch(self, configured_db, fake_clock):
        bookings = [make_booking(i) for i in range(1, 5)]
        real_insert = SqlAlchemyTourStore.insert

        def flaky_insert(store, values):
            if values["external_id"] == "B2":
                store.db.add(Tour(**values))
                store.db.rollback()
                raise SQLAlchemyError("database is locked")
            return real_insert(store, values)

        orchestrator, _ = make_orchestrator(configured_db, fake_clock, search_handler(bookings))
        with patch.object(SqlAlchemyTourStore, "insert", flaky_insert):
            result = orchestrator.run()

        assert result.synced_count == 3
        assert len(result.errors) == 1
        assert result.errors[0].startswith("B2: Database error")
        stored = sorted(t.external_id for t in configured_db.query(Tour).all())
        assert stored == ["B1", "B3", "B4"]
        assert configured_db.query(SyncLog).one().status == "partial"

    def test_booking_without_identity_is_reported_not_duplicated(self, configured_db, fake_clock):
        anonymous = make_booking(2)
        del anonymous["id"]
        del anonymous["confirmationCode"]
        orchestrator, _ = make_orchestrator(
            configured_db, fake_clock, search_handler([make_booking(1), anonymous])
        )

        orchestrator.run()
        result = orchestrator.run()

        assert result.synced_count == 1
        assert result.errors == ["unknown: Booking has no id or confirmation code"]
        assert configured_db.query(Tour).count() == 1

    def test_second_run_updates_instead_of_inserting(self, configured_db, fake_clock):
        bookings = [make_booking(1), make_booking(2)]
        orchestrator, _ = make_orchestrator(configured_db, fake_clock, search_handler(bookings))

        orchestrator.run()
        result = orchestrator.run()

        assert result.updated_count == 2
        assert result.created_count == 0
        assert configured_db.query(Tour).count() == 2

    def test_reschedule_counted(self, configured_db, fake_clock):
        booking = make_booking(1)
        orchestrator, _ = make_orchestrator(configured_db, fake_clock, search_handler([booking]))
        orchestrator.run()

        moved = make_booking(1)
        moved["productBookings"][0]["startDateTime"] += 2 * DAY_MS
        orchestrator, _ = make_orchestrator(configured_db, fake_clock, search_handler([moved]))
        result = orchestrator.run()

        assert result.rescheduled_count == 1
        tour = configured_db.query(Tour).one()
        assert tour.rescheduled is True
        assert tour.original_date == date(2025, 6, 2)

    def test_default_window(self, configured_db, fake_clock):
        calls = []
        orchestrator, _ = make_orchestrator(configured_db, fake_clock, search_handler([], calls))

        result = orchestrator.run()

        assert (result.start_date, result.end_date) == (date(2025, 6, 1), date(2025, 6, 15))
        body = json.loads(calls[0].content)
        assert body["startDateRange"]["from"] == "2025-06-01T00:00:00.000Z"
        assert body["startDateRange"]["to"] == "2025-06-15T23:59:59.999Z"

    def test_start_date_alone_sets_window_from_start(self, configured_db, fake_clock):
        calls = []
        orchestrator, _ = make_orchestrator(configured_db, fake_clock, search_handler([], calls))

        result = orchestrator.run(start_date=date(2025, 7, 1))

        assert (result.start_date, result.end_date) == (date(2025, 7, 1), date(2025, 7, 15))
        body = json.loads(calls[0].content)
        assert body["startDateRange"]["to"] == "2025-07-15T23:59:59.999Z"

    def test_inverted_window_rejected_before_upstream(self, configured_db, fake_clock):
        orchestrator, factory = make_orchestrator(configured_db, fake_clock, search_handler([]))

        with pytest.raises(SyncConfigurationError):
            orchestrator.run(start_date=date(2025, 7, 31), end_date=date(2025, 7, 1))

        factory.assert_not_called()

    def test_today_follows_tour_timezone(self, db_session):
        # 23:30 UTC is already the next day in Rome
        clock = FakeClock(datetime(2025, 6, 1, 23, 30))
        orchestrator, _ = make_orchestrator(db_session, clock, search_handler([]))

        assert orchestrator.today() == date(2025, 6, 2)
        assert orchestrator.default_window() == (date(2025, 6, 2), date(2025, 6, 16))

    def test_full_sync_window(self, configured_db, fake_clock):
        orchestrator, _ = make_orchestrator(configured_db, fake_clock, search_handler([]))

        result = orchestrator.full_sync(triggered_by="tester")

        assert result.sync_type == "full"
        assert (result.start_date, result.end_date) == (date(2025, 5, 25), date(2026, 6, 1))
        assert configured_db.query(SyncLog).one().triggered_by == "tester"


class TestConfiguration:

    def test_missing_config_makes_no_upstream_call(self, db_session, fake_clock):
        orchestrator, factory = make_orchestrator(db_session, fake_clock, search_handler([]))

        with pytest.raises(SyncConfigurationError):
            orchestrator.run()

        factory.assert_not_called()
        assert db_session.query(SyncLog).one().status == "failed"

    def test_disabled_sync_makes_no_upstream_call(self, db_session, fake_clock):
        save_config(db_session, BokunConfigUpdate(
            access_key="access", secret_key="secret", vendor_id="1234", sync_enabled=False
        ))
        orchestrator, factory = make_orchestrator(db_session, fake_clock, search_handler([]))

        with pytest.raises(SyncConfigurationError):
            orchestrator.run()

        factory.assert_not_called()


class TestMarker:

    def test_marker_updated_once_after_batch(self, configured_db, fake_clock):
        bookings = [make_booking(i) for i in range(1, 4)]
        orchestrator, _ = make_orchestrator(configured_db, fake_clock, search_handler(bookings))

        with patch.object(sync_orchestrator, "mark_synced", wraps=sync_orchestrator.mark_synced) as marker:
            orchestrator.run()

        marker.assert_called_once()
        assert configured_db.query(BokunConfig).one().last_sync == fake_clock.now()

    def test_search_exhaustion_propagates_and_keeps_marker(self, configured_db, fake_clock):
        handler = lambda request: httpx.Response(500, json={"message": "down"})
        orchestrator, _ = make_orchestrator(configured_db, fake_clock, handler)

        with pytest.raises(UpstreamHttpError):
            orchestrator.run()

        assert configured_db.query(BokunConfig).one().last_sync is None
        log = configured_db.query(SyncLog).one()
        assert log.status == "failed"
        assert "down" in log.error_message

    def test_marker_write_failure_fails_the_log(self, configured_db, fake_clock):
        orchestrator, _ = make_orchestrator(configured_db, fake_clock, search_handler([make_booking(1)]))

        broken = MagicMock(side_effect=SQLAlchemyError("database is locked"))
        with patch.object(sync_orchestrator, "mark_synced", broken):
            with pytest.raises(PersistenceError):
                orchestrator.run()

        log = configured_db.query(SyncLog).one()
        assert log.status == "failed"
        assert "database is locked" in log.error_message
        assert log.completed_at is not None


class TestQueries:

    def test_unassigned_tours(self, db_session, fake_clock):
        def tour(**values):
            base = dict(title="Tour", date=date(2025, 6, 10), time="10:00")
            base.update(values)
            return Tour(**base)

        db_session.add_all([
            tour(external_id="later", date=date(2025, 6, 20)),
            tour(external_id="today-late", date=date(2025, 6, 1), time="16:00"),
            tour(external_id="today-early", date=date(2025, 6, 1), time="08:30"),
            tour(external_id="past", date=date(2025, 5, 30)),
            tour(external_id="cancelled", cancelled=True),
            tour(external_id="assigned", assignment_needed=False, guide_id="g-1"),
        ])
        db_session.commit()

        orchestrator = SyncOrchestrator(db_session, client_factory=MagicMock(), clock=fake_clock)
        tours = orchestrator.get_unassigned_tours()

        assert [t.external_id for t in tours] == ["today-early", "today-late", "later"]

    def test_sync_history_newest_first(self, db_session, fake_clock):
        db_session.add_all([
            SyncLog(sync_type="auto", status="completed", created_at=datetime(2025, 5, 1)),
            SyncLog(sync_type="manual", status="failed", created_at=datetime(2025, 5, 2)),
        ])
        db_session.commit()

        orchestrator = SyncOrchestrator(db_session, client_factory=MagicMock(), clock=fake_clock)
        history = orchestrator.sync_history(limit=1)

        assert [log.sync_type for log in history] == ["manual"]

    def test_sync_info(self, db_session, fake_clock):
        info = SyncOrchestrator(db_session, clock=fake_clock).sync_info()

        assert info["default_sync_days"] == 14
        assert info["default_date_range"] == {"start": date(2025, 6, 1), "end": date(2025, 6, 15)}
        assert info["full_sync_date_range"]["start"] == date(2025, 5, 25)
