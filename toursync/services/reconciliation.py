"""
Reconciliation Engine

Idempotent upsert of CanonicalTourRecords into the tours table.

Lookup is by upstream booking id OR confirmation code. On a match the
stored date/time is compared with the incoming one; the first detected
change snapshots the stored slot into original_date/original_time, later
changes only move the slot forward. Operator-owned columns (guide_id,
guide_name, notes) and assignment_needed are never written on update.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..exceptions import MissingIdentityError, PersistenceError
from ..models.tour import Tour, ExternalSource
from ..schemas.tour import CanonicalTourRecord
from ..utils.clock import SystemClock, system_clock
from ..utils.logging_config import get_logger

logger = logging.getLogger(__name__)
structured_logger = get_logger(__name__)

# Overwritten on every matching sync, but an incoming None keeps the stored value
KEEP_WHEN_MISSING = (
    "external_id",
    "upstream_booking_id",
    "confirmation_code",
    "product_id",
    "duration",
    "language",
    "participant_names",
    "customer_name",
    "customer_email",
    "customer_phone",
    "booking_channel",
)

# Always mirror the latest snapshot
ALWAYS_OVERWRITE = (
    "title",
    "participant_count",
    "amount",
    "cancelled",
    "raw_payload",
)


@dataclass
class UpsertOutcome:
    action: str  # inserted, updated
    rescheduled: bool = False
    tour_id: Optional[str] = None


class TourStore(Protocol):
    def find_by_external_key(
        self, upstream_booking_id: Optional[str], external_id: Optional[str]
    ) -> Optional[Tour]:
        ...

    def insert(self, values: Dict[str, Any]) -> Tour:
        ...

    def update(self, tour: Tour, changes: Dict[str, Any]) -> Tour:
        ...


class SqlAlchemyTourStore:
    """TourStore over a SQLAlchemy session; commits per record"""

    def __init__(self, db: Session):
        self.db = db

    def find_by_external_key(
        self, upstream_booking_id: Optional[str], external_id: Optional[str]
    ) -> Optional[Tour]:
        conditions = []
        if upstream_booking_id:
            conditions.append(Tour.upstream_booking_id == upstream_booking_id)
        if external_id:
            conditions.append(Tour.external_id == external_id)
        if not conditions:
            return None
        return self.db.query(Tour).filter(or_(*conditions)).order_by(Tour.created_at).first()

    def insert(self, values: Dict[str, Any]) -> Tour:
        tour = Tour(**values)
        self.db.add(tour)
        self._commit()
        self.db.refresh(tour)
        return tour

    def update(self, tour: Tour, changes: Dict[str, Any]) -> Tour:
        for key, value in changes.items():
            setattr(tour, key, value)
        self._commit()
        return tour

    def _commit(self):
        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise


def record_to_columns(record: CanonicalTourRecord) -> Dict[str, Any]:
    """Flatten a canonical record onto Tour column names"""
    return {
        "external_id": record.external_id,
        "upstream_booking_id": record.upstream_booking_id,
        "confirmation_code": record.confirmation_code,
        "product_id": record.product_id,
        "date": record.date,
        "time": record.time,
        "duration": record.duration,
        "title": record.title,
        "language": record.language,
        "participant_count": record.participant_count,
        "participant_names": (
            [name.model_dump() for name in record.participant_names]
            if record.participant_names else None
        ),
        "customer_name": record.customer.name,
        "customer_email": record.customer.email,
        "customer_phone": record.customer.phone,
        "booking_channel": record.booking_channel,
        "amount": record.amount,
        "cancelled": record.cancelled,
        "raw_payload": record.raw_payload,
    }


class ReconciliationEngine:
    def __init__(self, store: TourStore, clock: Optional[SystemClock] = None):
        self.store = store
        self.clock = clock or system_clock

    def upsert(self, record: CanonicalTourRecord) -> UpsertOutcome:
        """
        Insert or update the tour matching this record.

        Raises:
            MissingIdentityError: record cannot be matched on a later sync
            PersistenceError: the store rejected the write (already rolled back)
        """
        if not record.upstream_booking_id and not record.external_id:
            raise MissingIdentityError(f"Refusing to store {record.title!r} without a booking id")

        try:
            existing = self.store.find_by_external_key(record.upstream_booking_id, record.external_id)
            if existing is None:
                return self._insert(record)
            return self._update(existing, record)
        except SQLAlchemyError as e:
            logger.error(f"Failed to persist booking {record.booking_ref}: {e}")
            raise PersistenceError(f"Database error: {e.__class__.__name__}: {e}") from e

    def _insert(self, record: CanonicalTourRecord) -> UpsertOutcome:
        values = record_to_columns(record)
        values.update({
            "external_source": ExternalSource.BOKUN.value,
            "assignment_needed": True,
            "guide_payment_status": record.guide_payment_status,
            "rescheduled": False,
            "last_sync_timestamp": self.clock.now(),
        })
        tour = self.store.insert(values)
        logger.info(f"Created tour for booking {record.booking_ref} on {record.date} {record.time}")
        return UpsertOutcome(action="inserted", tour_id=tour.id)

    def _update(self, tour: Tour, record: CanonicalTourRecord) -> UpsertOutcome:
        incoming = record_to_columns(record)
        changes: Dict[str, Any] = {}

        for field in KEEP_WHEN_MISSING:
            value = incoming[field]
            if value is not None and getattr(tour, field) != value:
                changes[field] = value

        for field in ALWAYS_OVERWRITE:
            if getattr(tour, field) != incoming[field]:
                changes[field] = incoming[field]

        rescheduled = tour.date != record.date or tour.time != record.time
        if rescheduled:
            first_reschedule = not tour.rescheduled
            if first_reschedule:
                changes["original_date"] = tour.date
                changes["original_time"] = tour.time
            changes["rescheduled"] = True
            changes["rescheduled_at"] = self.clock.now()
            changes["date"] = record.date
            changes["time"] = record.time

            structured_logger.tour_rescheduled(
                external_id=record.booking_ref,
                old_slot=f"{tour.date} {tour.time}",
                new_slot=f"{record.date} {record.time}",
                first_reschedule=first_reschedule,
            )

        if "cancelled" in changes:
            logger.info(
                f"Booking {record.booking_ref} "
                f"{'cancelled' if record.cancelled else 'reinstated'} upstream"
            )

        changes["last_sync_timestamp"] = self.clock.now()
        self.store.update(tour, changes)
        return UpsertOutcome(action="updated", rescheduled=rescheduled, tour_id=tour.id)
