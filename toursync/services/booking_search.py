"""
Booking Search Strategy

The Bokun booking search API accepts several request shapes and which one
works for a given vendor account is not reliably documented. The strategy
probes an ordered list of variants and keeps the first one that both
succeeds and returns a list of bookings:

1. structured_search       POST /booking.json/booking-search, ISO ms-precision
                           range, explicit statuses, SUPPLIER + SELLER roles,
                           paginated
2. structured_search_alt   same, with +00:00 offset date-time encoding
3. legacy_get              GET  /booking.json/search?start=&end=
4. legacy_post             POST /booking.json/search {start, end}

If every variant fails, the last error is re-raised unchanged.
"""

import logging
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..config import settings
from ..exceptions import SyncError, UnusableResponseError
from .bokun_client import BokunClient

logger = logging.getLogger(__name__)

BOOKING_SEARCH_PATH = "/booking.json/booking-search"
LEGACY_SEARCH_PATH = "/booking.json/search"

# OTA bookings (Viator, GetYourGuide) come back under SUPPLIER, direct ones under SELLER
BOOKING_ROLES = ("SUPPLIER", "SELLER")
BOOKING_STATUSES = ["CONFIRMED", "PENDING", "CANCELLED"]

DateEncoder = Callable[[date, date], Tuple[str, str]]


def iso_ms_range(start: date, end: date) -> Tuple[str, str]:
    return f"{start.isoformat()}T00:00:00.000Z", f"{end.isoformat()}T23:59:59.999Z"


def iso_offset_range(start: date, end: date) -> Tuple[str, str]:
    return f"{start.isoformat()}T00:00:00+00:00", f"{end.isoformat()}T23:59:59+00:00"


def as_booking_list(data: Any) -> Optional[List[Dict]]:
    """Return the bookings if the payload is array-shaped, else None"""
    if isinstance(data, list):
        return data
    if isinstance(data, dict) and isinstance(data.get("items"), list):
        return data["items"]
    return None


class BookingSearchStrategy:
    """Try request-shape variants in order until one yields bookings"""

    def __init__(
        self,
        client: BokunClient,
        page_size: Optional[int] = None,
        max_pages: Optional[int] = None
    ):
        self.client = client
        self.page_size = page_size or settings.bokun_page_size
        self.max_pages = max_pages or settings.bokun_max_pages
        self.last_variant: Optional[str] = None
        self.variants: List[Tuple[str, Callable[[date, date], List[Dict]]]] = [
            ("structured_search", self._structured_search),
            ("structured_search_alt", self._structured_search_alt),
            ("legacy_get", self._legacy_get),
            ("legacy_post", self._legacy_post),
        ]

    def search(self, start_date: date, end_date: date) -> List[Dict]:
        self.last_variant = None
        last_error: Optional[Exception] = None

        for name, fetch in self.variants:
            try:
                logger.info(f"[{self.client.request_id}] Trying booking search variant {name}")
                bookings = fetch(start_date, end_date)
            except SyncError as e:
                logger.warning(f"[{self.client.request_id}] Variant {name} failed: {e}")
                last_error = e
                continue

            self.last_variant = name
            logger.info(
                f"[{self.client.request_id}] Variant {name} succeeded with {len(bookings)} bookings"
            )
            return bookings

        if last_error is None:
            raise UnusableResponseError("No booking search variants configured")
        raise last_error

    # ==================
    # Variants
    # ==================

    def _structured_search(self, start_date: date, end_date: date) -> List[Dict]:
        return self._search_all_roles(start_date, end_date, iso_ms_range)

    def _structured_search_alt(self, start_date: date, end_date: date) -> List[Dict]:
        return self._search_all_roles(start_date, end_date, iso_offset_range)

    def _legacy_get(self, start_date: date, end_date: date) -> List[Dict]:
        path = (
            f"{LEGACY_SEARCH_PATH}?start={start_date.isoformat()}&end={end_date.isoformat()}"
            f"&page=1&pageSize={self.page_size}"
        )
        return self._require_list(self.client.call("GET", path).data, "legacy_get")

    def _legacy_post(self, start_date: date, end_date: date) -> List[Dict]:
        body = {
            "start": start_date.isoformat(),
            "end": end_date.isoformat(),
            "page": 1,
            "pageSize": self.page_size,
        }
        return self._require_list(self.client.call("POST", LEGACY_SEARCH_PATH, body).data, "legacy_post")

    # ==================
    # Helpers
    # ==================

    @staticmethod
    def _require_list(data: Any, variant: str) -> List[Dict]:
        bookings = as_booking_list(data)
        if bookings is None:
            raise UnusableResponseError(f"Variant {variant} returned a non-list payload")
        return bookings

    def _search_body(self, role: str, page: int, date_from: str, date_to: str) -> Dict:
        return {
            "bookingRole": role,
            "bookingStatuses": BOOKING_STATUSES,
            "pageSize": self.page_size,
            "page": page,
            "startDateRange": {
                "from": date_from,
                "to": date_to,
                "includeLower": True,
                "includeUpper": True,
            },
        }

    def _search_all_roles(self, start_date: date, end_date: date, encode: DateEncoder) -> List[Dict]:
        """
        Fetch every page for every role and merge them, dropping duplicate ids.

        One failing role is tolerated; the variant only fails when no role
        produced a usable answer.
        """
        date_from, date_to = encode(start_date, end_date)
        merged: List[Dict] = []
        seen_ids = set()
        any_role_succeeded = False
        last_error: Optional[Exception] = None

        for role in BOOKING_ROLES:
            try:
                role_bookings = self._search_role(role, date_from, date_to)
            except SyncError as e:
                logger.warning(f"[{self.client.request_id}] booking-search role {role} failed: {e}")
                last_error = e
                continue

            any_role_succeeded = True
            for booking in role_bookings:
                booking_id = booking.get("id") if isinstance(booking, dict) else None
                if booking_id is not None:
                    if booking_id in seen_ids:
                        continue
                    seen_ids.add(booking_id)
                merged.append(booking)

        if not any_role_succeeded:
            raise last_error
        return merged

    def _search_role(self, role: str, date_from: str, date_to: str) -> List[Dict]:
        bookings: List[Dict] = []
        page = 0
        while page < self.max_pages:
            data = self.client.search_bookings(self._search_body(role, page, date_from, date_to)).data
            items = self._require_list(data, "booking-search")
            bookings.extend(items)

            if not items:
                break
            total_hits = data.get("totalHits", len(items)) if isinstance(data, dict) else len(items)
            page += 1
            if page * self.page_size >= total_hits:
                break

        logger.debug(f"[{self.client.request_id}] Role {role}: {len(bookings)} bookings over {page} page(s)")
        return bookings
