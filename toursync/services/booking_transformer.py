"""
Booking Transformer

Maps one opaque Bokun booking document onto a CanonicalTourRecord.

Bokun's booking JSON is deeply nested and its shape differs between
channels (Viator, GetYourGuide, direct) and API versions. Every canonical
field is therefore resolved through an ordered chain of small extractor
functions; each takes the raw booking and returns a value or None, and
the first non-None value wins.

The only side effect is the optional rate-title lookup, which may fetch the
product's rate list once per product.
"""

import logging
import re
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar
from zoneinfo import ZoneInfo

from pydantic import ValidationError

from ..config import settings
from ..exceptions import MissingIdentityError, SyncError, TransformError
from ..models.tour import GUIDE_PAYMENT_AWAITING
from ..schemas.tour import CanonicalTourRecord, CustomerInfo, ParticipantName
from .bokun_client import BokunClient

logger = logging.getLogger(__name__)

T = TypeVar("T")
Extractor = Callable[[Dict], Optional[T]]
Slot = Tuple[date, Optional[str]]

DEFAULT_TIME = "09:00"
DEFAULT_TITLE = "Bokun Tour"
DEFAULT_CHANNEL = "Bokun"
FREE_PRICE_CATEGORY = "INFANT"
LANGUAGE_KEYWORDS = ("Italian", "Spanish", "French", "German", "English", "Portuguese")

GUIDE_NOTE_RE = re.compile(r"GUIDE\s*:\s*([A-Za-z]+)", re.IGNORECASE)
BOOKING_LANGUAGES_RE = re.compile(r"Booking languages.*?:\s*([A-Za-z]+)", re.IGNORECASE | re.DOTALL)
TRAVELER_RE = re.compile(
    r"Traveler\s+(\d+):\s*\n?First Name:\s*(.+?)\s*\n?Last Name:\s*(.+?)(?:\n|$)",
    re.IGNORECASE
)


def first_of(booking: Dict, extractors: Sequence[Extractor]) -> Optional[Any]:
    """Apply extractors in order and return the first non-None result"""
    for extractor in extractors:
        value = extractor(booking)
        if value is not None:
            return value
    return None


# ==================
# Document access helpers
# ==================

def dig(data: Any, *path: Any) -> Any:
    """Nested lookup that returns None instead of raising"""
    current = data
    for key in path:
        if isinstance(current, dict):
            current = current.get(key)
        elif isinstance(current, list) and isinstance(key, int):
            current = current[key] if -len(current) <= key < len(current) else None
        else:
            return None
        if current is None:
            return None
    return current


def product_booking(booking: Dict) -> Dict:
    first = dig(booking, "productBookings", 0)
    return first if isinstance(first, dict) else {}


def all_product_bookings(booking: Dict) -> List[Dict]:
    items = booking.get("productBookings")
    if not isinstance(items, list):
        return []
    return [pb for pb in items if isinstance(pb, dict)]


def non_empty_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def positive_int(value: Any) -> Optional[int]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        number = int(value)
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


def to_decimal(value: Any) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


# ==================
# Date / time
# ==================

def tour_zone() -> ZoneInfo:
    return ZoneInfo(settings.tour_timezone)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Epoch milliseconds or ISO-8601 string -> aware datetime in the tour zone"""
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float)) or (isinstance(value, str) and value.strip().isdigit()):
        try:
            moment = datetime.fromtimestamp(float(value) / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
        return moment.astimezone(tour_zone())

    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            moment = datetime.fromisoformat(text)
        except ValueError:
            return None
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        return moment.astimezone(tour_zone())

    return None


def parse_calendar_date(value: Any) -> Optional[date]:
    """A start-date field: plain YYYY-MM-DD is taken as-is, anything else as a timestamp"""
    if isinstance(value, str) and re.fullmatch(r"\d{4}-\d{2}-\d{2}", value.strip()):
        try:
            return date.fromisoformat(value.strip())
        except ValueError:
            return None
    moment = parse_timestamp(value)
    return moment.date() if moment else None


def normalize_time(value: Any) -> Optional[str]:
    """'9:30', '09:30', '09:30:00' -> '09:30'"""
    text = non_empty_str(value)
    if not text:
        return None
    match = re.match(r"^(\d{1,2}):(\d{2})", text)
    if not match:
        return None
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        return None
    return f"{hour:02d}:{minute:02d}"


def _slot_from_timestamp(value: Any) -> Optional[Slot]:
    moment = parse_timestamp(value)
    if moment is None:
        return None
    return moment.date(), moment.strftime("%H:%M")


def start_time_str(booking: Dict) -> Optional[str]:
    """Local time string as shown to the customer (already in tour zone)"""
    return normalize_time(dig(product_booking(booking), "fields", "startTimeStr"))


def slot_from_start_date_time(booking: Dict) -> Optional[Slot]:
    return _slot_from_timestamp(product_booking(booking).get("startDateTime"))


def slot_from_start_time(booking: Dict) -> Optional[Slot]:
    return _slot_from_timestamp(product_booking(booking).get("startTime"))


def slot_from_start_date_and_time_str(booking: Dict) -> Optional[Slot]:
    start_date = parse_calendar_date(product_booking(booking).get("startDate"))
    if start_date is None:
        return None
    return start_date, start_time_str(booking)


def slot_from_booking_start_time(booking: Dict) -> Optional[Slot]:
    return _slot_from_timestamp(booking.get("startTime"))


def slot_from_creation_date(booking: Dict) -> Optional[Slot]:
    # Weakest signal: when the booking was made, not when the tour runs
    slot = _slot_from_timestamp(booking.get("creationDate"))
    if slot is None:
        return None
    logger.warning(
        f"No tour start found for booking {booking.get('confirmationCode', 'unknown')}, "
        f"falling back to creation date {slot[0]}"
    )
    return slot[0], None


SLOT_EXTRACTORS: List[Extractor] = [
    slot_from_start_date_time,
    slot_from_start_time,
    slot_from_start_date_and_time_str,
    slot_from_booking_start_time,
    slot_from_creation_date,
]


# ==================
# Participants
# ==================

def participants_from_total(booking: Dict) -> Optional[int]:
    pb = product_booking(booking)
    return first_of(booking, [
        lambda b: positive_int(dig(pb, "fields", "totalParticipants")),
        lambda b: positive_int(pb.get("totalParticipants")),
        lambda b: positive_int(b.get("totalParticipants")),
    ])


def participants_from_price_categories(booking: Dict) -> Optional[int]:
    """Sum of price-category quantities, free INFANT tickets excluded"""
    total = 0
    found = False
    for pb in all_product_bookings(booking):
        categories = dig(pb, "fields", "priceCategoryBookings") or pb.get("priceCategoryBookings")
        if not isinstance(categories, list):
            continue
        for entry in categories:
            if not isinstance(entry, dict):
                continue
            found = True
            category = str(entry.get("category") or "").upper()
            if category == FREE_PRICE_CATEGORY:
                continue
            total += positive_int(entry.get("quantity")) or 0
    return total if found and total > 0 else None


def participants_from_raw_count(booking: Dict) -> Optional[int]:
    raw = product_booking(booking).get("participants")
    if raw is None:
        raw = booking.get("participants")
    if isinstance(raw, list):
        total = sum(positive_int(p.get("count")) or 0 for p in raw if isinstance(p, dict))
        return total or None
    return positive_int(raw)


PARTICIPANT_EXTRACTORS: List[Extractor] = [
    participants_from_total,
    participants_from_price_categories,
    participants_from_raw_count,
]


def _title_case(name: str) -> str:
    return " ".join(part.capitalize() for part in name.strip().lower().split())


def parse_participant_names(booking: Dict) -> Optional[List[ParticipantName]]:
    """GetYourGuide puts traveler names in specialRequests; other channels have none"""
    special_requests = product_booking(booking).get("specialRequests")
    if not isinstance(special_requests, str) or len(special_requests.strip()) <= 1:
        return None

    names = []
    for match in TRAVELER_RE.finditer(special_requests):
        first, last = match.group(2).strip(), match.group(3).strip()
        if first or last:
            names.append(ParticipantName(first=_title_case(first), last=_title_case(last)))
    return names or None


# ==================
# Language
# ==================

def _canonical_language(word: Optional[str]) -> Optional[str]:
    text = non_empty_str(word)
    return text.capitalize() if text else None


def language_keyword(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    lowered = text.lower()
    for language in LANGUAGE_KEYWORDS:
        if language.lower() in lowered:
            return language
    return None


def note_bodies(booking: Dict) -> List[str]:
    bodies = []
    for source in (product_booking(booking).get("notes"), booking.get("notes")):
        if isinstance(source, list):
            bodies.extend(str(n["body"]) for n in source if isinstance(n, dict) and n.get("body"))
    external = booking.get("customerExternalNotes")
    if isinstance(external, str) and external.strip():
        bodies.append(external)
    return bodies


def language_from_guide_note(booking: Dict) -> Optional[str]:
    for body in note_bodies(booking):
        match = GUIDE_NOTE_RE.search(body)
        if match:
            return _canonical_language(match.group(1))
    return None


def language_from_booking_languages_note(booking: Dict) -> Optional[str]:
    for body in note_bodies(booking):
        match = BOOKING_LANGUAGES_RE.search(body)
        if match:
            return _canonical_language(match.group(1))
    return None


def language_from_structured_field(booking: Dict) -> Optional[str]:
    pb = product_booking(booking)
    return _canonical_language(
        dig(pb, "fields", "language") or dig(pb, "product", "language") or booking.get("language")
    )


class ProductRateLookup:
    """
    Resolves a rate title to a language keyword via GET /activity.json/{id}.

    Product details are cached for the lifetime of the lookup (one sync
    run), so a batch costs at most one request per product. Lookup failures
    are logged and treated as "no answer".
    """

    def __init__(self, client: BokunClient):
        self.client = client
        self._products: Dict[str, Optional[Dict]] = {}

    def _product(self, product_id: Any) -> Optional[Dict]:
        key = str(product_id)
        if key not in self._products:
            try:
                data = self.client.get_product(product_id).data
                self._products[key] = data if isinstance(data, dict) else None
            except SyncError as e:
                logger.warning(f"Failed to fetch product {product_id} for language extraction: {e}")
                self._products[key] = None
        return self._products[key]

    def __call__(self, product_id: Any, rate_id: Any) -> Optional[str]:
        product = self._product(product_id)
        rates = product.get("rates") if product else None
        if not isinstance(rates, list):
            return None
        for rate in rates:
            if isinstance(rate, dict) and str(rate.get("id")) == str(rate_id):
                return language_keyword(rate.get("title"))
        return None


# ==================
# Descriptive fields
# ==================

def extract_title(booking: Dict) -> str:
    pb = product_booking(booking)
    return (
        non_empty_str(dig(pb, "product", "title"))
        or non_empty_str(booking.get("productTitle"))
        or non_empty_str(pb.get("title"))
        or DEFAULT_TITLE
    )


def extract_duration(booking: Dict) -> Optional[str]:
    value = product_booking(booking).get("duration")
    if value is None:
        value = booking.get("duration")
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return f"{int(value)} minutes"
    text = non_empty_str(value)
    if text and text.isdigit():
        return f"{text} minutes"
    return text


def extract_amount(booking: Dict) -> Decimal:
    return to_decimal(booking.get("totalPrice")) or to_decimal(booking.get("paidAmount")) or Decimal("0")


def extract_channel(booking: Dict) -> str:
    return (
        non_empty_str(dig(booking, "channel", "title"))
        or non_empty_str(dig(booking, "seller", "title"))
        or DEFAULT_CHANNEL
    )


def extract_customer(booking: Dict) -> CustomerInfo:
    sources = [s for s in (booking.get("customer"), booking.get("mainContact")) if isinstance(s, dict)]

    def pick(getter):
        for source in sources:
            value = getter(source)
            if value:
                return value
        return None

    return CustomerInfo(
        name=pick(lambda c: non_empty_str(f"{c.get('firstName') or ''} {c.get('lastName') or ''}")),
        email=pick(lambda c: non_empty_str(c.get("email"))),
        phone=pick(lambda c: non_empty_str(c.get("phoneNumber") or c.get("phone"))),
    )


def is_cancelled(booking: Dict) -> bool:
    status = product_booking(booking).get("status") or booking.get("status") or ""
    return str(status).upper() == "CANCELLED"


class BookingTransformer:
    """
    Turns raw Bokun bookings into CanonicalTourRecords.

    rate_title_lookup is the optional secondary lookup used by the language
    chain; pass a ProductRateLookup bound to the run's client, or None to
    skip that step.
    """

    def __init__(self, rate_title_lookup: Optional[Callable[[Any, Any], Optional[str]]] = None):
        self.rate_title_lookup = rate_title_lookup

    def _language_from_rate_title(self, booking: Dict) -> Optional[str]:
        if self.rate_title_lookup is None:
            return None
        pb = product_booking(booking)
        rate_id = dig(pb, "fields", "rateId")
        product_id = dig(pb, "product", "id")
        if rate_id is None or product_id is None:
            return None
        return self.rate_title_lookup(product_id, rate_id)

    def extract_language(self, booking: Dict) -> Optional[str]:
        return first_of(booking, [
            language_from_guide_note,
            language_from_booking_languages_note,
            self._language_from_rate_title,
            language_from_structured_field,
            lambda b: language_keyword(extract_title(b)),
        ])

    def extract_slot(self, booking: Dict) -> Tuple[date, str]:
        slot = first_of(booking, SLOT_EXTRACTORS)
        if slot is None:
            raise TransformError(
                f"No tour date found for booking {booking.get('confirmationCode', 'unknown')}"
            )
        tour_date, tour_time = slot
        return tour_date, start_time_str(booking) or tour_time or DEFAULT_TIME

    def transform(self, booking: Dict) -> CanonicalTourRecord:
        if not isinstance(booking, dict):
            raise TransformError(f"Expected a booking object, got {type(booking).__name__}")

        confirmation_code = non_empty_str(booking.get("confirmationCode"))
        upstream_booking_id = non_empty_str(booking.get("id"))
        if confirmation_code is None and upstream_booking_id is None:
            raise MissingIdentityError("Booking has no id or confirmation code")

        try:
            tour_date, tour_time = self.extract_slot(booking)
            product_id = dig(product_booking(booking), "product", "id")

            return CanonicalTourRecord(
                external_id=confirmation_code,
                upstream_booking_id=upstream_booking_id,
                confirmation_code=confirmation_code,
                product_id=positive_int(product_id),
                date=tour_date,
                time=tour_time,
                duration=extract_duration(booking),
                title=extract_title(booking),
                language=self.extract_language(booking),
                participant_count=first_of(booking, PARTICIPANT_EXTRACTORS) or 1,
                participant_names=parse_participant_names(booking),
                customer=extract_customer(booking),
                booking_channel=extract_channel(booking),
                amount=extract_amount(booking),
                cancelled=is_cancelled(booking),
                assignment_needed=True,
                guide_payment_status=GUIDE_PAYMENT_AWAITING,
                raw_payload=booking,
            )
        except ValidationError as e:
            raise TransformError(
                f"Booking {booking.get('confirmationCode', 'unknown')} has invalid fields: {e}"
            ) from e
