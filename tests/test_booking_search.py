"""
Tests for BookingSearchStrategy

Tests cover:
- Variant fallback order and diagnostics
- Array-shaped responses (bare list or under "items")
- Pagination and cross-role de-duplication
- Exhaustion re-raises the last error
"""

import json

import httpx
import pytest

from conftest import make_bokun_client
from toursync.exceptions import TransportError, UnusableResponseError, UpstreamHttpError
from toursync.services.booking_search import BookingSearchStrategy
from datetime import date


START = date(2025, 6, 1)
END = date(2025, 6, 15)


def body_of(request):
    return json.loads(request.content) if request.content else None


class TestVariantFallback:

    def test_structured_500_falls_through_to_legacy_get(self, fake_clock):
        seen = []

        def handler(request):
            seen.append((request.method, request.url.path))
            if request.url.path == "/booking.json/booking-search":
                return httpx.Response(500, json={"message": "boom"})
            if request.method == "GET" and request.url.path == "/booking.json/search":
                return httpx.Response(200, json=[{"id": 1}, {"id": 2}])
            return httpx.Response(404)

        strategy = BookingSearchStrategy(make_bokun_client(handler, fake_clock))
        bookings = strategy.search(START, END)

        assert bookings == [{"id": 1}, {"id": 2}]
        assert strategy.last_variant == "legacy_get"
        assert [name for name, _ in strategy.variants].index(strategy.last_variant) == 2
        # Two roles for each structured variant, then the legacy GET
        assert seen == [
            ("POST", "/booking.json/booking-search"),
            ("POST", "/booking.json/booking-search"),
            ("POST", "/booking.json/booking-search"),
            ("POST", "/booking.json/booking-search"),
            ("GET", "/booking.json/search"),
        ]

    def test_structured_search_body(self, fake_clock):
        bodies = []

        def handler(request):
            bodies.append(body_of(request))
            return httpx.Response(200, json={"items": [], "totalHits": 0})

        strategy = BookingSearchStrategy(make_bokun_client(handler, fake_clock))
        assert strategy.search(START, END) == []
        assert strategy.last_variant == "structured_search"

        assert [b["bookingRole"] for b in bodies] == ["SUPPLIER", "SELLER"]
        assert bodies[0]["bookingStatuses"] == ["CONFIRMED", "PENDING", "CANCELLED"]
        assert bodies[0]["startDateRange"] == {
            "from": "2025-06-01T00:00:00.000Z",
            "to": "2025-06-15T23:59:59.999Z",
            "includeLower": True,
            "includeUpper": True,
        }

    def test_alternate_encoding_used_by_second_variant(self, fake_clock):
        bodies = []

        def handler(request):
            body = body_of(request)
            bodies.append(body)
            if body["startDateRange"]["from"].endswith("Z"):
                return httpx.Response(400, json={"message": "Bad date"})
            return httpx.Response(200, json={"items": [{"id": 7}], "totalHits": 1})

        strategy = BookingSearchStrategy(make_bokun_client(handler, fake_clock))
        bookings = strategy.search(START, END)

        assert bookings == [{"id": 7}]
        assert strategy.last_variant == "structured_search_alt"
        assert bodies[-1]["startDateRange"]["from"] == "2025-06-01T00:00:00+00:00"

    def test_non_list_payload_moves_to_next_variant(self, fake_clock):
        def handler(request):
            if request.method == "POST" and request.url.path == "/booking.json/search":
                return httpx.Response(200, json={"items": [{"id": 3}]})
            return httpx.Response(200, json={"results": "nope"})

        strategy = BookingSearchStrategy(make_bokun_client(handler, fake_clock))

        assert strategy.search(START, END) == [{"id": 3}]
        assert strategy.last_variant == "legacy_post"

    def test_all_variants_failing_reraises_last_error(self, fake_clock):
        def handler(request):
            if request.method == "POST" and request.url.path == "/booking.json/search":
                raise httpx.ConnectError("down", request=request)
            return httpx.Response(503, json={"message": "maintenance"})

        strategy = BookingSearchStrategy(make_bokun_client(handler, fake_clock))

        with pytest.raises(TransportError):
            strategy.search(START, END)
        assert strategy.last_variant is None

    def test_unusable_everywhere_raises_unusable(self, fake_clock):
        strategy = BookingSearchStrategy(
            make_bokun_client(lambda r: httpx.Response(200, json={"foo": 1}), fake_clock)
        )
        with pytest.raises(UnusableResponseError):
            strategy.search(START, END)


class TestPagination:

    def test_pages_until_total_hits(self, fake_clock):
        supplier_pages = {
            0: [{"id": 1}, {"id": 2}],
            1: [{"id": 3}, {"id": 4}],
            2: [{"id": 5}],
        }
        requested = []

        def handler(request):
            body = body_of(request)
            if body["bookingRole"] == "SUPPLIER":
                requested.append(body["page"])
                return httpx.Response(200, json={"items": supplier_pages[body["page"]], "totalHits": 5})
            return httpx.Response(200, json={"items": [], "totalHits": 0})

        strategy = BookingSearchStrategy(make_bokun_client(handler, fake_clock), page_size=2)
        bookings = strategy.search(START, END)

        assert [b["id"] for b in bookings] == [1, 2, 3, 4, 5]
        assert requested == [0, 1, 2]

    def test_max_pages_caps_requests(self, fake_clock):
        calls = []

        def handler(request):
            body = body_of(request)
            calls.append((body["bookingRole"], body["page"]))
            return httpx.Response(200, json={
                "items": [{"id": f"{body['bookingRole']}-{body['page']}"}],
                "totalHits": 1000,
            })

        strategy = BookingSearchStrategy(make_bokun_client(handler, fake_clock), page_size=1, max_pages=3)
        bookings = strategy.search(START, END)

        assert len(bookings) == 6
        assert calls.count(("SUPPLIER", 2)) == 1
        assert ("SUPPLIER", 3) not in calls

    def test_roles_are_merged_without_duplicates(self, fake_clock):
        def handler(request):
            if body_of(request)["bookingRole"] == "SUPPLIER":
                return httpx.Response(200, json={"items": [{"id": 1}, {"id": 2}], "totalHits": 2})
            return httpx.Response(200, json={"items": [{"id": 2}, {"id": 3}], "totalHits": 2})

        strategy = BookingSearchStrategy(make_bokun_client(handler, fake_clock))

        assert [b["id"] for b in strategy.search(START, END)] == [1, 2, 3]

    def test_one_failing_role_is_tolerated(self, fake_clock):
        def handler(request):
            if body_of(request)["bookingRole"] == "SUPPLIER":
                return httpx.Response(403, json={"message": "Not a supplier"})
            return httpx.Response(200, json=[{"id": 9}])

        strategy = BookingSearchStrategy(make_bokun_client(handler, fake_clock))

        assert strategy.search(START, END) == [{"id": 9}]
        assert strategy.last_variant == "structured_search"

    def test_both_roles_failing_fails_the_variant(self, fake_clock):
        def handler(request):
            if request.url.path == "/booking.json/booking-search":
                return httpx.Response(403, json={"message": "Forbidden"})
            return httpx.Response(404, json={"message": "Not found"})

        strategy = BookingSearchStrategy(make_bokun_client(handler, fake_clock))

        with pytest.raises(UpstreamHttpError) as exc_info:
            strategy.search(START, END)
        assert exc_info.value.status_code == 404
