"""
Bokun API Client

A wrapper for the Bokun REST API that handles:
- HMAC-SHA1 request signing (X-Bokun-Date / X-Bokun-AccessKey / X-Bokun-Signature)
- A local fixed-window rate limiter (400 requests per 60s by default)
- Bounded retry on HTTP 429 using the server's retryAfter hint (3 attempts,
  each followed by the requested wait)
- Structured error mapping onto the sync error taxonomy

The limiter is owned by one client instance. It is a best-effort local
guard; the real ceiling is enforced server-side through 429 responses.
"""

import base64
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from ..config import settings
from ..exceptions import RateLimitLocalError, TransportError, UpstreamHttpError
from ..utils.clock import SystemClock, system_clock

logger = logging.getLogger(__name__)

SIGNATURE_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass
class RateDecision:
    """Outcome of RateLimiter.reserve()"""
    allowed: bool
    wait_seconds: float = 0.0


@dataclass
class BokunResponse:
    """Successful (2xx) Bokun API response"""
    status_code: int
    data: Any = None


class RateLimiter:
    """
    Fixed-window request counter.

    The window starts at the first reservation and resets once
    window_seconds have elapsed since its start. Reservations beyond
    max_requests inside one window are rejected with the remaining wait.
    """

    def __init__(
        self,
        max_requests: int = 400,
        window_seconds: float = 60.0,
        clock: Optional[SystemClock] = None
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.clock = clock or system_clock
        self.request_count = 0
        self.window_start: Optional[float] = None

    def reserve(self) -> RateDecision:
        """Count one request against the current window, or reject it."""
        now = self.clock.monotonic()

        if self.window_start is None or now - self.window_start >= self.window_seconds:
            self.request_count = 0
            self.window_start = now

        if self.request_count >= self.max_requests:
            elapsed = now - self.window_start
            return RateDecision(allowed=False, wait_seconds=max(0.0, self.window_seconds - elapsed))

        self.request_count += 1
        return RateDecision(allowed=True)

    @property
    def remaining(self) -> int:
        return max(0, self.max_requests - self.request_count)


class BokunClient:
    """
    Signed client for the Bokun booking platform.

    Every call goes through call(), which reserves a rate-limit slot, signs
    the request and retries 429 responses up to max_attempts times in total.
    """

    def __init__(
        self,
        access_key: str,
        secret_key: str,
        vendor_id: Optional[str] = None,
        base_url: Optional[str] = None,
        http_client: Optional[httpx.Client] = None,
        rate_limiter: Optional[RateLimiter] = None,
        clock: Optional[SystemClock] = None,
        request_id: Optional[str] = None
    ):
        self.access_key = access_key
        self.secret_key = secret_key
        self.vendor_id = vendor_id
        self.base_url = (base_url or settings.bokun_base_url).rstrip("/")
        self.clock = clock or system_clock
        self.rate_limiter = rate_limiter or RateLimiter(
            max_requests=settings.bokun_rate_limit,
            window_seconds=settings.bokun_rate_window_seconds,
            clock=self.clock
        )
        self.http_client = http_client or httpx.Client(timeout=settings.bokun_timeout_seconds)
        self.request_id = request_id or "no-request-id"

        self.max_attempts = settings.bokun_max_attempts
        self.default_retry_after = settings.bokun_default_retry_after

    def close(self):
        self.http_client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    # ==================
    # Signing
    # ==================

    def sign(self, date_str: str, method: str, path: str) -> str:
        """base64(HMAC-SHA1(secret, date + accessKey + method + path))"""
        string_to_sign = f"{date_str}{self.access_key}{method.upper()}{path}"
        digest = hmac.new(
            self.secret_key.encode("utf-8"),
            string_to_sign.encode("utf-8"),
            hashlib.sha1
        ).digest()
        return base64.b64encode(digest).decode("ascii")

    def _get_headers(self, method: str, path: str) -> Dict[str, str]:
        date_str = self.clock.now().strftime(SIGNATURE_DATE_FORMAT)
        return {
            "X-Bokun-Date": date_str,
            "X-Bokun-AccessKey": self.access_key,
            "X-Bokun-Signature": self.sign(date_str, method, path),
            "Content-Type": "application/json;charset=UTF-8",
            "User-Agent": "toursync/1.0",
            "X-Request-ID": self.request_id,
        }

    # ==================
    # Transport
    # ==================

    @staticmethod
    def _parse_body(response: httpx.Response) -> Any:
        try:
            return response.json()
        except (json.JSONDecodeError, ValueError):
            return None

    @staticmethod
    def _error_message(data: Any, text: str) -> Optional[str]:
        if isinstance(data, dict):
            message = data.get("message") or data.get("error")
            if message:
                return str(message)
        if text:
            return text[:200]
        return None

    def _retry_after(self, data: Any) -> float:
        if isinstance(data, dict) and data.get("retryAfter") is not None:
            try:
                return float(data["retryAfter"])
            except (TypeError, ValueError):
                pass
        return float(self.default_retry_after)

    def _send_once(self, method: str, path: str, body: Optional[Dict]) -> httpx.Response:
        decision = self.rate_limiter.reserve()
        if not decision.allowed:
            logger.warning(
                f"[{self.request_id}] Local rate limit reached, wait {decision.wait_seconds:.0f}s"
            )
            raise RateLimitLocalError(decision.wait_seconds)

        url = f"{self.base_url}{path}"
        headers = self._get_headers(method, path)
        try:
            return self.http_client.request(
                method.upper(),
                url,
                headers=headers,
                json=body if body is not None and method.upper() in ("POST", "PUT") else None,
            )
        except httpx.TransportError as e:
            logger.error(f"[{self.request_id}] {method} {path} transport failure: {e}")
            raise TransportError(str(e)) from e

    def call(self, method: str, path: str, body: Optional[Dict] = None) -> BokunResponse:
        """
        Make a signed request.

        Raises:
            RateLimitLocalError: local budget exhausted (no network call made)
            UpstreamHttpError: any status >= 400, 429 after max_attempts
            TransportError: no response obtained
        """
        attempt = 0
        while True:
            attempt += 1
            start = self.clock.monotonic()
            response = self._send_once(method, path, body)
            duration_ms = int((self.clock.monotonic() - start) * 1000)
            data = self._parse_body(response)
            status_code = response.status_code

            logger.debug(
                f"[{self.request_id}] {method} {path} -> {status_code} ({duration_ms}ms, attempt {attempt})"
            )

            if status_code < 400:
                return BokunResponse(status_code=status_code, data=data)

            if status_code == 429:
                # Every 429 is followed by the server-requested wait, including the last one
                delay = self._retry_after(data)
                logger.warning(
                    f"[{self.request_id}] Rate limited (429) on {path}, "
                    f"attempt {attempt}/{self.max_attempts}, waiting {delay:.0f}s"
                )
                self.clock.sleep(delay)
                if attempt >= self.max_attempts:
                    logger.error(f"[{self.request_id}] Giving up on {path} after {attempt} throttled attempts")
                    raise UpstreamHttpError(429, self._error_message(data, response.text))
                continue

            message = self._error_message(data, response.text)
            logger.warning(f"[{self.request_id}] {method} {path} failed: HTTP {status_code} {message or ''}")
            raise UpstreamHttpError(status_code, message)

    # ==================
    # Operations
    # ==================

    def search_bookings(self, body: Dict) -> BokunResponse:
        return self.call("POST", "/booking.json/booking-search", body)

    def get_product(self, product_id: Any) -> BokunResponse:
        """Activity details, including its rates (used for language lookup)"""
        return self.call("GET", f"/activity.json/{product_id}")

    def search_activities(self, page: int = 1, page_size: int = 20) -> BokunResponse:
        return self.call("POST", "/activity.json/search", {"page": page, "pageSize": page_size})

    def test_connection(self) -> Dict[str, Any]:
        """Cheap authenticated call used by the dashboard's connection test"""
        preview = f"{self.access_key[:8]}..." if self.access_key else None
        try:
            self.search_activities(1, 1)
            logger.info(f"[{self.request_id}] Bokun connection test successful")
            return {
                "success": True,
                "message": "Connection successful",
                "base_url": self.base_url,
                "access_key_preview": preview,
            }
        except UpstreamHttpError as e:
            logger.warning(f"[{self.request_id}] Bokun connection test failed: {e}")
            return {
                "success": False,
                "error": str(e),
                "error_code": e.status_code,
                "base_url": self.base_url,
                "access_key_preview": preview,
            }
        except (TransportError, RateLimitLocalError) as e:
            logger.warning(f"[{self.request_id}] Bokun connection test failed: {e}")
            return {
                "success": False,
                "error": str(e),
                "base_url": self.base_url,
                "access_key_preview": preview,
            }
