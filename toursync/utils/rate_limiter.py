"""
Rate Limiter Configuration

slowapi limiter for the API's own endpoints (manual sync triggers).
Storage defaults to in-memory; set RATE_LIMIT_STORAGE_URI (e.g.
redis://host:6379) when running several API instances.

Not to be confused with the Bokun client's outbound RateLimiter.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address
from fastapi import Request

from ..config import settings


def get_real_client_ip(request: Request) -> str:
    """Get real client IP behind reverse proxy"""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # Take the first IP (original client)
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    return get_remote_address(request)


def create_limiter() -> Limiter:
    return Limiter(
        key_func=get_real_client_ip,
        storage_uri=settings.rate_limit_storage_uri,
        enabled=settings.rate_limit_enabled,
    )


# Global rate limiter instance
limiter = create_limiter()
