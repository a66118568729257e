"""
Shared fixtures: in-memory database, fake clock, mocked Bokun transport.
"""

import os
import sys
from datetime import datetime, timedelta

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Must be set before toursync.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("CREDENTIALS_ENCRYPTION_KEY", "test-encryption-key")

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from toursync.database import Base
from toursync import models  # noqa: F401
from toursync.services.bokun_client import BokunClient, RateLimiter


class FakeClock:
    """Deterministic clock: sleep() advances time instead of blocking"""

    def __init__(self, start: datetime = datetime(2025, 6, 1, 8, 0, 0)):
        self.current = start
        self.mono = 1000.0
        self.sleeps = []

    def now(self) -> datetime:
        return self.current

    def monotonic(self) -> float:
        return self.mono

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(seconds)

    def advance(self, seconds: float) -> None:
        self.mono += seconds
        self.current += timedelta(seconds=seconds)


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def db_session():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


def make_bokun_client(handler, clock, max_requests=400, **kwargs) -> BokunClient:
    """BokunClient whose HTTP traffic is served by handler(request) -> httpx.Response"""
    return BokunClient(
        access_key="test-access-key",
        secret_key="test-secret-key",
        vendor_id="1234",
        base_url="https://api.bokun.test",
        http_client=httpx.Client(transport=httpx.MockTransport(handler)),
        rate_limiter=RateLimiter(max_requests=max_requests, window_seconds=60, clock=clock),
        clock=clock,
        request_id="test",
        **kwargs
    )
