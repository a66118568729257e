"""
Clock abstraction

Supplies wall-clock UTC time (signature dates, sync markers, date windows),
a monotonic reading (rate window) and a sleep (429 back-off). Tests inject
a fake so timing is deterministic.
"""

import time
from datetime import datetime, timezone


class SystemClock:
    """Real clock backed by the time module"""

    def now(self) -> datetime:
        """Current UTC time as a naive datetime (matches DB columns)"""
        return datetime.now(timezone.utc).replace(tzinfo=None)

    def monotonic(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        time.sleep(seconds)


system_clock = SystemClock()
