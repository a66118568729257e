"""
Sync Error Taxonomy

Run-level errors (configuration, exhausted search) abort a sync run and
propagate to the caller. Record-level errors (transform, persistence) are
caught by the orchestrator and appended to the run's error list.
"""

from typing import Optional


class SyncError(Exception):
    """Base class for every error raised by the sync engine"""


class TransportError(SyncError):
    """No HTTP response was obtained (DNS, connect, timeout, TLS...)"""


class UpstreamHttpError(SyncError):
    """Upstream answered with a status code >= 400"""

    def __init__(self, status_code: int, message: Optional[str] = None):
        self.status_code = status_code
        self.message = message or f"HTTP Error {status_code}"
        super().__init__(f"HTTP Error {status_code}: {self.message}" if message else self.message)


class RateLimitLocalError(SyncError):
    """The local request budget is spent; raised before touching the network"""

    def __init__(self, wait_seconds: float):
        self.wait_seconds = wait_seconds
        super().__init__(f"Rate limit exceeded. Please wait {wait_seconds:.0f} seconds.")


class UnusableResponseError(SyncError):
    """A search variant answered successfully but not with a list of bookings"""


class TransformError(SyncError):
    """A single upstream booking could not be mapped to a tour record"""


class MissingIdentityError(TransformError):
    """Booking carries neither an upstream id nor a confirmation code"""


class PersistenceError(SyncError):
    """Insert/update of a single tour record failed"""


class SyncConfigurationError(SyncError):
    """Sync is disabled or credentials are missing"""


class CredentialDecryptionError(SyncConfigurationError):
    """Stored credentials could not be decrypted with the configured key"""
