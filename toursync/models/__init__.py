# Models package
from .tour import Tour, ExternalSource, GUIDE_PAYMENT_AWAITING
from .bokun_config import BokunConfig
from .sync_log import SyncLog, SyncType, SyncStatus

__all__ = [
    "Tour", "ExternalSource", "GUIDE_PAYMENT_AWAITING",
    "BokunConfig",
    "SyncLog", "SyncType", "SyncStatus",
]
