# Services package
from .bokun_client import BokunClient, RateLimiter, BokunResponse
from .booking_search import BookingSearchStrategy
from .booking_transformer import BookingTransformer, ProductRateLookup
from .reconciliation import ReconciliationEngine, SqlAlchemyTourStore, UpsertOutcome
from .sync_orchestrator import SyncOrchestrator, SyncRunResult, trigger_sync

__all__ = [
    "BokunClient", "RateLimiter", "BokunResponse",
    "BookingSearchStrategy",
    "BookingTransformer", "ProductRateLookup",
    "ReconciliationEngine", "SqlAlchemyTourStore", "UpsertOutcome",
    "SyncOrchestrator", "SyncRunResult", "trigger_sync",
]
