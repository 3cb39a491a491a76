"""Write path: keeps the offer view in step with the six entity streams."""
from __future__ import annotations

from offer_search.sync.consumer import PoolMetrics, SyncWorkerPool, decode_command
from offer_search.sync.handlers import HANDLER_TYPES, EntityHandler
from offer_search.sync.models import SyncOutcome, SyncStatus
from offer_search.sync.synchronizer import ViewSynchronizer

__all__ = [
    "HANDLER_TYPES",
    "EntityHandler",
    "PoolMetrics",
    "SyncOutcome",
    "SyncStatus",
    "SyncWorkerPool",
    "ViewSynchronizer",
    "decode_command",
]
