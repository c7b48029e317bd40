"""
Incremental synchronization of ledger state.

The engine polls the ledger, fetches only what is new, keeps a bounded
per-kind event cache, and notifies subscribers when the consolidated view
actually changed.
"""

from .config import (
    DEFAULT_POLL_INTERVAL_MS,
    DEFAULT_SCALAR_NAMES,
    DISCONNECTED_MESSAGE,
    FAILURE_THRESHOLD,
    MAX_RECORDS_PER_KIND,
    MIN_POLL_INTERVAL_MS,
    NEVER_SYNCED,
    RECENT_ACTIVITY_LIMIT,
    REFRESH_EVERY_POLLS,
)
from .engine import EngineStats, Subscriber, SyncEngine, Unsubscribe
from .event_cache import CacheStats, EventCache, KindStats, TypedCacheEntry
from .snapshot import SyncSnapshot, fingerprint

__all__ = [
    # Engine
    "SyncEngine",
    "EngineStats",
    "Subscriber",
    "Unsubscribe",
    # Cache
    "EventCache",
    "TypedCacheEntry",
    "CacheStats",
    "KindStats",
    # Snapshot
    "SyncSnapshot",
    "fingerprint",
    # Configuration
    "DEFAULT_POLL_INTERVAL_MS",
    "DEFAULT_SCALAR_NAMES",
    "DISCONNECTED_MESSAGE",
    "FAILURE_THRESHOLD",
    "MAX_RECORDS_PER_KIND",
    "MIN_POLL_INTERVAL_MS",
    "NEVER_SYNCED",
    "RECENT_ACTIVITY_LIMIT",
    "REFRESH_EVERY_POLLS",
]
