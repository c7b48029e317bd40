"""
Storage module for the warm-start cache mirror.

Provides a store abstraction for persisting event cache partitions.
Uses SQLite for simplicity and correctness.
"""

from .namespaces import EventCacheNamespace
from .sqlite import SQLiteCacheStore
from .store import CacheStore

__all__ = [
    "CacheStore",
    "SQLiteCacheStore",
    "EventCacheNamespace",
]
