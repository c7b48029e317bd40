"""
Database namespace definitions for storage tables.

Defines table names and schema constants for SQLite storage.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class EventCacheNamespace:
    """
    Namespace for mirrored event cache partitions.

    One row per `(endpoint, contract, kind)`. Records are stored as a JSON
    array so the whole partition is replaced in one write.
    """

    TABLE_NAME: str = "event_cache"
    """Table name for cache partitions."""

    CREATE_TABLE: str = """
        CREATE TABLE IF NOT EXISTS event_cache (
            endpoint TEXT NOT NULL,
            contract TEXT NOT NULL,
            kind TEXT NOT NULL,
            last_block INTEGER NOT NULL,
            records TEXT NOT NULL,
            PRIMARY KEY (endpoint, contract, kind)
        )
    """
    """SQL to create the event cache table."""


EVENT_CACHE = EventCacheNamespace()
"""Event cache table definition."""
