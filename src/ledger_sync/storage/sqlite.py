"""
SQLite mirror of the event cache.

Persists each cache partition as one row:

- keyed by endpoint, contract address, and event kind
- holding the watermark and the records as a JSON array

Records are encoded with the discriminated-union adapter, so every row
decodes back into the right typed variant.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Iterable
from pathlib import Path

from ledger_sync.events import LOG_RECORDS_ADAPTER, EventKind
from ledger_sync.sync.event_cache import TypedCacheEntry

from .namespaces import EVENT_CACHE


class SQLiteCacheStore:
    """
    SQLite implementation of the CacheStore protocol.

    Stores cache partitions in a single SQLite file.
    Decoding happens on load; malformed rows raise `ValueError`.
    """

    def __init__(self, path: Path | str) -> None:
        """
        Initialize the store.

        Creates the database file and table if they don't exist.

        Args:
            path: Path to SQLite database file.
                  Use ":memory:" for in-memory database.
        """
        self._path = Path(path) if isinstance(path, str) else path
        self._conn = sqlite3.connect(str(self._path), check_same_thread=False)

        # Row factory enables dict-like access: row["column_name"].
        self._conn.row_factory = sqlite3.Row

        self._init_schema()

    def _init_schema(self) -> None:
        """Create tables if they don't exist."""
        self._conn.execute(EVENT_CACHE.CREATE_TABLE)
        self._conn.commit()

    def load(self, endpoint: str, contract: str) -> list[TypedCacheEntry]:
        """Load every stored partition of one ledger."""
        cursor = self._conn.execute(
            f"""
            SELECT kind, last_block, records FROM {EVENT_CACHE.TABLE_NAME}
            WHERE endpoint = ? AND contract = ?
            """,
            (endpoint, contract),
        )
        return [
            TypedCacheEntry(
                kind=EventKind(row["kind"]),
                last_incorporated_block=int(row["last_block"]),
                records=LOG_RECORDS_ADAPTER.validate_json(row["records"]),
            )
            for row in cursor.fetchall()
        ]

    def save(self, endpoint: str, contract: str, entries: Iterable[TypedCacheEntry]) -> None:
        """Replace the stored partitions of one ledger in a single transaction."""
        rows = [
            (
                endpoint,
                contract,
                str(entry.kind),
                entry.last_incorporated_block,
                LOG_RECORDS_ADAPTER.dump_json(entry.records).decode("utf-8"),
            )
            for entry in entries
        ]

        # The connection context manager commits on success and rolls back
        # on error, so a partially written mirror is never left behind.
        with self._conn:
            self._conn.execute(
                f"DELETE FROM {EVENT_CACHE.TABLE_NAME} WHERE endpoint = ? AND contract = ?",
                (endpoint, contract),
            )
            self._conn.executemany(
                f"""
                INSERT INTO {EVENT_CACHE.TABLE_NAME}
                    (endpoint, contract, kind, last_block, records)
                VALUES (?, ?, ?, ?, ?)
                """,
                rows,
            )

    def clear(self, endpoint: str, contract: str) -> None:
        """Drop every stored partition of one ledger."""
        with self._conn:
            self._conn.execute(
                f"DELETE FROM {EVENT_CACHE.TABLE_NAME} WHERE endpoint = ? AND contract = ?",
                (endpoint, contract),
            )

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Close database connection."""
        self._conn.close()

    def __enter__(self) -> SQLiteCacheStore:
        """Context manager entry."""
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.close()
