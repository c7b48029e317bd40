"""
Abstract store interface for the event cache mirror.

Defines the Protocol that all cache stores must follow.
Uses structural subtyping for flexibility.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from ledger_sync.sync.event_cache import TypedCacheEntry


class CacheStore(Protocol):
    """
    Protocol for persisting event cache partitions between runs.

    The store is a warm-start hint, never a source of truth: the engine
    treats anything it loads as an ordinary cache state and keeps polling
    the ledger from the stored watermarks.

    Partitions are scoped by endpoint and contract address, so switching
    either never resurrects records of another ledger.
    """

    def load(self, endpoint: str, contract: str) -> list[TypedCacheEntry]:
        """
        Load every stored partition of one ledger.

        Args:
            endpoint: Ledger endpoint URL.
            contract: Contract address.

        Returns:
            Stored entries, empty if nothing was saved.
        """
        ...

    def save(self, endpoint: str, contract: str, entries: Iterable[TypedCacheEntry]) -> None:
        """
        Replace the stored partitions of one ledger.

        Args:
            endpoint: Ledger endpoint URL.
            contract: Contract address.
            entries: Current cache partitions.
        """
        ...

    def clear(self, endpoint: str, contract: str) -> None:
        """Drop every stored partition of one ledger."""
        ...

    def close(self) -> None:
        """Release the store's resources."""
        ...
