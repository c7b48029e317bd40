"""
Event cache for incrementally synchronized log records.

Why Cache Events?
-----------------
The ledger's event log only grows. Re-reading it from block 0 on every poll
makes each poll more expensive than the last, without bound. The cache keeps
the records already retrieved plus, per event kind, the highest block already
incorporated (the *watermark*). The next poll then only asks for the blocks
after the watermark.

How It Works
------------
The cache is partitioned by event kind. Each partition holds:

1. **Watermark**: highest block number incorporated for the kind
2. **Records**: retrieved records, oldest first

Two merge operations exist:

- **replace**: first population of a kind (a backfill from block 0)
- **append**: an incremental top-up covering only blocks after the watermark

Appending with no new records is legitimate: it advances the watermark, so
an empty block range is not fetched again on the next poll.

Memory Safety
-------------
Each partition is bounded by `max_records_per_kind`. On overflow, FIFO
eviction drops the oldest records. Eviction only trims this cache, never the
ledger: history beyond the bound is available again through a fresh backfill.

The cache performs no I/O.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from ledger_sync.events import EventKind, LogRecord
from ledger_sync.types import WatermarkRegressionError

from .config import MAX_RECORDS_PER_KIND, NEVER_SYNCED


@dataclass(slots=True)
class TypedCacheEntry:
    """
    Cached state for a single event kind.

    Invariants:

    - `last_incorporated_block >= record.block_number` for every record
    - `len(records) <= max_records_per_kind` of the owning cache
    """

    kind: EventKind
    """The event kind this entry holds."""

    last_incorporated_block: int = NEVER_SYNCED
    """Highest block number already incorporated (the watermark)."""

    records: list[LogRecord] = field(default_factory=list)
    """Cached records, oldest first."""


@dataclass(frozen=True, slots=True)
class KindStats:
    """Per-kind cache diagnostics."""

    count: int
    """Number of cached records."""

    last_block: int
    """Watermark of the kind."""


@dataclass(frozen=True, slots=True)
class CacheStats:
    """Snapshot of cache occupancy for diagnostics."""

    event_types: int
    """Number of populated kinds."""

    total_events: int
    """Records cached across all kinds."""

    by_type: dict[EventKind, KindStats]
    """Per-kind counts and watermarks."""


@dataclass(slots=True)
class EventCache:
    """
    Bounded, type-partitioned cache of log records with per-kind watermarks.

    Owned by exactly one sync engine. Not shared between engines.
    """

    max_records_per_kind: int = MAX_RECORDS_PER_KIND
    """Maximum records kept per kind; the oldest are evicted first."""

    _entries: dict[EventKind, TypedCacheEntry] = field(default_factory=dict)
    """Partition storage keyed by event kind."""

    def __post_init__(self) -> None:
        if self.max_records_per_kind < 1:
            raise ValueError(
                f"max_records_per_kind must be positive, got {self.max_records_per_kind}"
            )

    def __len__(self) -> int:
        """Return the number of cached records across all kinds."""
        return sum(len(entry.records) for entry in self._entries.values())

    def __contains__(self, kind: EventKind) -> bool:
        """Check if a kind has been populated."""
        return kind in self._entries

    def last_incorporated_block(self, kind: EventKind) -> int:
        """
        Get the watermark for an event kind.

        Returns 0 if the kind was never populated. Zero is the reserved
        "never synced" sentinel: callers must not treat block 0 as already
        incorporated unless they explicitly merged through it.
        """
        entry = self._entries.get(kind)
        return entry.last_incorporated_block if entry is not None else NEVER_SYNCED

    def records(self, kind: EventKind) -> tuple[LogRecord, ...]:
        """Get the cached records of a kind, oldest first."""
        entry = self._entries.get(kind)
        return tuple(entry.records) if entry is not None else ()

    def replace(
        self,
        kind: EventKind,
        records: Sequence[LogRecord],
        through_block: int,
    ) -> tuple[LogRecord, ...]:
        """
        Populate a kind from scratch.

        Used for the first population of a kind. Any prior entry is discarded.

        Args:
            kind: The event kind to populate.
            records: Records covering blocks `[0, through_block]`, oldest first.
            through_block: Block number the records were fetched up to.

        Returns:
            The stored records after trimming.
        """
        self._check_records(kind, records, through_block)

        entry = TypedCacheEntry(
            kind=kind,
            last_incorporated_block=through_block,
            records=list(records),
        )
        self._trim(entry)
        self._entries[kind] = entry
        return tuple(entry.records)

    def append(
        self,
        kind: EventKind,
        new_records: Sequence[LogRecord],
        through_block: int,
    ) -> tuple[LogRecord, ...]:
        """
        Merge an incremental top-up into a kind.

        Concatenates the new records onto the stored ones, re-trims to the
        size bound, and advances the watermark. Call it even when
        `new_records` is empty, to record that the range holds nothing.

        Args:
            kind: The event kind to top up.
            new_records: Records from blocks after the watermark, oldest first.
            through_block: Block number the records were fetched up to.

        Returns:
            The full resulting record sequence of the kind.

        Raises:
            WatermarkRegressionError: If `through_block` is below the current watermark.
        """
        self.check_merge(kind, new_records, through_block)

        entry = self._entries.get(kind)
        if entry is None:
            entry = TypedCacheEntry(kind=kind)
            self._entries[kind] = entry

        entry.records.extend(new_records)
        entry.last_incorporated_block = through_block
        self._trim(entry)
        return tuple(entry.records)

    def check_merge(
        self,
        kind: EventKind,
        records: Sequence[LogRecord],
        through_block: int,
    ) -> None:
        """
        Validate a top-up without changing anything.

        Lets a caller merging several kinds reject the whole batch before any
        watermark moves.

        Raises:
            WatermarkRegressionError: If `through_block` is below the current watermark.
            ValueError: If a record is of another kind or beyond `through_block`.
        """
        current = self.last_incorporated_block(kind)

        # A range that ends before the watermark means the caller lost track
        # of what it already merged. Refuse rather than rewind the watermark.
        if through_block < current:
            raise WatermarkRegressionError(kind, current=current, requested=through_block)

        self._check_records(kind, records, through_block)

    def clear(self, kind: EventKind) -> None:
        """Drop a kind, forcing a backfill on the next poll."""
        self._entries.pop(kind, None)

    def clear_all(self) -> None:
        """Drop every kind."""
        self._entries.clear()

    def size(self, kind: EventKind) -> int:
        """Number of cached records of a kind."""
        entry = self._entries.get(kind)
        return len(entry.records) if entry is not None else 0

    def stats(self) -> CacheStats:
        """Summarize occupancy and watermarks."""
        by_type = {
            kind: KindStats(count=len(entry.records), last_block=entry.last_incorporated_block)
            for kind, entry in self._entries.items()
        }
        return CacheStats(
            event_types=len(by_type),
            total_events=sum(s.count for s in by_type.values()),
            by_type=by_type,
        )

    def entries(self) -> list[TypedCacheEntry]:
        """
        Export every partition for persistence.

        The returned entries are copies; mutating them does not affect the cache.
        """
        return [
            TypedCacheEntry(
                kind=entry.kind,
                last_incorporated_block=entry.last_incorporated_block,
                records=list(entry.records),
            )
            for entry in self._entries.values()
        ]

    def restore(self, entries: Iterable[TypedCacheEntry]) -> None:
        """
        Load previously exported partitions, replacing current state.

        Each entry passes through `replace`, so size bounds and watermark
        invariants hold even if the persisted mirror was written with a
        larger bound.
        """
        self._entries.clear()
        for entry in entries:
            self.replace(entry.kind, entry.records, entry.last_incorporated_block)

    def _check_records(
        self,
        kind: EventKind,
        records: Sequence[LogRecord],
        through_block: int,
    ) -> None:
        """Reject records of another kind or beyond the merge range."""
        for record in records:
            if record.kind != kind:
                raise ValueError(f"Record of kind {record.kind} merged into {kind}")
            if record.block_number > through_block:
                raise ValueError(
                    f"{kind} record at block {record.block_number} "
                    f"is beyond through_block {through_block}"
                )

    def _trim(self, entry: TypedCacheEntry) -> None:
        """
        Evict the oldest records beyond the size bound.

        Records are kept in merge order, so the head of the list is always the
        oldest. Slicing the head off keeps the most recent records.
        """
        overflow = len(entry.records) - self.max_records_per_kind
        if overflow > 0:
            del entry.records[:overflow]
