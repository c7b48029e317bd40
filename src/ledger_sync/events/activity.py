"""Recent activity feed items derived from log records."""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence

from ledger_sync.types import FrozenModel, format_ether

from .kinds import EventKind
from .records import (
    BlockProposedRecord,
    LogRecord,
    MessagePostedRecord,
    SlashedRecord,
    StakedRecord,
    WithdrawnRecord,
)


class ActivityItem(FrozenModel):
    """
    One line of the recent activity feed.

    A flattened, display-oriented view of a record. Amounts are rendered as
    ether strings because that is how every consumer shows them.
    """

    kind: EventKind
    """Event kind of the underlying record."""

    actor: str
    """Account the activity is about."""

    block_number: int
    """Ledger block that emitted the record."""

    log_index: int = 0
    """Position of the record within its block."""

    amount: str | None = None
    """Moved amount in ether, when the event carries one."""

    reward: str | None = None
    """Reward in ether, when the event carries one."""

    detail: str | None = None
    """Free text: slash reason, message body, or proposed block number."""


def activity_from_record(record: LogRecord) -> ActivityItem:
    """Flatten a typed record into a feed item."""
    match record:
        case StakedRecord():
            return ActivityItem(
                kind=EventKind.STAKED,
                actor=record.validator,
                block_number=record.block_number,
                log_index=record.log_index,
                amount=format_ether(record.amount),
            )
        case WithdrawnRecord():
            return ActivityItem(
                kind=EventKind.WITHDRAWN,
                actor=record.validator,
                block_number=record.block_number,
                log_index=record.log_index,
                amount=format_ether(record.amount),
                reward=format_ether(record.reward),
            )
        case MessagePostedRecord():
            return ActivityItem(
                kind=EventKind.NEW_MESSAGE,
                actor=record.sender,
                block_number=record.block_number,
                log_index=record.log_index,
                detail=record.text,
            )
        case SlashedRecord():
            return ActivityItem(
                kind=EventKind.SLASHED,
                actor=record.validator,
                block_number=record.block_number,
                log_index=record.log_index,
                amount=format_ether(record.amount),
                detail=record.reason,
            )
        case BlockProposedRecord():
            return ActivityItem(
                kind=EventKind.BLOCK_PROPOSED,
                actor=record.proposer,
                block_number=record.block_number,
                log_index=record.log_index,
                reward=format_ether(record.reward),
                detail=str(record.proposed_block),
            )
    raise TypeError(f"Unsupported record type: {type(record).__name__}")


def recent_activity(
    records_by_kind: Mapping[EventKind, Sequence[LogRecord]],
    limit: int,
) -> tuple[ActivityItem, ...]:
    """
    Merge every kind's records into a newest-first feed.

    Kinds are visited in declaration order and records within a kind oldest
    first, then the merged list is sorted by ledger position descending.
    The sort is stable, so the result is deterministic for equal positions.

    Args:
        records_by_kind: Cached records per kind.
        limit: Maximum number of items to return.

    Returns:
        At most `limit` items, newest first.
    """
    merged: list[LogRecord] = [
        record for kind in EventKind for record in records_by_kind.get(kind, ())
    ]
    merged.sort(key=lambda r: r.position, reverse=True)
    return tuple(activity_from_record(record) for record in merged[:limit])


def roster(
    records_by_kind: Mapping[EventKind, Iterable[LogRecord]],
    kinds: Iterable[EventKind],
) -> frozenset[str]:
    """Distinct actor addresses appearing in the given kinds."""
    return frozenset(
        record.actor for kind in kinds for record in records_by_kind.get(kind, ())
    )
