"""
Contract events as typed, immutable log records.

The staking contract emits five kinds of events. Each kind is decoded once at
the transport boundary into its own record model; everything downstream works
with named fields only.
"""

from .activity import ActivityItem, activity_from_record, recent_activity, roster
from .kinds import EVENT_SIGNATURES, ROSTER_KINDS, EventKind
from .records import (
    LOG_RECORD_ADAPTER,
    LOG_RECORDS_ADAPTER,
    RECORD_TYPES,
    BaseLogRecord,
    BlockProposedRecord,
    LogRecord,
    MessagePostedRecord,
    SlashedRecord,
    StakedRecord,
    WithdrawnRecord,
    sort_records,
)

__all__ = [
    # Kinds
    "EventKind",
    "EVENT_SIGNATURES",
    "ROSTER_KINDS",
    # Records
    "BaseLogRecord",
    "LogRecord",
    "StakedRecord",
    "WithdrawnRecord",
    "MessagePostedRecord",
    "SlashedRecord",
    "BlockProposedRecord",
    "RECORD_TYPES",
    "LOG_RECORD_ADAPTER",
    "LOG_RECORDS_ADAPTER",
    "sort_records",
    # Activity
    "ActivityItem",
    "activity_from_record",
    "recent_activity",
    "roster",
]
