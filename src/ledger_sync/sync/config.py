"""
Sync engine configuration constants.

Operational parameters for polling: intervals, thresholds, and cache bounds.
"""

from __future__ import annotations

from typing import Final

DEFAULT_POLL_INTERVAL_MS: Final[int] = 1000
"""Default delay between polls. One second keeps a classroom UI responsive."""

MIN_POLL_INTERVAL_MS: Final[int] = 500
"""Floor for the poll interval, bounding the request rate against the endpoint."""

MAX_RECORDS_PER_KIND: Final[int] = 1000
"""Maximum records cached per event kind before FIFO eviction."""

FAILURE_THRESHOLD: Final[int] = 3
"""Consecutive height-query failures before a disconnected snapshot is delivered."""

REFRESH_EVERY_POLLS: Final[int] = 5
"""Polls without height change after which a full fetch happens anyway."""

RECENT_ACTIVITY_LIMIT: Final[int] = 20
"""Maximum items in the recent activity feed."""

NEVER_SYNCED: Final[int] = 0
"""Watermark sentinel for a kind that has never been populated."""

DISCONNECTED_MESSAGE: Final[str] = "Connection lost. Retrying..."
"""Error text carried by the degraded snapshot."""

DEFAULT_SCALAR_NAMES: Final[tuple[str, ...]] = (
    "totalStaked",
    "getValidatorCount",
    "currentEpoch",
    "getTimeUntilNextEpoch",
    "getCurrentAPY",
    "contractBalance",
)
"""Aggregate contract reads included in every snapshot."""
