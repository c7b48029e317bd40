"""
Consolidated snapshots and their fingerprints.

A snapshot is the only data contract between the engine and its consumers.
Each successful poll produces a new one; consumers are notified only when its
fingerprint differs from the previous snapshot's.

Fingerprint
-----------
The fingerprint is a SHA-256 digest over an explicitly ordered list of field
values. Nothing depends on dict or set iteration order:

- scalars are visited in sorted name order
- kinds are visited in `EventKind` declaration order
- records contribute `fingerprint_fields()`, a fixed per-variant field order

The capture time is excluded: two polls that saw the same ledger content must
produce the same fingerprint. The roster and activity feed are excluded too,
since both are pure functions of the records.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any

from pydantic import Field

from ledger_sync.events import ActivityItem, EventKind, LogRecord
from ledger_sync.types import FrozenModel

from .config import DISCONNECTED_MESSAGE


class SyncSnapshot(FrozenModel):
    """Point-in-time view of scalars and cached records."""

    connected: bool
    """False only for the degraded snapshot delivered after repeated failures."""

    height: int = 0
    """Ledger height the snapshot was assembled at."""

    scalars: dict[str, str] = Field(default_factory=dict)
    """Aggregate contract reads by name, rendered as strings."""

    records_by_kind: dict[EventKind, tuple[LogRecord, ...]] = Field(default_factory=dict)
    """Cached records per kind, oldest first."""

    roster: frozenset[str] = frozenset()
    """Distinct participant addresses (stakers and message senders)."""

    recent_activity: tuple[ActivityItem, ...] = ()
    """Most recent records across all kinds, newest first."""

    captured_at_unix_millis: int = 0
    """Wall-clock capture time in milliseconds."""

    error: str | None = None
    """Reason the snapshot is degraded, if it is."""

    @classmethod
    def disconnected(cls, captured_at_unix_millis: int) -> SyncSnapshot:
        """Build the degraded snapshot signalling a lost connection."""
        return cls(
            connected=False,
            captured_at_unix_millis=captured_at_unix_millis,
            error=DISCONNECTED_MESSAGE,
        )

    def records(self, kind: EventKind) -> tuple[LogRecord, ...]:
        """Records of a kind, or an empty tuple."""
        return self.records_by_kind.get(kind, ())

    def to_json_dict(self) -> dict[str, Any]:
        """Serialize with camelCase keys and a sorted roster."""
        data = self.model_dump(mode="json", by_alias=True)
        data["roster"] = sorted(self.roster)
        return data


def fingerprint(snapshot: SyncSnapshot) -> str:
    """
    Compute the content fingerprint of a snapshot.

    Args:
        snapshot: The snapshot to summarize.

    Returns:
        Hex SHA-256 digest that changes exactly when the content changes.
    """
    parts: list[Any] = [
        snapshot.connected,
        snapshot.height,
        snapshot.error or "",
        [[name, snapshot.scalars[name]] for name in sorted(snapshot.scalars)],
        [
            [kind.value, [list(record.fingerprint_fields()) for record in snapshot.records(kind)]]
            for kind in EventKind
        ],
    ]
    encoded = json.dumps(parts, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()
