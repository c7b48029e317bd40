"""Tests for snapshots and their fingerprints."""

from __future__ import annotations

from ledger_sync.events import EventKind
from ledger_sync.sync import DISCONNECTED_MESSAGE, SyncSnapshot, fingerprint
from tests.ledger_sync.helpers import ALICE, BOB, make_message, make_staked


def make_snapshot(**overrides: object) -> SyncSnapshot:
    """A connected snapshot at height 10 with one stake and one message."""
    fields: dict[str, object] = {
        "connected": True,
        "height": 10,
        "scalars": {"totalStaked": "1.0", "currentEpoch": "3"},
        "records_by_kind": {
            EventKind.STAKED: (make_staked(4),),
            EventKind.NEW_MESSAGE: (make_message(7),),
        },
        "roster": frozenset({ALICE, BOB}),
        "captured_at_unix_millis": 1_000,
    }
    fields.update(overrides)
    return SyncSnapshot(**fields)


class TestFingerprint:
    """Tests for the content fingerprint."""

    def test_ignores_capture_time(self) -> None:
        """Two polls of identical content fingerprint the same."""
        early = make_snapshot(captured_at_unix_millis=1_000)
        late = make_snapshot(captured_at_unix_millis=9_999)

        assert fingerprint(early) == fingerprint(late)

    def test_ignores_scalar_insertion_order(self) -> None:
        """Scalars are visited by name, not by dict order."""
        a = make_snapshot(scalars={"a": "1", "b": "2"})
        b = make_snapshot(scalars={"b": "2", "a": "1"})

        assert fingerprint(a) == fingerprint(b)

    def test_changes_with_scalar_value(self) -> None:
        """A changed scalar changes the fingerprint."""
        before = make_snapshot()
        after = make_snapshot(scalars={"totalStaked": "2.0", "currentEpoch": "3"})

        assert fingerprint(before) != fingerprint(after)

    def test_changes_with_new_record(self) -> None:
        """An extra record changes the fingerprint."""
        before = make_snapshot()
        after = make_snapshot(
            records_by_kind={
                EventKind.STAKED: (make_staked(4), make_staked(9)),
                EventKind.NEW_MESSAGE: (make_message(7),),
            }
        )

        assert fingerprint(before) != fingerprint(after)

    def test_changes_with_record_field(self) -> None:
        """Records with equal positions but different content differ."""
        before = make_snapshot(records_by_kind={EventKind.NEW_MESSAGE: (make_message(7, "gm"),)})
        after = make_snapshot(records_by_kind={EventKind.NEW_MESSAGE: (make_message(7, "gn"),)})

        assert fingerprint(before) != fingerprint(after)

    def test_empty_kind_equals_missing_kind(self) -> None:
        """An empty partition and an absent one describe the same content."""
        a = make_snapshot(records_by_kind={EventKind.STAKED: ()})
        b = make_snapshot(records_by_kind={})

        assert fingerprint(a) == fingerprint(b)

    def test_changes_with_height(self) -> None:
        """The height is part of the content."""
        assert fingerprint(make_snapshot(height=10)) != fingerprint(make_snapshot(height=11))

    def test_is_hex_sha256(self) -> None:
        """The digest is 64 hex characters."""
        digest = fingerprint(make_snapshot())

        assert len(digest) == 64
        int(digest, 16)


class TestDisconnected:
    """Tests for the degraded snapshot."""

    def test_carries_error(self) -> None:
        """The degraded snapshot is disconnected and explains why."""
        snapshot = SyncSnapshot.disconnected(42)

        assert snapshot.connected is False
        assert snapshot.error == DISCONNECTED_MESSAGE
        assert snapshot.captured_at_unix_millis == 42
        assert snapshot.records_by_kind == {}

    def test_repeated_failures_fingerprint_equal(self) -> None:
        """Two degraded snapshots at different times are the same content."""
        assert fingerprint(SyncSnapshot.disconnected(1)) == fingerprint(
            SyncSnapshot.disconnected(2)
        )

    def test_differs_from_connected(self) -> None:
        """Losing the connection is a change."""
        assert fingerprint(SyncSnapshot.disconnected(1)) != fingerprint(make_snapshot())


class TestSnapshotAccessors:
    """Tests for lookups and serialization."""

    def test_records_of_missing_kind(self) -> None:
        """A kind not in the snapshot has no records."""
        assert make_snapshot().records(EventKind.SLASHED) == ()

    def test_to_json_dict_uses_camel_case(self) -> None:
        """The JSON form matches what browser consumers read."""
        data = make_snapshot().to_json_dict()

        assert data["connected"] is True
        assert data["capturedAtUnixMillis"] == 1_000
        assert data["roster"] == sorted([ALICE, BOB])
        assert data["recordsByKind"]["Staked"][0]["blockNumber"] == 4
        assert data["recordsByKind"]["NewMessage"][0]["text"] == "gm"
        assert data["error"] is None
