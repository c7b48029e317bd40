"""
In-process ledger.

Answers the `LedgerTransport` protocol from plain Python state. Tests use it
to drive the sync engine block by block without a node.

Writes are executed against a tiny model of the staking contract: staking
credits the signer, withdrawing pays the stake back, and posting a message
records it. Each write mines exactly one block holding the emitted record.
"""

from __future__ import annotations

import time
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from ledger_sync.events import (
    EventKind,
    LogRecord,
    MessagePostedRecord,
    StakedRecord,
    WithdrawnRecord,
    sort_records,
)
from ledger_sync.types import TransportError, WriteRejectedError, normalize_address

from .abi import Value
from .transport import ACCOUNT_BALANCE, Receipt, ScalarResult, SignerHandle


@dataclass(slots=True)
class InMemoryLedger:
    """
    Ledger state held in memory.

    Every call is appended to `calls`, so tests can assert on exactly which
    block ranges the engine requested.
    """

    height: int = 0
    """Current block number."""

    scalars: dict[str, ScalarResult] = field(default_factory=dict)
    """Argument-less contract reads by name."""

    account_scalars: dict[tuple[str, str], ScalarResult] = field(default_factory=dict)
    """Per-account contract reads keyed by `(name, address)`."""

    balances: dict[str, int] = field(default_factory=dict)
    """Native balance per account."""

    logs: dict[EventKind, list[LogRecord]] = field(default_factory=dict)
    """Emitted records per kind, oldest first."""

    calls: list[tuple[object, ...]] = field(default_factory=list)
    """Every transport call made, as `(method, *args)`."""

    log_ranges: list[tuple[EventKind, int, int]] = field(default_factory=list)
    """Every log range requested, as `(kind, from_block, to_block)`."""

    failing: bool = False
    """When set, every read raises `TransportError`."""

    failures_remaining: int = 0
    """Number of upcoming reads that raise `TransportError`."""

    closed: bool = False
    """Whether `aclose()` was called."""

    # -------------------------------------------------------------------------
    # Test controls
    # -------------------------------------------------------------------------

    def mine(self, records: Iterable[LogRecord] = ()) -> int:
        """
        Mine one block holding the given records.

        Each record is re-stamped with the new block number and its position
        within the block.

        Returns:
            The new height.
        """
        self.height += 1
        for log_index, record in enumerate(records):
            stamped = record.model_copy(
                update={"block_number": self.height, "log_index": log_index}
            )
            self.logs.setdefault(stamped.event_kind, []).append(stamped)
        return self.height

    def rewind(self, height: int) -> None:
        """Reset the chain to an earlier height, dropping later records."""
        self.height = height
        for kind, records in self.logs.items():
            self.logs[kind] = [r for r in records if r.block_number <= height]

    def fail_next(self, count: int = 1) -> None:
        """Make the next `count` reads raise `TransportError`."""
        self.failures_remaining = count

    def log_requests(self, kind: EventKind) -> list[tuple[int, int]]:
        """Block ranges requested for a kind, in call order."""
        return [(start, end) for k, start, end in self.log_ranges if k == kind]

    def _check_failure(self, method: str) -> None:
        if self.failing:
            raise TransportError("ledger unreachable", method=method)
        if self.failures_remaining > 0:
            self.failures_remaining -= 1
            raise TransportError("ledger unreachable", method=method)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get_height(self) -> int:
        """Return the current block number."""
        self.calls.append(("get_height",))
        self._check_failure("get_height")
        return self.height

    async def get_scalar(self, name: str, *args: Value) -> ScalarResult:
        """Return a stored scalar; unknown names fail like a reverted call."""
        self.calls.append(("get_scalar", name, *args))
        self._check_failure("get_scalar")

        if not args:
            if name not in self.scalars:
                raise TransportError(f"unknown scalar {name!r}", method="get_scalar")
            return self.scalars[name]

        account = normalize_address(str(args[0]))
        if name == ACCOUNT_BALANCE:
            return self.balances.get(account, 0)
        if (name, account) not in self.account_scalars:
            raise TransportError(f"unknown scalar {name!r}", method="get_scalar")
        return self.account_scalars[(name, account)]

    async def get_log_range(
        self,
        kind: EventKind,
        from_block: int,
        to_block: int,
    ) -> list[LogRecord]:
        """Return the records of a kind within `[from_block, to_block]`."""
        self.calls.append(("get_log_range", kind, from_block, to_block))
        self.log_ranges.append((kind, from_block, to_block))
        self._check_failure("get_log_range")
        return sort_records(
            [r for r in self.logs.get(kind, []) if from_block <= r.block_number <= to_block]
        )

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def send_write(
        self,
        operation: str,
        args: Sequence[Value],
        signer: SignerHandle,
        value: int = 0,
    ) -> Receipt:
        """Execute a write against the contract model and mine its block."""
        self.calls.append(("send_write", operation, *args))
        self._check_failure("send_write")
        sender = normalize_address(signer)
        staked = int(self.account_scalars.get(("stakes", sender), 0))

        match operation:
            case "stake":
                if value <= 0:
                    raise WriteRejectedError(operation, "Must stake a positive amount")
                self._credit(sender, staked + value)
                record: LogRecord = StakedRecord(
                    block_number=0, validator=sender, amount=value, occurred_at=int(time.time())
                )
            case "withdraw":
                if staked == 0:
                    raise WriteRejectedError(operation, "No stake to withdraw")
                self._credit(sender, 0)
                record = WithdrawnRecord(
                    block_number=0,
                    validator=sender,
                    amount=staked,
                    reward=0,
                    occurred_at=int(time.time()),
                )
            case "sendMessage":
                if len(args) != 1 or not str(args[0]):
                    raise WriteRejectedError(operation, "Message cannot be empty")
                record = MessagePostedRecord(
                    block_number=0, sender=sender, text=str(args[0]), occurred_at=int(time.time())
                )
            case _:
                raise WriteRejectedError(operation, "unknown operation")

        block_number = self.mine([record])
        return Receipt(
            transaction_hash=f"0x{block_number:064x}",
            block_number=block_number,
            status=True,
        )

    def _credit(self, account: str, stake: int) -> None:
        previous = int(self.account_scalars.get(("stakes", account), 0))
        self.account_scalars[("stakes", account)] = stake
        self.scalars["totalStaked"] = int(self.scalars.get("totalStaked", 0)) + stake - previous

    async def aclose(self) -> None:
        """Mark the ledger closed."""
        self.closed = True
