"""
Mock collaborators for engine tests.

Each mock provides a minimal implementation for isolated testing.
"""

from __future__ import annotations

import asyncio
from typing import Any

from ledger_sync.client import InMemoryLedger
from ledger_sync.sync import SyncSnapshot


class MockSubscriber:
    """Records every snapshot it receives; optionally raises after recording."""

    def __init__(self, *, fail: bool = False) -> None:
        """Initialize with an empty delivery log."""
        self.received: list[SyncSnapshot] = []
        self.fail = fail

    def __call__(self, snapshot: SyncSnapshot) -> None:
        self.received.append(snapshot)
        if self.fail:
            raise RuntimeError("subscriber failure")

    @property
    def count(self) -> int:
        """Number of snapshots received."""
        return len(self.received)

    @property
    def last(self) -> SyncSnapshot:
        """Most recent snapshot."""
        return self.received[-1]


class LedgerFactory:
    """
    Transport factory handing out in-memory ledgers.

    Ledgers are keyed by endpoint, so reconfiguring to another endpoint
    yields a different ledger while returning to one reuses it.
    """

    def __init__(self) -> None:
        """Initialize with no ledgers."""
        self.ledgers: dict[str, InMemoryLedger] = {}
        self.created: list[tuple[str, str]] = []

    def ledger(self, endpoint: str) -> InMemoryLedger:
        """The ledger served for an endpoint, created on first use."""
        return self.ledgers.setdefault(endpoint, make_ledger())

    def __call__(self, endpoint: str, contract_address: str) -> InMemoryLedger:
        self.created.append((endpoint, contract_address))
        return self.ledger(endpoint)


def make_ledger() -> InMemoryLedger:
    """An in-memory ledger with every default scalar populated."""
    return InMemoryLedger(
        scalars={
            "totalStaked": 0,
            "getValidatorCount": 0,
            "currentEpoch": 1,
            "getTimeUntilNextEpoch": 30,
            "getCurrentAPY": 500,
            "contractBalance": 0,
        }
    )


class GatedLedger:
    """
    Transport wrapper whose height query waits for the test to open a gate.

    Lets a test hold a tick in flight while it subscribes, unsubscribes, or
    reconfigures. Every other call goes straight to the wrapped ledger.
    """

    def __init__(self, ledger: InMemoryLedger) -> None:
        """Wrap a ledger with the gate open."""
        self.ledger = ledger
        self.gate = asyncio.Event()
        self.gate.set()
        self.waiting = asyncio.Event()
        self.height_calls = 0

    def close_gate(self) -> None:
        """Hold the next height queries until `open_gate()`."""
        self.gate.clear()
        self.waiting.clear()

    def open_gate(self) -> None:
        """Release held height queries."""
        self.gate.set()

    async def get_height(self) -> int:
        self.height_calls += 1
        self.waiting.set()
        await self.gate.wait()
        return await self.ledger.get_height()

    async def wait_for_height_calls(self, count: int) -> None:
        """Return once `count` height queries have started."""
        while self.height_calls < count:
            await asyncio.sleep(0.001)

    def __getattr__(self, name: str) -> Any:
        return getattr(self.ledger, name)
