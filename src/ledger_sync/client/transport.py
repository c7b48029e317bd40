"""
Ledger transport protocol.

The transport is the only component that talks to the ledger. It exposes the
three primitive reads the sync engine relies on plus a fire-once write.
Implementations decide the wire format; callers only see typed values.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from pydantic import Field

from ledger_sync.events import EventKind, LogRecord
from ledger_sync.types import StrictBaseModel

from .abi import Value

ScalarResult = Value | tuple[Value, ...]
"""Result of a contract read: one value, or a tuple for multi-output views."""

CONTRACT_BALANCE = "contractBalance"
"""Pseudo-scalar: native balance of the contract itself."""

ACCOUNT_BALANCE = "balance"
"""Pseudo-scalar: native balance of the account passed as argument."""

SignerHandle = str
"""
Opaque handle identifying who signs a write.

For node-managed accounts this is the sender address. Key custody stays
outside this package.
"""


class Receipt(StrictBaseModel):
    """Confirmation of a state-changing write."""

    transaction_hash: str
    """Hash identifying the write on the ledger."""

    block_number: int = Field(ge=0)
    """Block that included the write."""

    status: bool
    """True if the write executed successfully."""

    gas_used: int = Field(default=0, ge=0)
    """Execution cost reported by the ledger."""


class LedgerTransport(Protocol):
    """
    Protocol for ledger access.

    This abstraction lets the engine and domain client work against any
    backend: a JSON-RPC node, an in-memory ledger in tests, or a recorded
    fixture.

    Implementers should:

    - Raise `TransportError` on network failures, timeouts, and protocol errors
    - Return log records sorted by `(block_number, log_index)`
    - Never cache results; every call reaches the ledger
    """

    async def get_height(self) -> int:
        """Return the current ledger height."""
        ...

    async def get_scalar(self, name: str, *args: Value) -> ScalarResult:
        """
        Read a single contract value.

        Args:
            name: Contract view name (e.g. "totalStaked"), or one of the
                `CONTRACT_BALANCE` and `ACCOUNT_BALANCE` pseudo-scalars.
            args: View arguments, such as an account address.
        """
        ...

    async def get_log_range(
        self,
        kind: EventKind,
        from_block: int,
        to_block: int,
    ) -> list[LogRecord]:
        """
        Return records of one kind emitted within `[from_block, to_block]` inclusive.

        Records are ordered oldest first.
        """
        ...

    async def send_write(
        self,
        operation: str,
        args: Sequence[Value],
        signer: SignerHandle,
        value: int = 0,
    ) -> Receipt:
        """
        Submit a state-changing call and wait until it is confirmed.

        Args:
            operation: Contract function name (e.g. "stake").
            args: Function arguments.
            signer: Who signs the write.
            value: Native amount attached to the call, in wei.

        Returns:
            The confirmed receipt.

        Raises:
            WriteRejectedError: If the ledger refused or reverted the write.
            TransportError: If the write could not be delivered or confirmed.
        """
        ...

    async def aclose(self) -> None:
        """Release network resources."""
        ...


class TransportFactory(Protocol):
    """Builds a transport bound to one endpoint and contract address."""

    def __call__(self, endpoint: str, contract_address: str) -> LedgerTransport: ...
