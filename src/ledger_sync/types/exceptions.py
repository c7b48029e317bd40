"""Exception hierarchy for ledger synchronization."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ledger_sync.client.transport import Receipt
    from ledger_sync.events import EventKind


class LedgerSyncError(Exception):
    """
    Base exception for all ledger synchronization errors.

    Attributes:
        message: Human-readable error description.
    """

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r})"


class TransportError(LedgerSyncError):
    """
    Raised when a ledger read or write could not be carried out.

    Covers network errors, timeouts, HTTP errors, and JSON-RPC error objects.
    Polling reads recover from it through the engine's failure threshold.

    Attributes:
        method: The transport method that failed (e.g. "eth_blockNumber").
    """

    def __init__(self, message: str, *, method: str | None = None) -> None:
        self.method = method
        super().__init__(f"{method}: {message}" if method else message)


class WriteRejectedError(LedgerSyncError):
    """
    Raised when the ledger refused or reverted a state-changing write.

    Attributes:
        operation: The contract operation that was attempted.
        receipt: The confirmed receipt, if the write was mined but reverted.
    """

    def __init__(
        self,
        operation: str,
        reason: str,
        *,
        receipt: Receipt | None = None,
    ) -> None:
        self.operation = operation
        self.reason = reason
        self.receipt = receipt
        super().__init__(f"Write {operation!r} rejected: {reason}")


class WatermarkRegressionError(LedgerSyncError):
    """
    Raised when a cache merge would move a watermark backwards.

    This is a caller defect: accepting it would silently corrupt the record
    of which blocks have already been incorporated.

    Attributes:
        kind: The event kind whose watermark would regress.
        current: The watermark currently stored.
        requested: The block number the caller tried to merge through.
    """

    def __init__(self, kind: EventKind, *, current: int, requested: int) -> None:
        self.kind = kind
        self.current = current
        self.requested = requested
        super().__init__(
            f"Watermark regression for {kind}: "
            f"through_block {requested} < last incorporated {current}"
        )


class ConfigError(LedgerSyncError):
    """Raised when configuration values or files are invalid."""
