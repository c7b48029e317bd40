"""
Typed log records.

Why Typed Variants?
-------------------
Decoded contract logs are naturally positional: `args[0]` is the sender,
`args[1]` the text, and so on. Code that reads logs that way breaks silently
when an event gains a parameter, and it forces every consumer to know the
ABI layout.

Instead, each event kind has its own immutable model with named fields. The
transport adapter decides the field mapping once, at the boundary, and the
cache and engine only ever see these variants.

The `kind` field is the discriminator: a JSON mirror of any record can be
validated back into the right variant with `LOG_RECORD_ADAPTER`.
"""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import Field, TypeAdapter

from ledger_sync.types import Address, FrozenModel

from .kinds import EventKind

FingerprintValue = str | int
"""Primitive values that make up a record fingerprint."""


class BaseLogRecord(FrozenModel):
    """
    Fields shared by every log record.

    Records are positioned by `(block_number, log_index)`, which is unique
    within one contract and totally orders records of one kind.
    """

    kind: str
    """Event kind discriminator; each variant narrows it to one literal."""

    block_number: int = Field(ge=0)
    """Number of the block that emitted the log."""

    log_index: int = Field(default=0, ge=0)
    """Position of the log within its block."""

    occurred_at: int = Field(default=0, ge=0)
    """Unix timestamp (seconds) of the event."""

    @property
    def event_kind(self) -> EventKind:
        """The event kind of this record."""
        return EventKind(self.kind)

    @property
    def actor(self) -> str:
        """The account the event is about."""
        raise NotImplementedError

    @property
    def position(self) -> tuple[int, int]:
        """Sort key that orders records of one kind."""
        return (self.block_number, self.log_index)

    def fingerprint_fields(self) -> tuple[FingerprintValue, ...]:
        """
        Field values in a fixed, declared order.

        Subclasses append their own fields after the shared prefix.
        """
        return (self.kind, self.block_number, self.log_index, self.occurred_at)


class StakedRecord(BaseLogRecord):
    """A validator deposited stake."""

    kind: Literal["Staked"] = "Staked"

    validator: Address
    """The staking validator."""

    amount: int = Field(ge=0)
    """Deposited amount in wei."""

    @property
    def actor(self) -> str:
        return self.validator

    def fingerprint_fields(self) -> tuple[FingerprintValue, ...]:
        return super().fingerprint_fields() + (self.validator, self.amount)


class WithdrawnRecord(BaseLogRecord):
    """A validator withdrew stake and reward."""

    kind: Literal["Withdrawn"] = "Withdrawn"

    validator: Address
    """The withdrawing validator."""

    amount: int = Field(ge=0)
    """Withdrawn stake in wei."""

    reward: int = Field(ge=0)
    """Accrued reward paid out, in wei."""

    @property
    def actor(self) -> str:
        return self.validator

    def fingerprint_fields(self) -> tuple[FingerprintValue, ...]:
        return super().fingerprint_fields() + (self.validator, self.amount, self.reward)


class MessagePostedRecord(BaseLogRecord):
    """
    A chat message posted to the contract.

    The event carries its own timestamp, which becomes `occurred_at`.
    """

    kind: Literal["NewMessage"] = "NewMessage"

    sender: Address
    """Account that posted the message."""

    text: str
    """Message body."""

    @property
    def actor(self) -> str:
        return self.sender

    def fingerprint_fields(self) -> tuple[FingerprintValue, ...]:
        return super().fingerprint_fields() + (self.sender, self.text)


class SlashedRecord(BaseLogRecord):
    """A validator was penalized."""

    kind: Literal["Slashed"] = "Slashed"

    validator: Address
    """The penalized validator."""

    amount: int = Field(ge=0)
    """Slashed amount in wei."""

    reason: str
    """Human-readable reason recorded by the contract."""

    @property
    def actor(self) -> str:
        return self.validator

    def fingerprint_fields(self) -> tuple[FingerprintValue, ...]:
        return super().fingerprint_fields() + (self.validator, self.amount, self.reason)


class BlockProposedRecord(BaseLogRecord):
    """A validator proposed a block."""

    kind: Literal["BlockProposed"] = "BlockProposed"

    proposer: Address
    """The proposing validator."""

    proposed_block: int = Field(ge=0)
    """Simulated block number assigned by the contract (not the ledger block)."""

    reward: int = Field(ge=0)
    """Proposer reward in wei."""

    @property
    def actor(self) -> str:
        return self.proposer

    def fingerprint_fields(self) -> tuple[FingerprintValue, ...]:
        return super().fingerprint_fields() + (self.proposer, self.proposed_block, self.reward)


LogRecord = Annotated[
    StakedRecord | WithdrawnRecord | MessagePostedRecord | SlashedRecord | BlockProposedRecord,
    Field(discriminator="kind"),
]
"""Any log record, discriminated by its `kind` field."""

RECORD_TYPES: dict[EventKind, type[BaseLogRecord]] = {
    EventKind.STAKED: StakedRecord,
    EventKind.WITHDRAWN: WithdrawnRecord,
    EventKind.NEW_MESSAGE: MessagePostedRecord,
    EventKind.SLASHED: SlashedRecord,
    EventKind.BLOCK_PROPOSED: BlockProposedRecord,
}
"""Record model for each event kind."""

LOG_RECORD_ADAPTER: TypeAdapter[LogRecord] = TypeAdapter(LogRecord)
"""Validates a single record mirror into its variant."""

LOG_RECORDS_ADAPTER: TypeAdapter[list[LogRecord]] = TypeAdapter(list[LogRecord])
"""Validates and serializes lists of records (cache mirrors)."""


def sort_records(records: list[LogRecord]) -> list[LogRecord]:
    """Order records of one kind by ledger position, oldest first."""
    return sorted(records, key=lambda r: r.position)
