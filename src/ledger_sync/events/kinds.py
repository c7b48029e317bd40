"""Event kinds emitted by the staking contract."""

from __future__ import annotations

from enum import StrEnum


class EventKind(StrEnum):
    """
    The fixed set of contract events the engine synchronizes.

    Each member's value is the event name as declared in the contract ABI,
    so members double as lookup keys for log filters and cache rows.

    Declaration order is significant: it is the order in which kinds are
    fetched, fingerprinted, and merged into the activity feed.
    """

    STAKED = "Staked"
    """A validator deposited stake."""

    WITHDRAWN = "Withdrawn"
    """A validator withdrew stake plus accrued reward."""

    NEW_MESSAGE = "NewMessage"
    """A participant posted a chat message."""

    SLASHED = "Slashed"
    """A validator was penalized."""

    BLOCK_PROPOSED = "BlockProposed"
    """A validator proposed a block and collected the proposer reward."""

    @property
    def signature(self) -> str:
        """Canonical Solidity event signature used to derive the log topic."""
        return EVENT_SIGNATURES[self]


EVENT_SIGNATURES: dict[EventKind, str] = {
    EventKind.STAKED: "Staked(address,uint256)",
    EventKind.WITHDRAWN: "Withdrawn(address,uint256,uint256)",
    EventKind.NEW_MESSAGE: "NewMessage(address,string,uint256)",
    EventKind.SLASHED: "Slashed(address,uint256,string)",
    EventKind.BLOCK_PROPOSED: "BlockProposed(address,uint256,uint256)",
}
"""
Solidity signatures of every event.

The first parameter of each event is an indexed address (topic 1);
the remaining parameters are ABI-encoded in the log data.
"""

ROSTER_KINDS: frozenset[EventKind] = frozenset({EventKind.STAKED, EventKind.NEW_MESSAGE})
"""Kinds whose actors make up the participant roster (stakers and chat senders)."""
