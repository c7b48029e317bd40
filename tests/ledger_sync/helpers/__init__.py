"""Test helpers for ledger_sync unit tests."""

from __future__ import annotations

from .builders import (
    ALICE,
    BOB,
    CAROL,
    CONTRACT,
    ENDPOINT,
    make_address,
    make_block_proposed,
    make_message,
    make_slashed,
    make_staked,
    make_withdrawn,
)
from .mocks import GatedLedger, LedgerFactory, MockSubscriber, make_ledger

__all__ = [
    # Builders
    "ALICE",
    "BOB",
    "CAROL",
    "CONTRACT",
    "ENDPOINT",
    "make_address",
    "make_block_proposed",
    "make_message",
    "make_slashed",
    "make_staked",
    "make_withdrawn",
    # Mocks
    "GatedLedger",
    "LedgerFactory",
    "MockSubscriber",
    "make_ledger",
]
