"""
Ethereum ABI layout of the staking contract.

Encoding and decoding are delegated to `eth-abi`; selectors and event topics
come from `eth-utils`. This module only declares which functions and events
the client talks to, and maps library errors onto `ValueError` so callers
handle a single exception type.

References:
----------
- Solidity ABI spec: https://docs.soliditylang.org/en/latest/abi-spec.html
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Final

import eth_abi
from eth_abi.exceptions import DecodingError, EncodingError
from eth_utils import (
    decode_hex,
    encode_hex,
    event_signature_to_log_topic,
    function_signature_to_4byte_selector,
)

from ledger_sync.types import normalize_address

Value = int | str | bool
"""A decoded ABI value."""


def selector(signature: str) -> str:
    """Hex function selector: the first 4 bytes of keccak256(signature)."""
    return encode_hex(function_signature_to_4byte_selector(signature))


def event_topic(signature: str) -> str:
    """Hex event topic 0: the full keccak256(signature)."""
    return encode_hex(event_signature_to_log_topic(signature))


@dataclass(frozen=True, slots=True)
class FunctionSpec:
    """Input and output layout of one contract function."""

    name: str
    """Function name as declared in the contract."""

    inputs: tuple[str, ...] = ()
    """ABI types of the arguments."""

    outputs: tuple[str, ...] = ()
    """ABI types of the return values."""

    @property
    def signature(self) -> str:
        """Canonical signature, e.g. `stakes(address)`."""
        return f"{self.name}({','.join(self.inputs)})"

    @property
    def selector(self) -> str:
        """Hex selector of the function."""
        return selector(self.signature)

    def encode_call(self, args: Sequence[Value]) -> str:
        """Encode call data: selector followed by the ABI-encoded arguments."""
        if len(args) != len(self.inputs):
            raise ValueError(
                f"{self.name} takes {len(self.inputs)} arguments, got {len(args)}"
            )
        return self.selector + encode(self.inputs, args).hex()


_UINT = "uint256"

FUNCTIONS: Final[dict[str, FunctionSpec]] = {
    spec.name: spec
    for spec in (
        # Aggregate views
        FunctionSpec("totalStaked", outputs=(_UINT,)),
        FunctionSpec("getValidatorCount", outputs=(_UINT,)),
        FunctionSpec("currentEpoch", outputs=(_UINT,)),
        FunctionSpec("getTimeUntilNextEpoch", outputs=(_UINT,)),
        FunctionSpec("getCurrentAPY", outputs=(_UINT,)),
        # Per-account views
        FunctionSpec("stakes", ("address",), (_UINT,)),
        FunctionSpec("calculateReward", ("address",), (_UINT,)),
        FunctionSpec("stakingStartTime", ("address",), (_UINT,)),
        FunctionSpec("getValidatorStats", ("address",), (_UINT,) * 6),
        FunctionSpec("hasAttestedThisEpoch", ("address",), ("bool",)),
        FunctionSpec("getMinStakeDurationRemaining", ("address",), (_UINT,)),
        FunctionSpec("withdrawalRequestTime", ("address",), (_UINT,)),
        # Writes
        FunctionSpec("stake"),
        FunctionSpec("withdraw"),
        FunctionSpec("sendMessage", ("string",)),
    )
}
"""Every contract function the client calls, keyed by name."""

EVENT_DATA_TYPES: Final[dict[str, tuple[str, ...]]] = {
    "Staked": (_UINT,),
    "Withdrawn": (_UINT, _UINT),
    "NewMessage": ("string", _UINT),
    "Slashed": (_UINT, "string"),
    "BlockProposed": (_UINT, _UINT),
}
"""
Types of the non-indexed parameters of each event, in declaration order.

Every event's first parameter is an indexed address carried in topic 1.
"""


def encode(types: Sequence[str], values: Sequence[Value]) -> bytes:
    """
    ABI-encode a tuple of values.

    Raises:
        ValueError: If a value does not fit its type.
    """
    values = [
        normalize_address(str(value)) if abi_type == "address" else value
        for abi_type, value in zip(types, values, strict=True)
    ]
    try:
        return eth_abi.encode(list(types), values)
    except EncodingError as exc:
        raise ValueError(f"Cannot encode {list(types)}: {exc}") from exc


def decode(types: Sequence[str], data: bytes) -> tuple[Value, ...]:
    """
    ABI-decode a tuple of values. Addresses come back lowercase.

    Raises:
        ValueError: If the data is too short or malformed for the types.
    """
    try:
        values = eth_abi.decode(list(types), data)
    except DecodingError as exc:
        raise ValueError(f"Cannot decode {list(types)}: {exc}") from exc
    return tuple(
        value.lower() if abi_type == "address" else value
        for abi_type, value in zip(types, values, strict=True)
    )


def hex_to_bytes(data: str) -> bytes:
    """Decode a hex string, with or without the `0x` prefix."""
    return decode_hex(data)


def decode_address(topic: bytes) -> str:
    """Decode an indexed address from its 32-byte log topic."""
    (address,) = decode(["address"], topic)
    return str(address)
