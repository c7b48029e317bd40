"""
Ledger account addresses.

Addresses arrive from several sources: JSON-RPC responses (lowercase hex),
indexed log topics (left-padded 32-byte words), and user input (mixed-case
checksummed strings). Comparing them as raw strings would split one account
into several roster entries, so every address is normalized to lowercase
`0x`-prefixed hex at the model boundary.
"""

from __future__ import annotations

import re
from typing import Annotated, Final

from pydantic import AfterValidator

ADDRESS_LENGTH: Final = 42
"""Length of a `0x`-prefixed 20-byte hex address."""

_ADDRESS_RE: Final = re.compile(r"^0x[0-9a-fA-F]{40}$")

ZERO_ADDRESS: Final = "0x" + "00" * 20
"""The all-zero address."""


def is_address(value: object) -> bool:
    """Check whether a value looks like a 20-byte hex address."""
    return isinstance(value, str) and _ADDRESS_RE.match(value) is not None


def normalize_address(value: str) -> str:
    """
    Validate and lowercase an address.

    Raises:
        ValueError: If the value is not `0x` followed by 40 hex digits.
    """
    if not is_address(value):
        raise ValueError(f"Invalid address: {value!r}")
    return value.lower()


def short_address(value: str) -> str:
    """Abbreviate an address for log lines: `0x1234...abcd`."""
    return f"{value[:6]}...{value[-4:]}"


Address = Annotated[str, AfterValidator(normalize_address)]
"""A validated, lowercase 20-byte hex address."""
