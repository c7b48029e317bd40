"""Conversions between wei and ether display strings."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Final

WEI_PER_ETHER: Final = 10**18
"""Number of wei in one ether."""

ETHER_DECIMALS: Final = 18
"""Decimal places of the ether unit."""


def format_ether(wei: int) -> str:
    """
    Render a wei amount as an ether string.

    Trailing zeros are dropped but at least one fractional digit is kept,
    so `10**18` renders as `"1.0"` and `15 * 10**17` as `"1.5"`.
    """
    sign = "-" if wei < 0 else ""
    whole, fraction = divmod(abs(wei), WEI_PER_ETHER)
    fraction_text = str(fraction).rjust(ETHER_DECIMALS, "0").rstrip("0") or "0"
    return f"{sign}{whole}.{fraction_text}"


def parse_ether(amount: str) -> int:
    """
    Convert an ether string such as `"1.5"` into wei.

    Raises:
        ValueError: If the string is not a non-negative decimal with at most 18 places.
    """
    try:
        value = Decimal(amount.strip())
    except InvalidOperation as exc:
        raise ValueError(f"Invalid ether amount: {amount!r}") from exc

    if not value.is_finite() or value < 0:
        raise ValueError(f"Invalid ether amount: {amount!r}")

    wei = value * WEI_PER_ETHER
    if wei != wei.to_integral_value():
        raise ValueError(f"Ether amount has more than {ETHER_DECIMALS} decimals: {amount!r}")
    return int(wei)
