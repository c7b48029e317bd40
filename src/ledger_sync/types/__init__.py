"""Reusable type definitions for ledger data."""

from .address import ZERO_ADDRESS, Address, is_address, normalize_address, short_address
from .base import CamelModel, FrozenModel, StrictBaseModel
from .exceptions import (
    ConfigError,
    LedgerSyncError,
    TransportError,
    WatermarkRegressionError,
    WriteRejectedError,
)
from .units import WEI_PER_ETHER, format_ether, parse_ether

__all__ = [
    # Core types
    "Address",
    "ZERO_ADDRESS",
    "CamelModel",
    "FrozenModel",
    "StrictBaseModel",
    "is_address",
    "normalize_address",
    "short_address",
    # Units
    "WEI_PER_ETHER",
    "format_ether",
    "parse_ether",
    # Exceptions
    "LedgerSyncError",
    "TransportError",
    "WriteRejectedError",
    "WatermarkRegressionError",
    "ConfigError",
]
