"""
Ledger access: the transport protocol, its implementations, and the domain client.

The sync engine and the presentation layer only ever talk to `DomainClient`.
The client in turn talks to a `LedgerTransport`, which is either a JSON-RPC
node or the in-memory ledger.
"""

from .domain import DomainClient, StakeInfo, ValidatorStats, render_scalar
from .jsonrpc import JsonRpcTransport, RpcError, json_rpc_transport_factory
from .memory import InMemoryLedger
from .transport import (
    ACCOUNT_BALANCE,
    CONTRACT_BALANCE,
    LedgerTransport,
    Receipt,
    ScalarResult,
    SignerHandle,
    TransportFactory,
)

__all__ = [
    # Domain client
    "DomainClient",
    "StakeInfo",
    "ValidatorStats",
    "render_scalar",
    # Transport protocol
    "LedgerTransport",
    "TransportFactory",
    "Receipt",
    "ScalarResult",
    "SignerHandle",
    "ACCOUNT_BALANCE",
    "CONTRACT_BALANCE",
    # Implementations
    "JsonRpcTransport",
    "RpcError",
    "json_rpc_transport_factory",
    "InMemoryLedger",
]
