"""
Ethereum JSON-RPC transport.

Implements `LedgerTransport` against any node speaking the Ethereum JSON-RPC
API (Ganache, Hardhat, Geth, ...). The primitive reads map onto RPC methods:

- height: `eth_blockNumber`
- scalars: `eth_call` against the contract, or `eth_getBalance`
- log ranges: `eth_getLogs` filtered by the event's topic 0

Writes go through `eth_sendTransaction` from an account the node manages, so
no key material ever touches this process. The signer handle is simply the
sender address.

Block Timestamps
----------------
Most events do not carry their own timestamp. For those the block header is
fetched once via `eth_getBlockByNumber` and memoized; blocks are immutable
once mined so the memo never goes stale.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Final

import httpx
from pydantic import ValidationError

from ledger_sync.events import (
    BlockProposedRecord,
    EventKind,
    LogRecord,
    MessagePostedRecord,
    SlashedRecord,
    StakedRecord,
    WithdrawnRecord,
    sort_records,
)
from ledger_sync.types import TransportError, WriteRejectedError, normalize_address

from .abi import (
    EVENT_DATA_TYPES,
    FUNCTIONS,
    FunctionSpec,
    Value,
    decode,
    decode_address,
    event_topic,
    hex_to_bytes,
)
from .transport import (
    ACCOUNT_BALANCE,
    CONTRACT_BALANCE,
    Receipt,
    ScalarResult,
    SignerHandle,
    TransportFactory,
)

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT: Final = 10.0
"""HTTP request timeout in seconds."""

DEFAULT_CONFIRMATION_TIMEOUT: Final = 60.0
"""Seconds to wait for a submitted write to be mined."""

RECEIPT_POLL_INTERVAL: Final = 0.5
"""Seconds between receipt lookups while waiting for confirmation."""

BLOCK_TIMESTAMP_MEMO_SIZE: Final = 4096
"""Maximum memoized block timestamps; the oldest entries are dropped first."""

BLOCK_FETCH_CONCURRENCY: Final = 8
"""Maximum `eth_getBlockByNumber` requests in flight for one log range."""


class RpcError(TransportError):
    """
    The node answered with a JSON-RPC error object.

    Distinguished from network failures because, for writes, it means the
    node refused the transaction (e.g. it would revert).

    Attributes:
        code: JSON-RPC error code.
    """

    def __init__(self, message: str, *, method: str, code: int | None = None) -> None:
        self.code = code
        self.reason = message
        super().__init__(f"RPC error {code}: {message}", method=method)


def _quantity(value: int) -> str:
    """Encode an integer as a JSON-RPC quantity."""
    return hex(value)


def _parse_quantity(value: Any, *, method: str) -> int:
    """Decode a JSON-RPC quantity (a `0x`-prefixed hex string)."""
    if not isinstance(value, str) or not value.startswith("0x"):
        raise TransportError(f"Expected hex quantity, got {value!r}", method=method)
    try:
        return int(value, 16)
    except ValueError as exc:
        raise TransportError(f"Expected hex quantity, got {value!r}", method=method) from exc


@dataclass(slots=True)
class JsonRpcTransport:
    """
    Ledger transport backed by an Ethereum JSON-RPC endpoint.

    The HTTP client is created lazily and must be released with `aclose()`.
    """

    endpoint: str
    """URL of the JSON-RPC endpoint (e.g. "http://localhost:8545")."""

    contract_address: str
    """Address of the staking contract."""

    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    """Per-request HTTP timeout in seconds."""

    confirmation_timeout: float = DEFAULT_CONFIRMATION_TIMEOUT
    """Seconds to wait for a write to be mined."""

    http_transport: httpx.AsyncBaseTransport | None = None
    """Optional httpx transport override (e.g. `httpx.MockTransport` in tests)."""

    _client: httpx.AsyncClient | None = field(default=None, init=False, repr=False)
    _next_id: int = field(default=0, init=False, repr=False)
    _block_timestamps: dict[int, int] = field(default_factory=dict, init=False, repr=False)

    def __post_init__(self) -> None:
        self.contract_address = normalize_address(self.contract_address)

    # -------------------------------------------------------------------------
    # JSON-RPC plumbing
    # -------------------------------------------------------------------------

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.request_timeout,
                transport=self.http_transport,
            )
        return self._client

    async def _request(self, method: str, params: list[Any]) -> Any:
        """
        Perform one JSON-RPC call and return its `result`.

        Raises:
            RpcError: If the node answered with an error object.
            TransportError: On network, HTTP, or decoding failures.
        """
        self._next_id += 1
        payload = {"jsonrpc": "2.0", "id": self._next_id, "method": method, "params": params}

        try:
            response = await self._http().post(self.endpoint, json=payload)
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPStatusError as exc:
            raise TransportError(
                f"HTTP error {exc.response.status_code}: {exc.response.text[:200]}",
                method=method,
            ) from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"Network error: {exc}", method=method) from exc
        except ValueError as exc:
            raise TransportError(f"Malformed response: {exc}", method=method) from exc

        if not isinstance(body, dict):
            raise TransportError(f"Malformed response: {body!r}", method=method)

        error = body.get("error")
        if error is not None:
            if isinstance(error, dict):
                raise RpcError(str(error.get("message", "")), method=method, code=error.get("code"))
            raise RpcError(str(error), method=method)

        if "result" not in body:
            raise TransportError("Response carries neither result nor error", method=method)
        return body["result"]

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get_height(self) -> int:
        """Return the current block number."""
        result = await self._request("eth_blockNumber", [])
        return _parse_quantity(result, method="eth_blockNumber")

    async def get_scalar(self, name: str, *args: Value) -> ScalarResult:
        """Read a contract view or one of the balance pseudo-scalars."""
        if name == CONTRACT_BALANCE:
            return await self._get_balance(self.contract_address)
        if name == ACCOUNT_BALANCE:
            if len(args) != 1:
                raise TransportError(f"{ACCOUNT_BALANCE} takes one address argument")
            return await self._get_balance(str(args[0]))

        function = self._function(name, method="eth_call")
        try:
            data = function.encode_call(args)
        except (TypeError, ValueError) as exc:
            raise TransportError(
                f"Cannot encode {name} arguments: {exc}", method="eth_call"
            ) from exc

        result = await self._request(
            "eth_call", [{"to": self.contract_address, "data": data}, "latest"]
        )

        try:
            raw = hex_to_bytes(str(result))
            # An address without code answers every call with empty data.
            if not raw:
                raise ValueError("empty result")
            values = decode(function.outputs, raw)
        except ValueError as exc:
            raise TransportError(f"Cannot decode {name} result: {exc}", method="eth_call") from exc

        return values[0] if len(values) == 1 else values

    async def _get_balance(self, address: str) -> int:
        try:
            account = normalize_address(address)
        except ValueError as exc:
            raise TransportError(str(exc), method="eth_getBalance") from exc
        result = await self._request("eth_getBalance", [account, "latest"])
        return _parse_quantity(result, method="eth_getBalance")

    async def get_log_range(
        self,
        kind: EventKind,
        from_block: int,
        to_block: int,
    ) -> list[LogRecord]:
        """Fetch and decode one kind's logs within `[from_block, to_block]`."""
        if from_block > to_block:
            return []

        logs = await self._request(
            "eth_getLogs",
            [
                {
                    "address": self.contract_address,
                    "fromBlock": _quantity(from_block),
                    "toBlock": _quantity(to_block),
                    "topics": [event_topic(kind.signature)],
                }
            ],
        )
        if not isinstance(logs, list):
            raise TransportError(f"Expected a log list, got {logs!r}", method="eth_getLogs")

        logs = [log for log in logs if not log.get("removed", False)]

        # Messages carry their own timestamp; everything else uses the block's.
        timestamps: dict[int, int] = {}
        if kind is not EventKind.NEW_MESSAGE:
            blocks = sorted(
                {_parse_quantity(log.get("blockNumber"), method="eth_getLogs") for log in logs}
            )
            limit = asyncio.Semaphore(BLOCK_FETCH_CONCURRENCY)
            fetched = await asyncio.gather(
                *(self._block_timestamp(number, limit) for number in blocks)
            )
            timestamps = dict(zip(blocks, fetched, strict=True))

        records = [self._decode_log(kind, log, timestamps) for log in logs]
        logger.debug("Fetched %d %s logs in [%d, %d]", len(records), kind, from_block, to_block)
        return sort_records(records)

    async def _block_timestamp(self, number: int, limit: asyncio.Semaphore) -> int:
        cached = self._block_timestamps.get(number)
        if cached is not None:
            return cached

        async with limit:
            block = await self._request("eth_getBlockByNumber", [_quantity(number), False])
        if not isinstance(block, dict):
            raise TransportError(f"Block {number} not found", method="eth_getBlockByNumber")
        timestamp = _parse_quantity(block.get("timestamp"), method="eth_getBlockByNumber")

        if len(self._block_timestamps) >= BLOCK_TIMESTAMP_MEMO_SIZE:
            self._block_timestamps.pop(next(iter(self._block_timestamps)))
        self._block_timestamps[number] = timestamp
        return timestamp

    def _decode_log(
        self,
        kind: EventKind,
        log: dict[str, Any],
        timestamps: dict[int, int],
    ) -> LogRecord:
        """Map one raw log onto its typed record, timestamped from `timestamps`."""
        try:
            block_number = _parse_quantity(log["blockNumber"], method="eth_getLogs")
            log_index = _parse_quantity(log["logIndex"], method="eth_getLogs")
            actor = decode_address(hex_to_bytes(log["topics"][1]))
            values = decode(EVENT_DATA_TYPES[kind], hex_to_bytes(log["data"]))
            position: dict[str, Any] = {"block_number": block_number, "log_index": log_index}
            occurred_at = timestamps.get(block_number, 0)

            match kind:
                case EventKind.STAKED:
                    (amount,) = values
                    return StakedRecord(
                        validator=actor, amount=amount, occurred_at=occurred_at, **position
                    )
                case EventKind.WITHDRAWN:
                    amount, reward = values
                    return WithdrawnRecord(
                        validator=actor,
                        amount=amount,
                        reward=reward,
                        occurred_at=occurred_at,
                        **position,
                    )
                case EventKind.NEW_MESSAGE:
                    text, timestamp = values
                    return MessagePostedRecord(
                        sender=actor, text=text, occurred_at=timestamp, **position
                    )
                case EventKind.SLASHED:
                    amount, reason = values
                    return SlashedRecord(
                        validator=actor,
                        amount=amount,
                        reason=reason,
                        occurred_at=occurred_at,
                        **position,
                    )
                case EventKind.BLOCK_PROPOSED:
                    proposed_block, reward = values
                    return BlockProposedRecord(
                        proposer=actor,
                        proposed_block=proposed_block,
                        reward=reward,
                        occurred_at=occurred_at,
                        **position,
                    )
        except (KeyError, IndexError, TypeError, ValueError, ValidationError) as exc:
            raise TransportError(f"Malformed {kind} log: {exc}", method="eth_getLogs") from exc

        raise TransportError(f"Unsupported event kind {kind}", method="eth_getLogs")

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def send_write(
        self,
        operation: str,
        args: Sequence[Value],
        signer: SignerHandle,
        value: int = 0,
    ) -> Receipt:
        """Submit a transaction from a node-managed account and wait for its receipt."""
        function = self._function(operation, method="eth_sendTransaction")
        try:
            transaction: dict[str, Any] = {
                "from": normalize_address(signer),
                "to": self.contract_address,
                "data": function.encode_call(args),
            }
        except (TypeError, ValueError) as exc:
            raise WriteRejectedError(operation, str(exc)) from exc
        if value:
            transaction["value"] = _quantity(value)

        try:
            tx_hash = await self._request("eth_sendTransaction", [transaction])
        except RpcError as exc:
            raise WriteRejectedError(operation, exc.reason) from exc

        logger.info("Submitted %s transaction %s", operation, tx_hash)
        receipt = await self._wait_for_receipt(str(tx_hash))
        if not receipt.status:
            raise WriteRejectedError(operation, "transaction reverted", receipt=receipt)
        return receipt

    async def _wait_for_receipt(self, tx_hash: str) -> Receipt:
        """Poll for the receipt until it appears or the confirmation timeout expires."""
        try:
            async with asyncio.timeout(self.confirmation_timeout):
                while True:
                    raw = await self._request("eth_getTransactionReceipt", [tx_hash])
                    if raw is not None:
                        break
                    await asyncio.sleep(RECEIPT_POLL_INTERVAL)
        except TimeoutError as exc:
            raise TransportError(
                f"Transaction {tx_hash} not mined within {self.confirmation_timeout}s",
                method="eth_getTransactionReceipt",
            ) from exc

        method = "eth_getTransactionReceipt"
        if not isinstance(raw, dict):
            raise TransportError(f"Malformed receipt: {raw!r}", method=method)
        return Receipt(
            transaction_hash=tx_hash,
            block_number=_parse_quantity(raw.get("blockNumber"), method=method),
            status=_parse_quantity(raw.get("status", "0x1"), method=method) == 1,
            gas_used=_parse_quantity(raw.get("gasUsed", "0x0"), method=method),
        )

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    @staticmethod
    def _function(name: str, *, method: str) -> FunctionSpec:
        function = FUNCTIONS.get(name)
        if function is None:
            raise TransportError(f"Unknown contract function {name!r}", method=method)
        return function


def json_rpc_transport_factory(
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
    confirmation_timeout: float = DEFAULT_CONFIRMATION_TIMEOUT,
) -> TransportFactory:
    """
    Build a transport factory with fixed timeouts.

    The sync engine calls the returned factory on every `configure()`.
    """

    def factory(endpoint: str, contract_address: str) -> JsonRpcTransport:
        return JsonRpcTransport(
            endpoint=endpoint,
            contract_address=contract_address,
            request_timeout=request_timeout,
            confirmation_timeout=confirmation_timeout,
        )

    return factory
