"""Tests for the JSON-RPC transport against a fake node."""

from __future__ import annotations

import asyncio
import json
from typing import Any

import httpx
import pytest

from ledger_sync.client import JsonRpcTransport, RpcError, json_rpc_transport_factory, jsonrpc
from ledger_sync.client.abi import EVENT_DATA_TYPES, FUNCTIONS, encode, event_topic
from ledger_sync.events import (
    BlockProposedRecord,
    EventKind,
    MessagePostedRecord,
    SlashedRecord,
    StakedRecord,
    WithdrawnRecord,
)
from ledger_sync.types import TransportError, WriteRejectedError
from tests.ledger_sync.helpers import ALICE, BOB, CONTRACT, ENDPOINT


def _topic_address(address: str) -> str:
    return "0x" + "00" * 12 + address[2:]


def make_log(
    kind: EventKind,
    block: int,
    actor: str,
    values: list[Any],
    log_index: int = 0,
    removed: bool = False,
) -> dict[str, Any]:
    """A raw log as `eth_getLogs` returns it."""
    return {
        "address": CONTRACT,
        "blockNumber": hex(block),
        "logIndex": hex(log_index),
        "topics": [event_topic(kind.signature), _topic_address(actor)],
        "data": "0x" + encode(EVENT_DATA_TYPES[kind], values).hex(),
        "removed": removed,
    }


class FakeNode:
    """
    Minimal JSON-RPC node served through `httpx.MockTransport`.

    Each method answers from a canned value, or from a callable taking the params.
    """

    def __init__(self) -> None:
        """Initialize with an empty request log."""
        self.results: dict[str, Any] = {}
        self.errors: dict[str, dict[str, Any]] = {}
        self.requests: list[dict[str, Any]] = []
        self.status_code = 200

    def methods(self) -> list[str]:
        """Methods called, in order."""
        return [r["method"] for r in self.requests]

    def handle(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.requests.append(body)
        if self.status_code != 200:
            return httpx.Response(self.status_code, text="node overloaded")

        method = body["method"]
        reply: dict[str, Any] = {"jsonrpc": "2.0", "id": body["id"]}
        if method in self.errors:
            reply["error"] = self.errors[method]
        else:
            result = self.results.get(method)
            reply["result"] = result(body["params"]) if callable(result) else result
        return httpx.Response(200, json=reply)

    def transport(self, **kwargs: Any) -> JsonRpcTransport:
        """A transport wired to this node."""
        return JsonRpcTransport(
            endpoint=ENDPOINT,
            contract_address=CONTRACT,
            http_transport=httpx.MockTransport(self.handle),
            **kwargs,
        )


@pytest.fixture
def node() -> FakeNode:
    """A fake node with no canned answers."""
    return FakeNode()


class TestRequests:
    """Tests for JSON-RPC plumbing and error mapping."""

    async def test_height(self, node: FakeNode) -> None:
        """The height is the decoded block number."""
        node.results["eth_blockNumber"] = "0x1a"
        transport = node.transport()

        assert await transport.get_height() == 26
        assert node.requests[0]["jsonrpc"] == "2.0"
        assert node.requests[0]["params"] == []
        await transport.aclose()

    async def test_request_ids_increase(self, node: FakeNode) -> None:
        """Each request carries a fresh id."""
        node.results["eth_blockNumber"] = "0x1"
        transport = node.transport()

        await transport.get_height()
        await transport.get_height()

        assert [r["id"] for r in node.requests] == [1, 2]
        await transport.aclose()

    async def test_error_object_raises_rpc_error(self, node: FakeNode) -> None:
        """A JSON-RPC error object surfaces its code and message."""
        node.errors["eth_blockNumber"] = {"code": -32000, "message": "header not found"}
        transport = node.transport()

        with pytest.raises(RpcError) as exc_info:
            await transport.get_height()

        assert exc_info.value.code == -32000
        assert exc_info.value.method == "eth_blockNumber"
        assert "header not found" in str(exc_info.value)
        await transport.aclose()

    async def test_http_error_raises_transport_error(self, node: FakeNode) -> None:
        """Non-2xx responses are transport failures."""
        node.status_code = 503
        transport = node.transport()

        with pytest.raises(TransportError, match="HTTP error 503"):
            await transport.get_height()
        await transport.aclose()

    async def test_network_error_raises_transport_error(self) -> None:
        """Connection failures are transport failures."""

        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        transport = JsonRpcTransport(
            endpoint=ENDPOINT,
            contract_address=CONTRACT,
            http_transport=httpx.MockTransport(refuse),
        )

        with pytest.raises(TransportError, match="Network error"):
            await transport.get_height()
        await transport.aclose()

    async def test_malformed_quantity(self, node: FakeNode) -> None:
        """A height that is not a hex quantity is rejected."""
        node.results["eth_blockNumber"] = 26
        transport = node.transport()

        with pytest.raises(TransportError, match="Expected hex quantity"):
            await transport.get_height()
        await transport.aclose()

    def test_contract_address_is_normalized(self) -> None:
        """Mixed-case addresses are lowercased on construction."""
        mixed_case = "0x" + CONTRACT[2:].upper()

        transport = JsonRpcTransport(endpoint=ENDPOINT, contract_address=mixed_case)

        assert transport.contract_address == CONTRACT

    def test_factory_applies_timeouts(self) -> None:
        """The factory builds transports with its fixed timeouts."""
        factory = json_rpc_transport_factory(request_timeout=3.0, confirmation_timeout=9.0)

        transport = factory(ENDPOINT, CONTRACT)

        assert isinstance(transport, JsonRpcTransport)
        assert transport.request_timeout == 3.0
        assert transport.confirmation_timeout == 9.0


class TestScalars:
    """Tests for contract reads."""

    async def test_eth_call_targets_contract(self, node: FakeNode) -> None:
        """Views are `eth_call`s against the contract at the latest block."""
        node.results["eth_call"] = "0x" + encode(["uint256"], [5 * 10**18]).hex()
        transport = node.transport()

        assert await transport.get_scalar("totalStaked") == 5 * 10**18

        call, tag = node.requests[0]["params"]
        assert call == {"to": CONTRACT, "data": FUNCTIONS["totalStaked"].encode_call([])}
        assert tag == "latest"
        await transport.aclose()

    async def test_multi_output_view_returns_tuple(self, node: FakeNode) -> None:
        """Views with several outputs return all of them."""
        node.results["eth_call"] = "0x" + encode(("uint256",) * 6, [1, 2, 3, 4, 5, 6]).hex()
        transport = node.transport()

        assert await transport.get_scalar("getValidatorStats", ALICE) == (1, 2, 3, 4, 5, 6)
        await transport.aclose()

    async def test_contract_balance_uses_get_balance(self, node: FakeNode) -> None:
        """The contract balance pseudo-scalar reads the contract's native balance."""
        node.results["eth_getBalance"] = hex(10**18)
        transport = node.transport()

        assert await transport.get_scalar("contractBalance") == 10**18
        assert node.requests[0]["params"] == [CONTRACT, "latest"]
        await transport.aclose()

    async def test_account_balance_uses_argument(self, node: FakeNode) -> None:
        """The account balance pseudo-scalar reads the given account."""
        node.results["eth_getBalance"] = "0x0"
        transport = node.transport()

        await transport.get_scalar("balance", ALICE)

        assert node.requests[0]["params"] == [ALICE, "latest"]
        await transport.aclose()

    async def test_empty_result_means_no_contract(self, node: FakeNode) -> None:
        """An address without code answers with empty data."""
        node.results["eth_call"] = "0x"
        transport = node.transport()

        with pytest.raises(TransportError, match="empty result"):
            await transport.get_scalar("totalStaked")
        await transport.aclose()

    async def test_unknown_function(self, node: FakeNode) -> None:
        """Names outside the contract interface never reach the node."""
        transport = node.transport()

        with pytest.raises(TransportError, match="Unknown contract function"):
            await transport.get_scalar("selfDestruct")
        assert node.requests == []
        await transport.aclose()


class TestLogs:
    """Tests for log range queries and decoding."""

    async def test_filter_and_decode(self, node: FakeNode) -> None:
        """Logs are filtered by topic and range, then decoded with block timestamps."""
        node.results["eth_getLogs"] = [
            make_log(EventKind.STAKED, 7, ALICE, [2 * 10**18], log_index=1),
            make_log(EventKind.STAKED, 5, BOB, [10**18]),
        ]
        node.results["eth_getBlockByNumber"] = lambda params: {
            "timestamp": hex(1_000 + int(params[0], 16))
        }
        transport = node.transport()

        records = await transport.get_log_range(EventKind.STAKED, 3, 9)

        log_filter = node.requests[0]["params"][0]
        assert log_filter == {
            "address": CONTRACT,
            "fromBlock": "0x3",
            "toBlock": "0x9",
            "topics": [event_topic(EventKind.STAKED.signature)],
        }
        assert records == [
            StakedRecord(block_number=5, validator=BOB, amount=10**18, occurred_at=1_005),
            StakedRecord(
                block_number=7, log_index=1, validator=ALICE, amount=2 * 10**18, occurred_at=1_007
            ),
        ]
        await transport.aclose()

    async def test_block_timestamps_are_memoized(self, node: FakeNode) -> None:
        """Each block header is fetched once."""
        node.results["eth_getLogs"] = [make_log(EventKind.STAKED, 4, ALICE, [1])]
        node.results["eth_getBlockByNumber"] = {"timestamp": "0x10"}
        transport = node.transport()

        await transport.get_log_range(EventKind.STAKED, 0, 4)
        await transport.get_log_range(EventKind.STAKED, 0, 4)

        assert node.methods().count("eth_getBlockByNumber") == 1
        await transport.aclose()

    async def test_range_wider_than_memo_keeps_every_timestamp(
        self, node: FakeNode, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Memo eviction during one range never zeroes a record's timestamp."""
        monkeypatch.setattr(jsonrpc, "BLOCK_TIMESTAMP_MEMO_SIZE", 2)
        node.results["eth_getLogs"] = [
            make_log(EventKind.STAKED, block, ALICE, [block]) for block in (1, 2, 3)
        ]
        node.results["eth_getBlockByNumber"] = lambda params: {
            "timestamp": hex(1_000 + int(params[0], 16))
        }
        transport = node.transport()

        records = await transport.get_log_range(EventKind.STAKED, 0, 3)

        assert [r.occurred_at for r in records] == [1_001, 1_002, 1_003]
        await transport.aclose()

    async def test_block_header_requests_are_bounded(
        self, node: FakeNode, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """At most BLOCK_FETCH_CONCURRENCY headers are requested at once."""
        node.results["eth_getLogs"] = [
            make_log(EventKind.STAKED, block, ALICE, [block]) for block in range(1, 21)
        ]
        node.results["eth_getBlockByNumber"] = {"timestamp": "0x1"}
        original = JsonRpcTransport._request
        in_flight = peak = 0

        async def tracked(self: JsonRpcTransport, method: str, params: list[Any]) -> Any:
            nonlocal in_flight, peak
            if method != "eth_getBlockByNumber":
                return await original(self, method, params)
            in_flight += 1
            peak = max(peak, in_flight)
            try:
                await asyncio.sleep(0)
                return await original(self, method, params)
            finally:
                in_flight -= 1

        monkeypatch.setattr(JsonRpcTransport, "_request", tracked)
        transport = node.transport()

        records = await transport.get_log_range(EventKind.STAKED, 0, 20)

        assert len(records) == 20
        assert peak == jsonrpc.BLOCK_FETCH_CONCURRENCY
        await transport.aclose()

    async def test_messages_carry_their_own_timestamp(self, node: FakeNode) -> None:
        """NewMessage logs need no block header."""
        node.results["eth_getLogs"] = [
            make_log(EventKind.NEW_MESSAGE, 2, BOB, ["gm", 1_700_000_000])
        ]
        transport = node.transport()

        records = await transport.get_log_range(EventKind.NEW_MESSAGE, 0, 2)

        assert records == [
            MessagePostedRecord(block_number=2, sender=BOB, text="gm", occurred_at=1_700_000_000)
        ]
        assert "eth_getBlockByNumber" not in node.methods()
        await transport.aclose()

    @pytest.mark.parametrize(
        ("kind", "values", "expected"),
        [
            (
                EventKind.WITHDRAWN,
                [10**18, 5],
                WithdrawnRecord(block_number=1, validator=ALICE, amount=10**18, reward=5),
            ),
            (
                EventKind.SLASHED,
                [7, "offline"],
                SlashedRecord(block_number=1, validator=ALICE, amount=7, reason="offline"),
            ),
            (
                EventKind.BLOCK_PROPOSED,
                [42, 3],
                BlockProposedRecord(block_number=1, proposer=ALICE, proposed_block=42, reward=3),
            ),
        ],
    )
    async def test_decodes_every_kind(
        self, node: FakeNode, kind: EventKind, values: list[Any], expected: object
    ) -> None:
        """Every kind maps its parameters onto named fields."""
        node.results["eth_getLogs"] = [make_log(kind, 1, ALICE, values)]
        node.results["eth_getBlockByNumber"] = {"timestamp": "0x0"}
        transport = node.transport()

        assert await transport.get_log_range(kind, 0, 1) == [expected]
        await transport.aclose()

    async def test_removed_logs_are_skipped(self, node: FakeNode) -> None:
        """Logs dropped by a reorg are not returned."""
        node.results["eth_getLogs"] = [
            make_log(EventKind.NEW_MESSAGE, 2, BOB, ["gone", 1], removed=True)
        ]
        transport = node.transport()

        assert await transport.get_log_range(EventKind.NEW_MESSAGE, 0, 2) == []
        await transport.aclose()

    async def test_empty_range_makes_no_request(self, node: FakeNode) -> None:
        """An inverted range is empty without asking the node."""
        transport = node.transport()

        assert await transport.get_log_range(EventKind.STAKED, 5, 4) == []
        assert node.requests == []
        await transport.aclose()

    async def test_malformed_log(self, node: FakeNode) -> None:
        """A log whose data does not match the event is a transport failure."""
        log = make_log(EventKind.NEW_MESSAGE, 2, BOB, ["gm", 1])
        log["data"] = "0x1234"
        node.results["eth_getLogs"] = [log]
        transport = node.transport()

        with pytest.raises(TransportError, match="Malformed NewMessage log"):
            await transport.get_log_range(EventKind.NEW_MESSAGE, 0, 2)
        await transport.aclose()


class TestWrites:
    """Tests for submitting transactions."""

    async def test_send_and_confirm(self, node: FakeNode) -> None:
        """A write is sent from the signer and confirmed by its receipt."""
        node.results["eth_sendTransaction"] = "0xabc"
        node.results["eth_getTransactionReceipt"] = {
            "blockNumber": "0x9",
            "status": "0x1",
            "gasUsed": "0x5208",
        }
        transport = node.transport()

        receipt = await transport.send_write("stake", [], ALICE, value=10**18)

        (transaction,) = node.requests[0]["params"]
        assert transaction == {
            "from": ALICE,
            "to": CONTRACT,
            "data": FUNCTIONS["stake"].encode_call([]),
            "value": hex(10**18),
        }
        assert receipt.transaction_hash == "0xabc"
        assert receipt.block_number == 9
        assert receipt.status is True
        assert receipt.gas_used == 21_000
        await transport.aclose()

    async def test_zero_value_omitted(self, node: FakeNode) -> None:
        """Writes without attached value send no value field."""
        node.results["eth_sendTransaction"] = "0xabc"
        node.results["eth_getTransactionReceipt"] = {"blockNumber": "0x1", "status": "0x1"}
        transport = node.transport()

        await transport.send_write("sendMessage", ["gm"], BOB)

        (transaction,) = node.requests[0]["params"]
        assert "value" not in transaction
        await transport.aclose()

    async def test_node_refusal_is_rejection(self, node: FakeNode) -> None:
        """An error answer to the submission rejects the write."""
        node.errors["eth_sendTransaction"] = {
            "code": -32000,
            "message": "execution reverted: No stake to withdraw",
        }
        transport = node.transport()

        with pytest.raises(WriteRejectedError) as exc_info:
            await transport.send_write("withdraw", [], ALICE)

        assert exc_info.value.operation == "withdraw"
        assert "No stake to withdraw" in exc_info.value.reason
        await transport.aclose()

    async def test_reverted_receipt_is_rejection(self, node: FakeNode) -> None:
        """A mined but failed write carries its receipt."""
        node.results["eth_sendTransaction"] = "0xdef"
        node.results["eth_getTransactionReceipt"] = {"blockNumber": "0x3", "status": "0x0"}
        transport = node.transport()

        with pytest.raises(WriteRejectedError) as exc_info:
            await transport.send_write("withdraw", [], ALICE)

        assert exc_info.value.receipt is not None
        assert exc_info.value.receipt.status is False
        await transport.aclose()

    async def test_confirmation_timeout(self, node: FakeNode) -> None:
        """A write never mined fails with a transport error."""
        node.results["eth_sendTransaction"] = "0xabc"
        node.results["eth_getTransactionReceipt"] = None
        transport = node.transport(confirmation_timeout=0.05)

        with pytest.raises(TransportError, match="not mined"):
            await transport.send_write("withdraw", [], ALICE)
        await transport.aclose()

    async def test_bad_arguments_rejected_locally(self, node: FakeNode) -> None:
        """Arguments that cannot be encoded never reach the node."""
        transport = node.transport()

        with pytest.raises(WriteRejectedError):
            await transport.send_write("sendMessage", [], ALICE)
        assert node.requests == []
        await transport.aclose()
