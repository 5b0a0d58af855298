"""
vaultdrop/tests/test_rpc.py

Tests for the JSON-RPC client, priority fee estimation and the ledger client.
"""

import json
import struct
from unittest.mock import AsyncMock, Mock

import httpx
import pytest
from solders.hash import Hash
from solders.pubkey import Pubkey

from vaultdrop.exceptions import FeeEstimateError, JsonRpcError, LedgerError, StateDecodeError
from vaultdrop.ledger.client import LedgerClient
from vaultdrop.ledger.fees import PriorityFeeClient
from vaultdrop.ledger.state import DistributorState
from vaultdrop.rpc import JsonRpcClient

URL = "https://rpc.example.test"


# ============================================================================
# TEST DATA
# ============================================================================

def create_rpc(handler) -> JsonRpcClient:
    """JsonRpcClient over an in-process transport."""
    return JsonRpcClient(URL, http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


def result_handler(result, seen=None):
    def handler(request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        if seen is not None:
            seen.append(payload)
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": payload["id"], "result": result})
    return handler


class FakeTransaction:
    """Anything serializable to wire bytes."""

    def __bytes__(self) -> bytes:
        return b"\x01\x02"


def create_mock_solana_client(data: bytes = None):
    client = Mock()
    value = Mock(data=data) if data is not None else None
    client.get_account_info = AsyncMock(return_value=Mock(value=value))
    client.get_latest_blockhash = AsyncMock(return_value=Mock(value=Mock(blockhash=Hash.default())))
    client.send_raw_transaction = AsyncMock(return_value=Mock(value="5ig"))
    client.close = AsyncMock()
    return client


# ============================================================================
# JSON-RPC CLIENT TESTS
# ============================================================================

class TestJsonRpcClient:
    """Tests for JsonRpcClient."""

    @pytest.mark.trio
    async def test_call(self):
        seen = []
        rpc = create_rpc(result_handler({"ok": True}, seen))

        assert await rpc.call("getThing", {"a": 1}) == {"ok": True}
        assert seen[0]["method"] == "getThing"
        assert seen[0]["params"] == {"a": 1}
        assert seen[0]["jsonrpc"] == "2.0"
        await rpc.aclose()

    @pytest.mark.trio
    async def test_request_ids_increase(self):
        seen = []
        async with create_rpc(result_handler(1, seen)) as rpc:
            await rpc.call("a", [])
            await rpc.call("b", [])
        assert seen[1]["id"] > seen[0]["id"]

    @pytest.mark.trio
    async def test_error_response(self):
        def handler(request):
            return httpx.Response(200, json={
                "jsonrpc": "2.0", "id": 1, "error": {"code": -32602, "message": "Invalid params"},
            })

        with pytest.raises(JsonRpcError, match="-32602"):
            await create_rpc(handler).call("getThing", {})

    @pytest.mark.trio
    async def test_http_status_error(self):
        with pytest.raises(JsonRpcError):
            await create_rpc(lambda request: httpx.Response(429)).call("getThing", {})

    @pytest.mark.trio
    async def test_invalid_json(self):
        with pytest.raises(JsonRpcError, match="invalid JSON"):
            await create_rpc(lambda request: httpx.Response(200, content=b"<html>")).call("x", {})

    @pytest.mark.trio
    async def test_missing_result(self):
        handler = lambda request: httpx.Response(200, json={"jsonrpc": "2.0", "id": 1})
        with pytest.raises(JsonRpcError, match="no result"):
            await create_rpc(handler).call("x", {})

    @pytest.mark.trio
    async def test_non_object_response(self):
        handler = lambda request: httpx.Response(200, json=[1, 2])
        with pytest.raises(JsonRpcError):
            await create_rpc(handler).call("x", {})

    @pytest.mark.trio
    async def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(JsonRpcError, match="request failed"):
            await create_rpc(handler).call("x", {})


# ============================================================================
# PRIORITY FEE TESTS
# ============================================================================

class TestPriorityFeeClient:
    """Tests for PriorityFeeClient."""

    @pytest.mark.trio
    async def test_estimate_truncates(self):
        seen = []
        program_id = Pubkey.new_unique()
        fees = PriorityFeeClient(create_rpc(result_handler({"priorityFeeEstimate": 12345.9}, seen)))

        assert await fees.estimate([program_id]) == 12345
        assert seen[0]["method"] == "getPriorityFeeEstimate"
        assert seen[0]["params"] == [{"accountKeys": [str(program_id)]}]

    @pytest.mark.trio
    async def test_zero_estimate(self):
        fees = PriorityFeeClient(create_rpc(result_handler({"priorityFeeEstimate": 0})))
        assert await fees.estimate([Pubkey.new_unique()]) == 0

    @pytest.mark.trio
    @pytest.mark.parametrize("result", [{}, {"priorityFeeEstimate": "fast"}, None])
    async def test_malformed(self, result):
        fees = PriorityFeeClient(create_rpc(result_handler(result)))
        with pytest.raises(FeeEstimateError):
            await fees.estimate([Pubkey.new_unique()])

    @pytest.mark.trio
    @pytest.mark.parametrize("value", [-1, "NaN", "Infinity"])
    async def test_unusable_value(self, value):
        fees = PriorityFeeClient(create_rpc(result_handler({"priorityFeeEstimate": value})))
        with pytest.raises(FeeEstimateError):
            await fees.estimate([Pubkey.new_unique()])

    @pytest.mark.trio
    async def test_rpc_error_wrapped(self):
        rpc = Mock()
        rpc.call = AsyncMock(side_effect=JsonRpcError("down"))
        with pytest.raises(FeeEstimateError):
            await PriorityFeeClient(rpc).estimate([Pubkey.new_unique()])


# ============================================================================
# LEDGER CLIENT TESTS
# ============================================================================

class TestLedgerClient:
    """Tests for LedgerClient over a mocked solana client."""

    @pytest.mark.trio
    async def test_get_distributor_state(self):
        state = DistributorState(
            vault=Pubkey.new_unique(),
            mint=Pubkey.new_unique(),
            marker_mint=Pubkey.new_unique(),
            distributor_authority=Pubkey.new_unique(),
            share_size=10,
            number_of_shares=3,
        )
        ledger = LedgerClient(URL, client=create_mock_solana_client(state.encode()))
        assert await ledger.get_distributor_state(Pubkey.new_unique()) == state

    @pytest.mark.trio
    async def test_get_token_balance(self):
        data = bytes(64) + struct.pack("<Q", 4_000_000_000) + bytes(93)
        ledger = LedgerClient(URL, client=create_mock_solana_client(data))
        assert await ledger.get_token_balance(str(Pubkey.new_unique())) == 4_000_000_000

    @pytest.mark.trio
    async def test_missing_account(self):
        ledger = LedgerClient(URL, client=create_mock_solana_client(None))
        with pytest.raises(LedgerError, match="not found"):
            await ledger.get_account_data(Pubkey.new_unique())

    @pytest.mark.trio
    async def test_garbage_state(self):
        ledger = LedgerClient(URL, client=create_mock_solana_client(bytes(200)))
        with pytest.raises(StateDecodeError):
            await ledger.get_distributor_state(Pubkey.new_unique())

    @pytest.mark.trio
    async def test_transport_error_wrapped(self):
        client = create_mock_solana_client(bytes(72))
        client.get_account_info = AsyncMock(side_effect=httpx.ReadTimeout("slow"))
        ledger = LedgerClient(URL, client=client)
        with pytest.raises(LedgerError):
            await ledger.get_token_balance(Pubkey.new_unique())

    @pytest.mark.trio
    async def test_latest_blockhash(self):
        ledger = LedgerClient(URL, client=create_mock_solana_client())
        assert await ledger.get_latest_blockhash() == Hash.default()

    @pytest.mark.trio
    async def test_send_transaction(self):
        client = create_mock_solana_client()
        ledger = LedgerClient(URL, client=client)
        tx = FakeTransaction()

        assert await ledger.send_transaction(tx) == "5ig"
        args, kwargs = client.send_raw_transaction.await_args
        assert args[0] == b"\x01\x02"
        assert kwargs["opts"].skip_preflight is False

    @pytest.mark.trio
    async def test_aclose(self):
        client = create_mock_solana_client()
        await LedgerClient(URL, client=client).aclose()
        client.close.assert_awaited_once()
