"""
Tests for BitcoinCoreBackend against a mocked JSON-RPC endpoint.
"""

from __future__ import annotations

import json
from typing import Any

import httpx
import pytest

from chaincore.errors import BackendUnavailable, ProtocolError, RpcError
from chainsource.backends.bitcoin_core import BitcoinCoreBackend, btc_to_sats

TXID = "f4184fc596403b9d638783cf57adfe4c75c605f6356fbc91338530e9831e9e16"


class Fail:
    """RPC error reply."""

    def __init__(self, code: int, message: str):
        self.code = code
        self.message = message


class FakeNode:
    """Answers JSON-RPC calls from a method -> result table and records them."""

    def __init__(self, results: dict[str, Any]):
        self.results = results
        self.calls: list[tuple[str, list]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        method, params = payload["method"], payload["params"]
        self.calls.append((method, params))
        result = self.results[method]
        if callable(result):
            result = result(params)
        if isinstance(result, Fail):
            return httpx.Response(
                500,
                json={
                    "result": None,
                    "error": {"code": result.code, "message": result.message},
                    "id": payload["id"],
                },
            )
        return httpx.Response(200, json={"result": result, "error": None, "id": payload["id"]})

    def methods(self) -> list[str]:
        return [method for method, _ in self.calls]


def make_backend(handler) -> BitcoinCoreBackend:
    backend = BitcoinCoreBackend(
        rpc_url="http://127.0.0.1:18443", rpc_user="test", rpc_password="test"
    )
    backend.client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return backend


def test_btc_to_sats():
    assert btc_to_sats(0.00001) == 1000
    assert btc_to_sats("0.5") == 50_000_000
    assert btc_to_sats(0.00012345) == 12345


@pytest.mark.parametrize("value", [None, "abc", float("nan"), -0.001, {"btc": 1}])
def test_btc_to_sats_rejects_malformed(value):
    with pytest.raises(ProtocolError):
        btc_to_sats(value)


@pytest.mark.asyncio
async def test_chain_info():
    node = FakeNode(
        {
            "getblockchaininfo": {
                "chain": "regtest",
                "headers": 120,
                "blocks": 118,
                "initialblockdownload": True,
            }
        }
    )
    backend = make_backend(node)

    info = await backend.chain_info()
    assert info.chain == "regtest"
    assert info.header_count == 120
    assert info.block_count == 118
    assert info.in_initial_block_download
    await backend.close()


@pytest.mark.asyncio
async def test_block_past_tip_is_null():
    node = FakeNode({"getblockcount": 100})
    backend = make_backend(node)

    block = await backend.block_by_height(101)
    assert not block.found
    assert node.methods() == ["getblockcount"]
    await backend.close()


@pytest.mark.asyncio
async def test_block_by_height():
    block_hash = "11" * 32
    node = FakeNode(
        {"getblockcount": 100, "getblockhash": block_hash, "getblock": "0100000000"}
    )
    backend = make_backend(node)

    block = await backend.block_by_height(100)
    assert block.block_hash == block_hash
    assert block.block == bytes.fromhex("0100000000")
    assert node.calls[-1] == ("getblock", [block_hash, 0])
    await backend.close()


@pytest.mark.asyncio
async def test_estimate_fees():
    rates = {2: 0.0005, 6: 0.0002, 12: 0.0001, 100: 0.00005}
    node = FakeNode(
        {
            "estimatesmartfee": lambda params: {"feerate": rates[params[0]], "blocks": params[0]},
            "getmempoolinfo": {"mempoolminfee": 0.00001},
        }
    )
    backend = make_backend(node)

    estimate = await backend.estimate_fees()
    assert estimate.opening == 10_000
    assert estimate.mutual_close == 5_000
    assert estimate.unilateral_close == 20_000
    assert estimate.min_acceptable == 2_500
    assert estimate.max_acceptable == 100_000
    assert estimate.feerate_floor == 1_000
    modes = {params[1] for method, params in node.calls if method == "estimatesmartfee"}
    assert modes == {"CONSERVATIVE"}
    await backend.close()


@pytest.mark.asyncio
async def test_estimate_fees_insufficient_data():
    def estimate(params):
        if params[0] == 100:
            return {"errors": ["Insufficient data or no feerate found"], "blocks": 0}
        return {"feerate": 0.0001, "blocks": params[0]}

    node = FakeNode({"estimatesmartfee": estimate, "getmempoolinfo": {"mempoolminfee": 0.00001}})
    backend = make_backend(node)

    estimate_result = await backend.estimate_fees()
    assert estimate_result.is_null
    assert estimate_result.feerate_floor is None
    await backend.close()


@pytest.mark.asyncio
async def test_estimate_fees_without_mempool_info():
    node = FakeNode(
        {
            "estimatesmartfee": {"feerate": 0.0001, "blocks": 2},
            "getmempoolinfo": Fail(-32601, "Method not found"),
        }
    )
    backend = make_backend(node)

    estimate = await backend.estimate_fees()
    assert estimate.feerate_floor == estimate.min_acceptable == 5_000
    await backend.close()


@pytest.mark.asyncio
async def test_get_utxo():
    node = FakeNode(
        {
            "gettxout": {
                "value": 0.5,
                "scriptPubKey": {"hex": "0014" + "ab" * 20, "type": "witness_v0_keyhash"},
            }
        }
    )
    backend = make_backend(node)

    utxo = await backend.get_utxo(TXID, 1)
    assert utxo.amount == 50_000_000
    assert utxo.script == "0014" + "ab" * 20
    assert node.calls == [("gettxout", [TXID, 1])]
    await backend.close()


@pytest.mark.asyncio
async def test_spent_utxo_is_null():
    backend = make_backend(FakeNode({"gettxout": None}))
    assert not (await backend.get_utxo(TXID, 0)).found
    await backend.close()


@pytest.mark.asyncio
async def test_send_raw_transaction():
    node = FakeNode({"sendrawtransaction": TXID})
    backend = make_backend(node)

    result = await backend.send_raw_transaction("0200")
    assert result.success
    assert result.error_message is None
    assert node.calls == [("sendrawtransaction", ["0200"])]
    await backend.close()


@pytest.mark.asyncio
async def test_send_allow_high_fees_disables_fee_check():
    node = FakeNode({"sendrawtransaction": TXID})
    backend = make_backend(node)

    await backend.send_raw_transaction("0200", allow_high_fees=True)
    assert node.calls == [("sendrawtransaction", ["0200", 0])]
    await backend.close()


@pytest.mark.asyncio
async def test_send_rejected():
    node = FakeNode({"sendrawtransaction": Fail(-26, "min relay fee not met")})
    backend = make_backend(node)

    result = await backend.send_raw_transaction("0200")
    assert not result.success
    assert "min relay fee not met" in result.error_message
    await backend.close()


@pytest.mark.asyncio
async def test_rpc_error_raised():
    backend = make_backend(FakeNode({"getblockchaininfo": Fail(-28, "Loading block index...")}))
    with pytest.raises(RpcError) as exc_info:
        await backend.chain_info()
    assert exc_info.value.code == -28
    await backend.close()


@pytest.mark.asyncio
async def test_connection_refused():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("Connection refused", request=request)

    backend = make_backend(handler)
    with pytest.raises(BackendUnavailable):
        await backend.chain_info()
    await backend.close()


@pytest.mark.asyncio
async def test_unauthorized_is_unavailable():
    backend = make_backend(lambda request: httpx.Response(401, content=b""))
    with pytest.raises(BackendUnavailable, match="401"):
        await backend.chain_info()
    await backend.close()


@pytest.mark.asyncio
async def test_non_json_reply():
    backend = make_backend(lambda request: httpx.Response(200, content=b"<html>"))
    with pytest.raises(ProtocolError):
        await backend.chain_info()
    await backend.close()


@pytest.mark.asyncio
async def test_malformed_chain_info():
    backend = make_backend(FakeNode({"getblockchaininfo": {"chain": "main"}}))
    with pytest.raises(ProtocolError):
        await backend.chain_info()
    await backend.close()


@pytest.mark.asyncio
async def test_estimate_fees_malformed_feerate():
    node = FakeNode(
        {
            "estimatesmartfee": {"feerate": "cheap", "blocks": 2},
            "getmempoolinfo": {"mempoolminfee": 0.00001},
        }
    )
    backend = make_backend(node)
    with pytest.raises(ProtocolError, match="invalid BTC amount"):
        await backend.estimate_fees()
    await backend.close()


@pytest.mark.asyncio
async def test_malformed_mempool_floor_falls_back_to_min_acceptable():
    node = FakeNode(
        {
            "estimatesmartfee": {"feerate": 0.0001, "blocks": 2},
            "getmempoolinfo": {"mempoolminfee": None},
        }
    )
    backend = make_backend(node)

    estimate = await backend.estimate_fees()
    assert estimate.feerate_floor == estimate.min_acceptable == 5_000
    await backend.close()


@pytest.mark.asyncio
async def test_non_string_block_hash():
    backend = make_backend(FakeNode({"getblockcount": 100, "getblockhash": 42}))
    with pytest.raises(ProtocolError, match="getblockhash"):
        await backend.block_by_height(10)
    await backend.close()
