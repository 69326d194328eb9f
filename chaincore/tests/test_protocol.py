"""
Tests for chaincore.protocol
"""

import pytest
from pydantic import ValidationError

from chaincore.protocol import (
    BackendMethod,
    BlockByHeightRequest,
    GetChainInfoRequest,
    GetUtxoRequest,
    SendRawTransactionRequest,
)

TXID = "AB" * 32


def test_method_names():
    assert [m.value for m in BackendMethod] == [
        "getchaininfo",
        "estimatefees",
        "getrawblockbyheight",
        "getutxout",
        "sendrawtransaction",
    ]


def test_chain_info_request_optional_height():
    assert GetChainInfoRequest().last_height is None
    assert GetChainInfoRequest(last_height=800_000).last_height == 800_000
    with pytest.raises(ValidationError):
        GetChainInfoRequest(last_height=-1)


def test_block_request_rejects_negative_height():
    assert BlockByHeightRequest(height=0).height == 0
    with pytest.raises(ValidationError):
        BlockByHeightRequest(height=-5)


def test_utxo_request_normalizes_txid():
    request = GetUtxoRequest(txid=TXID, vout=1)
    assert request.txid == "ab" * 32


@pytest.mark.parametrize("txid", ["ab" * 31, "zz" * 32, ""])
def test_utxo_request_rejects_bad_txid(txid):
    with pytest.raises(ValidationError):
        GetUtxoRequest(txid=txid, vout=0)


@pytest.mark.parametrize("vout", [-1, 2**32])
def test_utxo_request_rejects_bad_vout(vout):
    with pytest.raises(ValidationError):
        GetUtxoRequest(txid=TXID, vout=vout)


def test_send_request_defaults():
    request = SendRawTransactionRequest(tx="0200")
    assert request.allowhighfees is False


def test_send_request_rejects_non_hex():
    with pytest.raises(ValidationError):
        SendRawTransactionRequest(tx="not-a-transaction")
