"""
Request side of the backend plugin contract.

A Lightning node drives its chain backend through five JSON-RPC methods.
The request models below validate the parameters it sends; responses are
the canonical models in chaincore.models.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field, field_validator


class BackendMethod(str, Enum):
    GET_CHAIN_INFO = "getchaininfo"
    ESTIMATE_FEES = "estimatefees"
    GET_RAW_BLOCK_BY_HEIGHT = "getrawblockbyheight"
    GET_UTXOUT = "getutxout"
    SEND_RAW_TRANSACTION = "sendrawtransaction"


class GetChainInfoRequest(BaseModel):
    last_height: int | None = Field(default=None, ge=0)


class BlockByHeightRequest(BaseModel):
    height: int = Field(..., ge=0)


class GetUtxoRequest(BaseModel):
    txid: str = Field(..., min_length=64, max_length=64)
    vout: int = Field(..., ge=0, le=0xFFFFFFFF)

    @field_validator("txid")
    @classmethod
    def validate_txid(cls, v: str) -> str:
        try:
            bytes.fromhex(v)
        except ValueError as e:
            raise ValueError("txid must be hex") from e
        return v.lower()


class SendRawTransactionRequest(BaseModel):
    tx: str = Field(..., min_length=2)
    allowhighfees: bool = False

    @field_validator("tx")
    @classmethod
    def validate_tx(cls, v: str) -> str:
        try:
            bytes.fromhex(v)
        except ValueError as e:
            raise ValueError("tx must be a hex-encoded transaction") from e
        return v
