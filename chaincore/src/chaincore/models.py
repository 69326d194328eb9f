"""
Canonical data model exchanged between backends, dispatcher and host.

Field aliases are the wire names the Lightning node expects.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field, model_validator


class BackendKind(str, Enum):
    RPC_NODE = "bitcoind"
    HTTP_EXPLORER = "esplora"
    P2P_LIGHT = "neutrino"


class WireModel(BaseModel):
    model_config = {"populate_by_name": True, "frozen": True}

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


class ChainInfo(WireModel):
    chain: str
    header_count: int = Field(..., ge=0, alias="headercount")
    block_count: int = Field(..., ge=0, alias="blockcount")
    in_initial_block_download: bool = Field(..., alias="ibd")


class RawBlock(WireModel):
    """A serialized block, or the null pair when the height is past the tip."""

    block_hash: str | None = Field(default=None, alias="blockhash")
    block: bytes | None = None

    @model_validator(mode="after")
    def check_pair(self) -> RawBlock:
        if (self.block_hash is None) != (self.block is None):
            raise ValueError("blockhash and block must be both set or both null")
        return self

    @classmethod
    def not_found(cls) -> RawBlock:
        return cls()

    @property
    def found(self) -> bool:
        return self.block_hash is not None

    def to_wire(self) -> dict:
        return {
            "blockhash": self.block_hash,
            "block": self.block.hex() if self.block is not None else None,
        }


class FeeRate(WireModel):
    blocks: int
    feerate: int


FEE_FIELDS = (
    "opening",
    "mutual_close",
    "unilateral_close",
    "delayed_to_us",
    "htlc_resolution",
    "penalty",
    "min_acceptable",
    "max_acceptable",
)


class FeeEstimate(WireModel):
    """
    The eight-field fee schedule, in sat/kvB.

    Either every field is populated or every field is null. A schedule with
    gaps is rejected at construction time.
    """

    opening: int | None = None
    mutual_close: int | None = None
    unilateral_close: int | None = None
    delayed_to_us: int | None = None
    htlc_resolution: int | None = None
    penalty: int | None = None
    min_acceptable: int | None = None
    max_acceptable: int | None = None
    feerate_floor: int | None = None
    feerates: tuple[FeeRate, ...] = ()

    @model_validator(mode="after")
    def check_all_or_nothing(self) -> FeeEstimate:
        present = [getattr(self, name) is not None for name in FEE_FIELDS]
        if any(present) and not all(present):
            raise ValueError("fee estimate must populate all fields or none")
        if not any(present) and (self.feerate_floor is not None or self.feerates):
            raise ValueError("null fee estimate cannot carry a floor or feerates")
        return self

    @classmethod
    def null(cls) -> FeeEstimate:
        return cls()

    @property
    def is_null(self) -> bool:
        return self.opening is None


class UtxoView(WireModel):
    amount: int | None = Field(default=None, ge=0)
    script: str | None = None

    @model_validator(mode="after")
    def check_pair(self) -> UtxoView:
        if (self.amount is None) != (self.script is None):
            raise ValueError("amount and script must be both set or both null")
        return self

    @classmethod
    def not_found(cls) -> UtxoView:
        return cls()

    @property
    def found(self) -> bool:
        return self.amount is not None


class BroadcastResult(WireModel):
    success: bool
    error_message: str | None = Field(default=None, alias="errmsg")
