"""
Base blockchain backend interface.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from chaincore.constants import FEE_PRIORITIES, FeePriority
from chaincore.fees import FeeModel
from chaincore.models import (
    BackendKind,
    BroadcastResult,
    ChainInfo,
    FeeEstimate,
    RawBlock,
    UtxoView,
)


class BlockchainBackend(ABC):
    """
    Abstract blockchain backend interface.

    Every method either returns a canonical model or raises a BackendError
    (BackendUnavailable / ProtocolError). Missing data is a null-valued
    model, not an exception.
    """

    def __init__(self, fee_priorities: tuple[FeePriority, ...] = FEE_PRIORITIES):
        self.fee_model = FeeModel(fee_priorities)

    @property
    @abstractmethod
    def kind(self) -> BackendKind:
        """Which adapter this is"""

    @abstractmethod
    async def chain_info(self, known_height: int | None = None) -> ChainInfo:
        """Current chain state.

        known_height is the caller's last seen height. Backends that sync
        on their own wait (bounded) until they reach it; others ignore it.
        """

    @abstractmethod
    async def block_by_height(self, height: int) -> RawBlock:
        """Serialized block at height, or RawBlock.not_found() past the tip"""

    @abstractmethod
    async def estimate_fees(self) -> FeeEstimate:
        """Canonical fee schedule (all fields or none)"""

    @abstractmethod
    async def get_utxo(self, txid: str, vout: int) -> UtxoView:
        """Output amount and script, or the null pair if unknown or spent"""

    @abstractmethod
    async def send_raw_transaction(
        self, tx_hex: str, allow_high_fees: bool = False
    ) -> BroadcastResult:
        """Broadcast a transaction. A rejection is a result, not an error."""

    async def close(self) -> None:
        """Close backend connection"""
        pass

    def __repr__(self) -> str:
        return f"<{type(self).__name__} kind={self.kind.value}>"
