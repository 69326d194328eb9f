"""
Shared fixtures for chainsource tests.
"""

from __future__ import annotations

import sys
from collections.abc import Callable
from unittest.mock import AsyncMock, MagicMock

import pytest
from loguru import logger

from chaincore.models import (
    BackendKind,
    BroadcastResult,
    ChainInfo,
    FeeEstimate,
    FeeRate,
    RawBlock,
    UtxoView,
)
from chainsource.backends.base import BlockchainBackend

GENESIS_MAIN = "000000000019d6689c085ae165831e934ff763ae46a2a6c172b3f1b60a8ce26f"


def chain_info(block_count: int = 800_000, ibd: bool = False, chain: str = "main") -> ChainInfo:
    return ChainInfo(
        chain=chain,
        header_count=block_count,
        block_count=block_count,
        in_initial_block_download=ibd,
    )


def fee_estimate() -> FeeEstimate:
    return FeeEstimate(
        opening=10_000,
        mutual_close=5_000,
        unilateral_close=20_000,
        delayed_to_us=10_000,
        htlc_resolution=20_000,
        penalty=10_000,
        min_acceptable=2_500,
        max_acceptable=100_000,
        feerate_floor=1_000,
        feerates=(
            FeeRate(blocks=2, feerate=50_000),
            FeeRate(blocks=6, feerate=20_000),
            FeeRate(blocks=12, feerate=10_000),
            FeeRate(blocks=100, feerate=5_000),
        ),
    )


@pytest.fixture
def make_backend() -> Callable[..., MagicMock]:
    """Factory for backend doubles with async methods."""

    def _make(kind: BackendKind = BackendKind.RPC_NODE) -> MagicMock:
        backend = MagicMock(spec=BlockchainBackend)
        backend.kind = kind
        backend.chain_info = AsyncMock(return_value=chain_info())
        backend.estimate_fees = AsyncMock(return_value=fee_estimate())
        backend.block_by_height = AsyncMock(return_value=RawBlock.not_found())
        backend.get_utxo = AsyncMock(return_value=UtxoView.not_found())
        backend.send_raw_transaction = AsyncMock(return_value=BroadcastResult(success=True))
        backend.close = AsyncMock()
        return backend

    return _make


@pytest.fixture
def mock_dispatcher() -> MagicMock:
    dispatcher = MagicMock()
    dispatcher.kinds = [BackendKind.HTTP_EXPLORER]
    dispatcher.chain_info = AsyncMock(return_value=chain_info())
    dispatcher.estimate_fees = AsyncMock(return_value=fee_estimate())
    dispatcher.block_by_height = AsyncMock(
        return_value=RawBlock(block_hash=GENESIS_MAIN, block=b"\x01\x00\x00\x00")
    )
    dispatcher.get_utxo = AsyncMock(return_value=UtxoView(amount=50_000, script="0014" + "00" * 20))
    dispatcher.send_raw_transaction = AsyncMock(return_value=BroadcastResult(success=True))
    dispatcher.close = AsyncMock()
    return dispatcher


@pytest.fixture(autouse=True)
def reset_logging():
    """Commands reconfigure loguru; put the default stderr sink back afterwards."""
    yield
    logger.remove()
    logger.add(sys.stderr, level="DEBUG")
