"""
Primary/fallback dispatcher over the configured backends.

Each logical operation is tried on every backend in configured order, each
call wrapped in that backend's recovery strategy. The first success is
returned; a failure is logged and the next backend is tried. When every
backend failed, the last error is raised.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from functools import partial
from typing import TypeVar

from loguru import logger

from chaincore.errors import ChainSourceError, ConfigurationError
from chaincore.models import (
    BackendKind,
    BroadcastResult,
    ChainInfo,
    FeeEstimate,
    RawBlock,
    UtxoView,
)
from chaincore.recovery import RecoveryStrategy, TimeoutRetry
from chainsource.backends.base import BlockchainBackend

T = TypeVar("T")


@dataclass(frozen=True)
class BackendEntry:
    backend: BlockchainBackend
    recovery: RecoveryStrategy = field(default_factory=TimeoutRetry)

    @property
    def kind(self) -> BackendKind:
        return self.backend.kind


class BackendDispatcher:
    """
    Holds an ordered, immutable list of backends.

    The dispatcher keeps no state besides that list and never caches
    results.
    """

    def __init__(self, entries: Sequence[BackendEntry]):
        if not entries:
            raise ConfigurationError("at least one backend must be configured")
        self._entries: tuple[BackendEntry, ...] = tuple(entries)

    @property
    def entries(self) -> tuple[BackendEntry, ...]:
        return self._entries

    @property
    def kinds(self) -> list[BackendKind]:
        return [entry.kind for entry in self._entries]

    async def _dispatch(
        self, operation: str, call: Callable[[BlockchainBackend], Awaitable[T]]
    ) -> T:
        last_error: ChainSourceError | None = None
        for entry in self._entries:
            try:
                result = await entry.recovery.apply(partial(call, entry.backend))
            except ChainSourceError as e:
                logger.warning(f"{operation} failed on {entry.kind.value} backend: {e}")
                last_error = e
                continue
            logger.debug(f"{operation} served by {entry.kind.value} backend")
            return result

        assert last_error is not None
        logger.error(f"{operation} failed on every configured backend")
        raise last_error

    async def chain_info(self, last_height: int | None = None) -> ChainInfo:
        """
        Chain info from the first backend that is not catching up.

        A backend still in initial block download does not end the search;
        its answer is only returned if no later backend is synced.
        """
        syncing: ChainInfo | None = None
        last_error: ChainSourceError | None = None
        for entry in self._entries:
            try:
                info = await entry.recovery.apply(partial(entry.backend.chain_info, last_height))
            except ChainSourceError as e:
                logger.warning(f"getchaininfo failed on {entry.kind.value} backend: {e}")
                last_error = e
                continue

            if not info.in_initial_block_download:
                return info
            logger.info(
                f"{entry.kind.value} backend is in initial block download "
                f"at height {info.block_count}"
            )
            if syncing is None:
                syncing = info

        if syncing is not None:
            return syncing
        assert last_error is not None
        logger.error("getchaininfo failed on every configured backend")
        raise last_error

    async def estimate_fees(self) -> FeeEstimate:
        return await self._dispatch("estimatefees", lambda b: b.estimate_fees())

    async def block_by_height(self, height: int) -> RawBlock:
        return await self._dispatch("getrawblockbyheight", lambda b: b.block_by_height(height))

    async def get_utxo(self, txid: str, vout: int) -> UtxoView:
        return await self._dispatch("getutxout", lambda b: b.get_utxo(txid, vout))

    async def send_raw_transaction(
        self, tx_hex: str, allow_high_fees: bool = False
    ) -> BroadcastResult:
        return await self._dispatch(
            "sendrawtransaction",
            lambda b: b.send_raw_transaction(tx_hex, allow_high_fees),
        )

    async def close(self) -> None:
        for entry in self._entries:
            try:
                await entry.backend.close()
            except Exception as e:
                logger.warning(f"Failed to close {entry.kind.value} backend: {e}")
