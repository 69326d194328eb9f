"""
Esplora HTTP explorer blockchain backend.

Talks to any Esplora-compatible REST API (mempool.space, blockstream.info,
a self-hosted electrs). The explorer only knows the chain tip, so chain
info always reports the live state and never waits for a height.

Reference: https://github.com/Blockstream/esplora/blob/master/API.md
"""

from __future__ import annotations

from typing import Any

import httpx
from loguru import logger

from chaincore.constants import (
    ESPLORA_FEE_SEARCH_WINDOW,
    ESPLORA_URLS,
    FEE_PRIORITIES,
    FLOOR_TARGET,
    GENESIS_HASHES,
    VBYTES_PER_KVB,
    FeePriority,
)
from chaincore.errors import BackendUnavailable, ConfigurationError, ProtocolError
from chaincore.fees import fee_in_range, scale_fee_rate
from chaincore.models import (
    BackendKind,
    BroadcastResult,
    ChainInfo,
    FeeEstimate,
    RawBlock,
    UtxoView,
)
from chainsource.backends.base import BlockchainBackend


def esplora_url_for(network: str, url: str | None = None) -> str:
    """Explicit URL if given, otherwise the default explorer for network."""
    if url and url.strip():
        return url.strip().rstrip("/")
    try:
        return ESPLORA_URLS[network]
    except KeyError:
        raise ConfigurationError(
            f"no default esplora URL for network {network!r}, set one explicitly"
        ) from None


class EsploraBackend(BlockchainBackend):
    """
    Blockchain backend using an Esplora REST API.

    Fee estimates are keyed by target ranges rather than exact block
    counts, so each priority bucket is searched forward over
    ESPLORA_FEE_SEARCH_WINDOW blocks.
    """

    def __init__(
        self,
        network: str = "bitcoin",
        esplora_url: str | None = None,
        timeout: float = 30.0,
        fee_search_window: int = ESPLORA_FEE_SEARCH_WINDOW,
        fee_priorities: tuple[FeePriority, ...] = FEE_PRIORITIES,
    ):
        super().__init__(fee_priorities)
        self.network = network
        self.esplora_url = esplora_url_for(network, esplora_url)
        self.fee_search_window = fee_search_window
        self.client = httpx.AsyncClient(timeout=timeout)

    @property
    def kind(self) -> BackendKind:
        return BackendKind.HTTP_EXPLORER

    async def _api_call(
        self,
        method: str,
        endpoint: str,
        content: str | None = None,
    ) -> httpx.Response:
        """Make an API call to the explorer. Raises httpx.HTTPStatusError on 4xx/5xx."""
        url = f"{self.esplora_url}/{endpoint.lstrip('/')}"

        try:
            if method == "GET":
                response = await self.client.get(url)
            elif method == "POST":
                response = await self.client.post(url, content=content)
            else:
                raise ValueError(f"Unsupported HTTP method: {method}")
        except httpx.TransportError as e:
            logger.error(f"Esplora API call failed: {endpoint} - {e}")
            raise BackendUnavailable(f"esplora unreachable at {self.esplora_url}: {e}") from e

        response.raise_for_status()
        return response

    async def _get(self, endpoint: str) -> httpx.Response:
        try:
            return await self._api_call("GET", endpoint)
        except httpx.HTTPStatusError as e:
            logger.error(f"Esplora API call failed: {endpoint} - {e}")
            raise BackendUnavailable(
                f"esplora returned HTTP {e.response.status_code} for {endpoint}"
            ) from e

    async def _get_json(self, endpoint: str) -> Any:
        response = await self._get(endpoint)
        try:
            return response.json()
        except ValueError as e:
            raise ProtocolError(f"invalid JSON from esplora for {endpoint}") from e

    async def _get_tip_height(self) -> int:
        text = (await self._get("blocks/tip/height")).text.strip()
        try:
            return int(text)
        except ValueError as e:
            raise ProtocolError(f"invalid tip height from esplora: {text!r}") from e

    async def _get_block_hash(self, height: int) -> str:
        block_hash = (await self._get(f"block-height/{height}")).text.strip()
        if len(block_hash) != 64:
            raise ProtocolError(f"invalid block hash for height {height}: {block_hash!r}")
        return block_hash

    async def chain_info(self, known_height: int | None = None) -> ChainInfo:
        current_height = await self._get_tip_height()
        logger.debug(f"Blockchain height: {current_height}")

        genesis = await self._get_block_hash(0)
        chain = GENESIS_HASHES.get(genesis)
        if chain is None:
            raise ProtocolError(f"wrong chain hash {genesis}")

        return ChainInfo(
            chain=chain,
            header_count=current_height,
            block_count=current_height,
            in_initial_block_download=False,
        )

    async def block_by_height(self, height: int) -> RawBlock:
        current_height = await self._get_tip_height()
        if height > current_height:
            logger.debug(f"Block {height} is past the explorer tip {current_height}")
            return RawBlock.not_found()

        block_hash = await self._get_block_hash(height)
        block = (await self._get(f"block/{block_hash}/raw")).content
        logger.debug(f"Fetched block {height} ({block_hash}), {len(block)} bytes")
        return RawBlock(block_hash=block_hash, block=block)

    async def estimate_fees(self) -> FeeEstimate:
        estimates = await self._get_json("fee-estimates")
        if not isinstance(estimates, dict):
            raise ProtocolError(f"unexpected fee-estimates reply: {estimates!r}")

        fee_map: dict[int, int] = {}
        for priority in self.fee_model.priorities:
            rate = fee_in_range(estimates, priority.target, self.fee_search_window)
            if rate is None:
                continue
            fee_map[priority.target] = scale_fee_rate(rate, VBYTES_PER_KVB)

        # The cheapest rate the explorer reports stands in for the floor
        rates = [
            rate
            for rate in estimates.values()
            if isinstance(rate, (int, float)) and not isinstance(rate, bool)
        ]
        if rates:
            fee_map[FLOOR_TARGET] = scale_fee_rate(min(rates), VBYTES_PER_KVB)

        logger.debug(f"Fee rates from esplora (sat/kvB): {fee_map}")
        return self.fee_model.build(fee_map)

    async def get_utxo(self, txid: str, vout: int) -> UtxoView:
        try:
            response = await self._api_call("GET", f"tx/{txid}")
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status in (400, 404):
                if status == 400:
                    logger.warning(f"Error from esplora API for tx {txid}: {e.response.text}")
                logger.debug(f"Transaction {txid} unknown to the explorer")
                return UtxoView.not_found()
            raise BackendUnavailable(f"esplora returned HTTP {status} for tx/{txid}") from e

        try:
            outputs = response.json()["vout"]
        except (ValueError, KeyError, TypeError) as e:
            raise ProtocolError(f"malformed transaction {txid} from esplora") from e

        if not isinstance(outputs, list):
            raise ProtocolError(f"malformed outputs of {txid} from esplora: {outputs!r}")
        if vout >= len(outputs):
            logger.debug(f"Transaction {txid} has no output {vout}")
            return UtxoView.not_found()

        outspend = await self._get_json(f"tx/{txid}/outspend/{vout}")
        if isinstance(outspend, dict) and outspend.get("spent", False):
            logger.debug(f"UTXO {txid}:{vout} already spent")
            return UtxoView.not_found()

        output = outputs[vout]
        try:
            return UtxoView(amount=output["value"], script=output["scriptpubkey"])
        except (KeyError, TypeError, ValueError) as e:
            raise ProtocolError(f"malformed output {txid}:{vout} from esplora") from e

    async def send_raw_transaction(
        self, tx_hex: str, allow_high_fees: bool = False
    ) -> BroadcastResult:
        # Explorers apply their own policy; allow_high_fees cannot be forwarded
        try:
            response = await self._api_call("POST", "tx", content=tx_hex)
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status == 429 or status >= 500:
                logger.error(f"Esplora broadcast failed with HTTP {status}")
                raise BackendUnavailable(f"esplora returned HTTP {status} for tx") from e
            errmsg = e.response.text.strip() or str(e)
            logger.warning(f"Transaction rejected by esplora: {errmsg}")
            return BroadcastResult(success=False, error_message=errmsg)

        logger.info(f"Broadcast transaction: {response.text.strip()}")
        return BroadcastResult(success=True)

    async def close(self) -> None:
        await self.client.aclose()
