"""
Bitcoin Core RPC blockchain backend.
Uses plain node RPC calls, no wallet functionality.
"""

from __future__ import annotations

from typing import Any

import httpx
from loguru import logger

from chaincore.constants import FEE_PRIORITIES, FLOOR_TARGET, SATS_PER_BTC, FeePriority
from chaincore.errors import BackendUnavailable, ProtocolError, RpcError
from chaincore.models import (
    BackendKind,
    BroadcastResult,
    ChainInfo,
    FeeEstimate,
    RawBlock,
    UtxoView,
)
from chainsource.backends.base import BlockchainBackend

# Timeout for regular RPC calls (seconds)
DEFAULT_RPC_TIMEOUT = 30.0


def btc_to_sats(value: Any) -> int:
    """Convert a BTC amount from an RPC reply to satoshis."""
    try:
        sats = round(float(value) * SATS_PER_BTC)
    except (TypeError, ValueError, OverflowError) as e:
        raise ProtocolError(f"invalid BTC amount from bitcoind: {value!r}") from e
    if sats < 0:
        raise ProtocolError(f"negative BTC amount from bitcoind: {value!r}")
    return sats


class BitcoinCoreBackend(BlockchainBackend):
    """
    Blockchain backend using Bitcoin Core RPC.

    Fee rates come from estimatesmartfee (BTC/kvB) and the floor from
    getmempoolinfo's mempoolminfee; both are converted to sat/kvB.
    """

    def __init__(
        self,
        rpc_url: str = "http://127.0.0.1:8332",
        rpc_user: str = "rpcuser",
        rpc_password: str = "rpcpassword",
        timeout: float = DEFAULT_RPC_TIMEOUT,
        fee_priorities: tuple[FeePriority, ...] = FEE_PRIORITIES,
    ):
        super().__init__(fee_priorities)
        self.rpc_url = rpc_url.rstrip("/")
        self.rpc_user = rpc_user
        self.client = httpx.AsyncClient(timeout=timeout, auth=(rpc_user, rpc_password))
        self._request_id = 0

    @property
    def kind(self) -> BackendKind:
        return BackendKind.RPC_NODE

    async def _rpc_call(self, method: str, params: list | None = None) -> Any:
        """
        Make an RPC call to Bitcoin Core.

        Args:
            method: RPC method name
            params: Method parameters

        Returns:
            RPC result

        Raises:
            RpcError: The node answered with an error object
            ProtocolError: The response is not a JSON-RPC reply
            BackendUnavailable: On connection/timeout errors
        """
        self._request_id += 1
        payload = {
            "jsonrpc": "1.0",
            "id": self._request_id,
            "method": method,
            "params": params or [],
        }

        try:
            response = await self.client.post(self.rpc_url, json=payload)
        except httpx.TransportError as e:
            logger.error(f"RPC call failed: {method} - {e}")
            raise BackendUnavailable(f"bitcoind unreachable at {self.rpc_url}: {e}") from e

        # bitcoind reports RPC errors with HTTP 500 and a JSON body
        try:
            data = response.json()
        except ValueError as e:
            if response.is_error:
                logger.error(f"RPC call failed: {method} - HTTP {response.status_code}")
                raise BackendUnavailable(
                    f"bitcoind returned HTTP {response.status_code} for {method}"
                ) from e
            raise ProtocolError(f"invalid JSON from bitcoind for {method}") from e

        if not isinstance(data, dict):
            raise ProtocolError(f"unexpected reply to {method}: {data!r}")

        error_info = data.get("error")
        if error_info:
            if isinstance(error_info, dict):
                raise RpcError(
                    error_info.get("code", "unknown"),
                    error_info.get("message", str(error_info)),
                )
            raise RpcError("unknown", str(error_info))

        if response.is_error:
            raise BackendUnavailable(
                f"bitcoind returned HTTP {response.status_code} for {method}"
            )

        return data.get("result")

    async def chain_info(self, known_height: int | None = None) -> ChainInfo:
        info = await self._rpc_call("getblockchaininfo")
        try:
            chain_info = ChainInfo(
                chain=info["chain"],
                header_count=info["headers"],
                block_count=info["blocks"],
                in_initial_block_download=info["initialblockdownload"],
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ProtocolError(f"malformed getblockchaininfo reply: {e}") from e
        logger.debug(f"Chain info: {chain_info}")
        return chain_info

    async def block_by_height(self, height: int) -> RawBlock:
        current_height = await self._rpc_call("getblockcount")
        if not isinstance(current_height, int):
            raise ProtocolError(f"getblockcount returned {current_height!r}")
        if height > current_height:
            logger.debug(
                f"Requesting block out of best chain. Block height wanted: {height}, "
                f"tip: {current_height}"
            )
            return RawBlock.not_found()

        block_hash = await self._rpc_call("getblockhash", [height])
        if not isinstance(block_hash, str):
            raise ProtocolError(f"getblockhash returned {block_hash!r} for height {height}")
        raw_hex = await self._rpc_call("getblock", [block_hash, 0])
        try:
            block = bytes.fromhex(raw_hex)
        except (TypeError, ValueError) as e:
            raise ProtocolError(f"getblock returned a non-hex block for {block_hash}") from e
        logger.debug(f"Fetched block {height} ({block_hash}), {len(block)} bytes")
        return RawBlock(block_hash=block_hash, block=block)

    async def estimate_fees(self) -> FeeEstimate:
        fee_map: dict[int, int] = {}
        for priority in self.fee_model.priorities:
            result = await self._rpc_call("estimatesmartfee", [priority.target, priority.mode])
            feerate = result.get("feerate") if isinstance(result, dict) else None
            if feerate is None:
                errors = result.get("errors") if isinstance(result, dict) else result
                logger.info(f"No fee estimate for {priority.target} blocks: {errors}")
                continue
            fee_map[priority.target] = btc_to_sats(feerate)

        try:
            mempool = await self._rpc_call("getmempoolinfo")
            fee_map[FLOOR_TARGET] = btc_to_sats(mempool["mempoolminfee"])
        except (ProtocolError, KeyError, TypeError) as e:
            logger.debug(f"Mempool minimum fee unavailable: {e}")

        logger.debug(f"Fee rates from bitcoind (sat/kvB): {fee_map}")
        return self.fee_model.build(fee_map)

    async def get_utxo(self, txid: str, vout: int) -> UtxoView:
        # gettxout returns null when the output does not exist or is spent
        result = await self._rpc_call("gettxout", [txid, vout])
        if result is None:
            logger.debug(f"UTXO {txid}:{vout} not found (spent or doesn't exist)")
            return UtxoView.not_found()

        try:
            return UtxoView(
                amount=btc_to_sats(result["value"]),
                script=result["scriptPubKey"]["hex"],
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ProtocolError(f"malformed gettxout reply for {txid}:{vout}: {e}") from e

    async def send_raw_transaction(
        self, tx_hex: str, allow_high_fees: bool = False
    ) -> BroadcastResult:
        # maxfeerate=0 disables bitcoind's absurd-fee check
        params: list[Any] = [tx_hex, 0] if allow_high_fees else [tx_hex]
        try:
            txid = await self._rpc_call("sendrawtransaction", params)
        except RpcError as e:
            logger.warning(f"Transaction rejected by bitcoind: {e}")
            return BroadcastResult(success=False, error_message=str(e))

        logger.info(f"Broadcast transaction: {txid}")
        return BroadcastResult(success=True)

    async def close(self) -> None:
        await self.client.aclose()
