"""
Lightning node plugin exposing the chain backend methods.

The node talks to the plugin over JSON-RPC on stdin/stdout (handled by
pyln-client) and calls one method at a time. The async dispatcher lives on
a private event loop in its own thread; every request is submitted to that
loop and the node's thread blocks until the answer is ready.

Logs go to stderr, which the node copies into its own log.
"""

from __future__ import annotations

import asyncio
import sys
import threading
from collections.abc import Coroutine
from typing import Any, TypeVar

from loguru import logger
from pydantic import ValidationError
from pyln.client import Plugin, RpcException

from chaincore.errors import BackendUnavailable, ChainSourceError, ConfigurationError
from chaincore.protocol import (
    BackendMethod,
    BlockByHeightRequest,
    GetChainInfoRequest,
    GetUtxoRequest,
    SendRawTransactionRequest,
)
from chainsource.cli import setup_logging
from chainsource.config import settings_from_options
from chainsource.dispatcher import BackendDispatcher
from chainsource.factory import create_dispatcher

T = TypeVar("T")


class ChainSourceBridge:
    """
    Synchronous facade over a BackendDispatcher.

    Each public method validates the host's parameters, runs the matching
    dispatcher coroutine on the bridge loop and returns the wire dict.
    """

    def __init__(self, dispatcher: BackendDispatcher):
        self.dispatcher = dispatcher
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self._thread is not None:
            return
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(
            target=self._run_loop, name="chainsource-loop", daemon=True
        )
        self._thread.start()
        logger.debug("Bridge event loop started")

    def _run_loop(self) -> None:
        assert self._loop is not None
        asyncio.set_event_loop(self._loop)
        self._loop.run_forever()

    def _call(self, coro: Coroutine[Any, Any, T]) -> T:
        if self._loop is None or not self.running:
            coro.close()
            raise BackendUnavailable("chainsource bridge is not running")
        return asyncio.run_coroutine_threadsafe(coro, self._loop).result()

    def stop(self) -> None:
        """Close every backend, then stop and join the loop thread."""
        if self._loop is None or self._thread is None:
            return
        try:
            self._call(self.dispatcher.close())
        finally:
            self._loop.call_soon_threadsafe(self._loop.stop)
            self._thread.join()
            self._loop.close()
            self._loop = None
            self._thread = None
            logger.debug("Bridge event loop stopped")

    def getchaininfo(self, last_height: int | None = None) -> dict[str, Any]:
        request = GetChainInfoRequest(last_height=last_height)
        return self._call(self.dispatcher.chain_info(request.last_height)).to_wire()

    def estimatefees(self) -> dict[str, Any]:
        return self._call(self.dispatcher.estimate_fees()).to_wire()

    def getrawblockbyheight(self, height: int) -> dict[str, Any]:
        request = BlockByHeightRequest(height=height)
        return self._call(self.dispatcher.block_by_height(request.height)).to_wire()

    def getutxout(self, txid: str, vout: int) -> dict[str, Any]:
        request = GetUtxoRequest(txid=txid, vout=vout)
        return self._call(self.dispatcher.get_utxo(request.txid, request.vout)).to_wire()

    def sendrawtransaction(self, tx: str, allowhighfees: bool = False) -> dict[str, Any]:
        request = SendRawTransactionRequest(tx=tx, allowhighfees=allowhighfees)
        result = self._call(
            self.dispatcher.send_raw_transaction(request.tx, request.allowhighfees)
        )
        return result.to_wire()


# =============================================================================
# PLUGIN
# =============================================================================

# stdout is the JSON-RPC channel; our logs go to stderr
plugin = Plugin(dynamic=False, autopatch=False)
bridge: ChainSourceBridge | None = None

plugin.add_option(
    name="bitcoin-client",
    default=None,
    description="Primary backend: bitcoind, esplora or neutrino (default: esplora)",
)
plugin.add_option(
    name="bitcoin-fallback-client",
    default=None,
    description="Backend to try when the primary one fails",
)
plugin.add_option(
    name="bitcoin-esplora-url",
    default=None,
    description="Esplora API URL (default: mempool.space for the node's network)",
)
plugin.add_option(
    name="bitcoin-rpcconnect",
    default=None,
    description="bitcoind RPC host (default: 127.0.0.1)",
)
plugin.add_option(
    name="bitcoin-rpcport",
    default=None,
    description="bitcoind RPC port (default: the network's standard port)",
)
plugin.add_option(
    name="bitcoin-rpcuser",
    default=None,
    description="bitcoind RPC username",
)
plugin.add_option(
    name="bitcoin-rpcpassword",
    default=None,
    description="bitcoind RPC password",
)
plugin.add_option(
    name="bitcoin-neutrino-url",
    default=None,
    description="Neutrino daemon REST URL (default: http://127.0.0.1:8334)",
)
plugin.add_option(
    name="bitcoin-retry-timeout",
    default=None,
    description="Seconds before the first retry of a failed call, doubled each time",
)
plugin.add_option(
    name="bitcoin-retry-attempts",
    default=None,
    description="Retries of a failed call before trying the next backend",
)


def _bridge() -> ChainSourceBridge:
    if bridge is None:
        raise RpcException("chainsource is not initialized")
    return bridge


def _serve(method: BackendMethod, handler: Any, *args: Any) -> dict[str, Any]:
    try:
        return handler(*args)
    except ValidationError as e:
        logger.warning(f"{method.value}: invalid parameters: {e}")
        raise RpcException(f"invalid parameters for {method.value}: {e}") from e
    except ChainSourceError as e:
        logger.error(f"{method.value} failed: {e}")
        raise RpcException(f"{method.value} failed: {e}") from e


@plugin.init()
def init(options: dict[str, Any], configuration: dict[str, Any], plugin: Plugin, **kwargs: Any):
    global bridge

    network = configuration.get("network", "bitcoin")
    try:
        settings = settings_from_options(options, network)
        setup_logging(settings.log_level)
        dispatcher = create_dispatcher(settings)
    except ConfigurationError as e:
        logger.error(f"chainsource disabled: {e}")
        return {"disable": str(e)}

    bridge = ChainSourceBridge(dispatcher)
    bridge.start()
    kinds = ", ".join(kind.value for kind in dispatcher.kinds)
    logger.info(f"chainsource initialized on {network} with backends: {kinds}")


@plugin.method(BackendMethod.GET_CHAIN_INFO.value)
def getchaininfo(plugin: Plugin, last_height: int | None = None, **kwargs: Any):
    """Chain name, header and block counts and IBD state."""
    return _serve(BackendMethod.GET_CHAIN_INFO, _bridge().getchaininfo, last_height)


@plugin.method(BackendMethod.ESTIMATE_FEES.value)
def estimatefees(plugin: Plugin, **kwargs: Any):
    """Fee rates in sat/kvB for the node's fee roles."""
    return _serve(BackendMethod.ESTIMATE_FEES, _bridge().estimatefees)


@plugin.method(BackendMethod.GET_RAW_BLOCK_BY_HEIGHT.value)
def getrawblockbyheight(plugin: Plugin, height: int, **kwargs: Any):
    """Block hash and raw block at height, both null past the tip."""
    return _serve(BackendMethod.GET_RAW_BLOCK_BY_HEIGHT, _bridge().getrawblockbyheight, height)


@plugin.method(BackendMethod.GET_UTXOUT.value)
def getutxout(plugin: Plugin, txid: str, vout: int, **kwargs: Any):
    """Amount and script of an unspent output, both null if unknown or spent."""
    return _serve(BackendMethod.GET_UTXOUT, _bridge().getutxout, txid, vout)


@plugin.method(BackendMethod.SEND_RAW_TRANSACTION.value)
def sendrawtransaction(plugin: Plugin, tx: str, allowhighfees: bool = False, **kwargs: Any):
    """Broadcast a raw transaction."""
    return _serve(
        BackendMethod.SEND_RAW_TRANSACTION, _bridge().sendrawtransaction, tx, allowhighfees
    )


@plugin.subscribe("shutdown")
def on_shutdown(plugin: Plugin, **kwargs: Any):
    global bridge

    logger.info("Shutting down chainsource")
    if bridge is not None:
        bridge.stop()
        bridge = None
    sys.exit(0)


def main() -> None:
    """Plugin entry point."""
    plugin.run()


if __name__ == "__main__":
    main()
