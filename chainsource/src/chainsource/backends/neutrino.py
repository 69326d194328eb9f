"""
Neutrino (BIP157/BIP158) light client blockchain backend.

Lightweight alternative to running a full Bitcoin node. The light client
runs as a separate daemon that finds peers on its own and exposes a small
REST API; this backend can launch that daemon itself from a NeutrinoConfig
or attach to one that is already running.

All P2P state (the daemon connection and the last seen tip) is owned by a
single worker task. Callers never touch it directly: every operation is
sent to the worker as a message on a queue and answered through a future.

Reference: https://github.com/lightninglabs/neutrino
"""

from __future__ import annotations

import asyncio
import subprocess
from dataclasses import dataclass, field
from typing import Any

import httpx
from loguru import logger

from chaincore.constants import (
    CHAIN_NAMES,
    FEE_PRIORITIES,
    FLOOR_TARGET,
    VBYTES_PER_KVB,
    FeePriority,
)
from chaincore.errors import BackendUnavailable, ConfigurationError, ProtocolError
from chaincore.fees import FeeModel, scale_fee_rate
from chaincore.models import (
    BackendKind,
    BroadcastResult,
    ChainInfo,
    FeeEstimate,
    RawBlock,
    UtxoView,
)
from chainsource.backends.base import BlockchainBackend

DEFAULT_NEUTRINO_URL = "http://127.0.0.1:8334"

# Host network name -> neutrino daemon network flag
NEUTRINO_NETWORKS: dict[str, str] = {
    "bitcoin": "mainnet",
    "mainnet": "mainnet",
    "testnet": "testnet",
    "signet": "signet",
    "regtest": "regtest",
}

# Seconds to wait for the daemon to exit before killing it
DAEMON_STOP_TIMEOUT = 10.0


@dataclass
class _Request:
    op: str
    args: tuple[Any, ...]
    future: asyncio.Future = field(repr=False)


class _NeutrinoEngine:
    """Worker-owned view of the light client. Only the worker task uses it."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        network: str,
        fee_model: FeeModel,
        sync_timeout: float,
        poll_interval: float,
    ):
        self.client = client
        self.network = network
        self.fee_model = fee_model
        self.sync_timeout = sync_timeout
        self.poll_interval = poll_interval
        self.tip_height: int | None = None

    async def _api_call(
        self,
        method: str,
        endpoint: str,
        params: dict[str, Any] | None = None,
        data: dict[str, Any] | None = None,
    ) -> Any:
        """Make an API call to the neutrino daemon. Raises httpx.HTTPStatusError on 4xx/5xx."""
        try:
            if method == "GET":
                response = await self.client.get(endpoint, params=params)
            elif method == "POST":
                response = await self.client.post(endpoint, json=data)
            else:
                raise ValueError(f"Unsupported HTTP method: {method}")
        except httpx.TransportError as e:
            logger.error(f"Neutrino API call failed: {endpoint} - {e}")
            raise BackendUnavailable(f"neutrino daemon unreachable: {e}") from e

        response.raise_for_status()
        try:
            return response.json()
        except ValueError as e:
            raise ProtocolError(f"invalid JSON from neutrino for {endpoint}") from e

    async def _get(self, endpoint: str, params: dict[str, Any] | None = None) -> Any:
        try:
            return await self._api_call("GET", endpoint, params=params)
        except httpx.HTTPStatusError as e:
            logger.error(f"Neutrino API call failed: {endpoint} - {e}")
            raise BackendUnavailable(
                f"neutrino returned HTTP {e.response.status_code} for {endpoint}"
            ) from e

    async def status(self) -> dict[str, Any]:
        status = await self._get("v1/status")
        if not isinstance(status, dict) or "block_height" not in status:
            raise ProtocolError(f"unexpected status reply: {status!r}")
        try:
            self.tip_height = int(status["block_height"])
        except (TypeError, ValueError) as e:
            raise ProtocolError(f"invalid block height in status: {status!r}") from e
        return status

    async def refresh(self) -> None:
        """Idle-time tip refresh; failures are only logged."""
        try:
            await self.status()
        except (BackendUnavailable, ProtocolError) as e:
            logger.debug(f"Neutrino status refresh failed: {e}")

    async def wait_for_height(self, height: int) -> dict[str, Any]:
        """Poll until the daemon reaches height or sync_timeout elapses."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.sync_timeout
        status = await self.status()
        while self.tip_height is not None and self.tip_height < height:
            if loop.time() >= deadline:
                logger.warning(
                    f"Neutrino still at height {self.tip_height} after "
                    f"{self.sync_timeout}s, wanted {height}"
                )
                break
            logger.info(f"Waiting for block {height}, neutrino at {self.tip_height}...")
            await asyncio.sleep(self.poll_interval)
            status = await self.status()
        return status

    async def chain_info(self, known_height: int | None) -> ChainInfo:
        if known_height is not None:
            status = await self.wait_for_height(known_height)
        else:
            status = await self.status()

        height = self.tip_height
        behind = known_height is not None and height < known_height
        try:
            return ChainInfo(
                chain=CHAIN_NAMES[self.network],
                header_count=int(status.get("header_height", height)),
                block_count=height,
                in_initial_block_download=behind or not status.get("synced", False),
            )
        except (TypeError, ValueError) as e:
            raise ProtocolError(f"malformed status reply: {status!r}") from e

    async def block_by_height(self, height: int) -> RawBlock:
        await self.status()
        if self.tip_height is None or height > self.tip_height:
            logger.debug(f"Block {height} is past the neutrino tip {self.tip_height}")
            return RawBlock.not_found()

        try:
            header = await self._api_call("GET", f"v1/block/{height}/header")
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                return RawBlock.not_found()
            raise BackendUnavailable(f"neutrino header lookup failed for {height}: {e}") from e

        block_hash = header.get("hash") if isinstance(header, dict) else None
        if not block_hash or not isinstance(block_hash, str):
            raise ProtocolError(f"header for height {height} has no hash")

        # The daemon fetches the full block from a peer on demand
        raw = await self._get(f"v1/block/{block_hash}/raw")
        try:
            block = bytes.fromhex(raw["hex"])
        except (KeyError, TypeError, ValueError) as e:
            raise ProtocolError(f"malformed raw block {block_hash} from neutrino") from e
        return RawBlock(block_hash=block_hash, block=block)

    async def estimate_fees(self) -> FeeEstimate:
        fee_map: dict[int, int] = {}
        for priority in self.fee_model.priorities:
            result = await self._get(
                "v1/fees/estimate", params={"target_blocks": priority.target}
            )
            if not isinstance(result, dict):
                raise ProtocolError(
                    f"unexpected fee reply for {priority.target} blocks: {result!r}"
                )
            fee_rate = result.get("fee_rate")
            if fee_rate is None or fee_rate == 0:
                logger.debug(f"No fee estimate from neutrino for {priority.target} blocks")
                continue
            fee_map[priority.target] = scale_fee_rate(fee_rate, VBYTES_PER_KVB)

        # Light clients have no mempool, the slowest bucket is the floor
        slowest = self.fee_model.targets[-1]
        if slowest in fee_map:
            fee_map[FLOOR_TARGET] = fee_map[slowest]

        logger.debug(f"Fee rates from neutrino (sat/kvB): {fee_map}")
        return self.fee_model.build(fee_map)

    async def get_utxo(self, txid: str, vout: int) -> UtxoView:
        try:
            result = await self._api_call("GET", f"v1/utxo/{txid}/{vout}")
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                logger.debug(f"UTXO {txid}:{vout} not found")
                return UtxoView.not_found()
            raise BackendUnavailable(f"neutrino UTXO lookup failed: {e}") from e

        if not isinstance(result, dict):
            raise ProtocolError(f"unexpected UTXO reply for {txid}:{vout}: {result!r}")
        if result.get("spent", False) or not result.get("unspent", True):
            logger.debug(f"UTXO {txid}:{vout} not found or spent")
            return UtxoView.not_found()

        try:
            return UtxoView(amount=result["value"], script=result["scriptpubkey"])
        except (KeyError, TypeError, ValueError) as e:
            raise ProtocolError(f"malformed UTXO {txid}:{vout} from neutrino") from e

    async def send_raw_transaction(self, tx_hex: str, allow_high_fees: bool) -> BroadcastResult:
        try:
            result = await self._api_call("POST", "v1/tx/broadcast", data={"tx_hex": tx_hex})
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if status == 429 or status >= 500:
                logger.error(f"Neutrino broadcast failed with HTTP {status}")
                raise BackendUnavailable(f"neutrino returned HTTP {status} for broadcast") from e
            try:
                body = e.response.json()
            except ValueError:
                body = None
            errmsg = body.get("error") if isinstance(body, dict) else None
            if not isinstance(errmsg, str):
                errmsg = None
            errmsg = errmsg or e.response.text
            logger.warning(f"Transaction rejected by neutrino: {errmsg}")
            return BroadcastResult(success=False, error_message=errmsg or str(e))

        txid = result.get("txid", "") if isinstance(result, dict) else ""
        logger.info(f"Broadcast transaction: {txid}")
        return BroadcastResult(success=True)


class NeutrinoBackend(BlockchainBackend):
    """
    Blockchain backend using Neutrino light client.

    The worker task is started lazily on the first request (or explicitly
    with start()) and lives until close().
    """

    def __init__(
        self,
        network: str = "bitcoin",
        neutrino_url: str = DEFAULT_NEUTRINO_URL,
        daemon: NeutrinoConfig | None = None,
        sync_timeout: float = 300.0,
        poll_interval: float = 2.0,
        request_timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
        fee_priorities: tuple[FeePriority, ...] = FEE_PRIORITIES,
    ):
        """
        Initialize Neutrino backend.

        Args:
            network: Host network name (bitcoin, testnet, signet, regtest)
            neutrino_url: URL of the neutrino REST API (default port 8334)
            daemon: If given, launch the daemon with this configuration
            sync_timeout: Max seconds chain_info waits for a known height
            poll_interval: Seconds between status polls
            request_timeout: HTTP timeout towards the daemon
            transport: Custom httpx transport (tests)
        """
        super().__init__(fee_priorities)
        if network not in NEUTRINO_NETWORKS:
            raise ConfigurationError(f"network {network!r} not supported by neutrino")
        self.network = network
        self.neutrino_url = neutrino_url.rstrip("/")
        self.daemon = daemon
        self.sync_timeout = sync_timeout
        self.poll_interval = poll_interval
        self.request_timeout = request_timeout
        self._transport = transport

        self._requests: asyncio.Queue[_Request | None] = asyncio.Queue()
        self._worker: asyncio.Task | None = None
        self._process: asyncio.subprocess.Process | None = None

    @property
    def kind(self) -> BackendKind:
        return BackendKind.P2P_LIGHT

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    async def start(self) -> None:
        """Launch the daemon (if configured) and the worker task."""
        if self._worker is not None:
            return

        if self.daemon is not None:
            args = self.daemon.to_args()
            logger.info(f"Starting neutrino daemon: {self.daemon.binary} {' '.join(args)}")
            try:
                # stdout must stay clean, the host may be reading ours
                self._process = await asyncio.create_subprocess_exec(
                    self.daemon.binary,
                    *args,
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.DEVNULL,
                )
            except OSError as e:
                raise ConfigurationError(
                    f"cannot launch neutrino daemon {self.daemon.binary!r}: {e}"
                ) from e

        self._worker = asyncio.create_task(self._run_worker(), name="neutrino-worker")

    async def _run_worker(self) -> None:
        client = httpx.AsyncClient(
            base_url=self.neutrino_url,
            timeout=self.request_timeout,
            transport=self._transport,
        )
        engine = _NeutrinoEngine(
            client,
            network=self.network,
            fee_model=self.fee_model,
            sync_timeout=self.sync_timeout,
            poll_interval=self.poll_interval,
        )
        logger.debug(f"Neutrino worker started for {self.neutrino_url}")
        try:
            while True:
                try:
                    request = await asyncio.wait_for(
                        self._requests.get(), timeout=self.poll_interval
                    )
                except TimeoutError:
                    await engine.refresh()
                    continue

                if request is None:
                    break

                handler = getattr(engine, request.op)
                try:
                    result = await handler(*request.args)
                except Exception as e:
                    if not request.future.done():
                        request.future.set_exception(e)
                else:
                    if not request.future.done():
                        request.future.set_result(result)
        finally:
            while not self._requests.empty():
                pending = self._requests.get_nowait()
                if pending is not None and not pending.future.done():
                    pending.future.set_exception(BackendUnavailable("neutrino worker stopped"))
            await client.aclose()
            logger.debug("Neutrino worker stopped")

    async def _request(self, op: str, *args: Any) -> Any:
        await self.start()
        if not self.running:
            raise BackendUnavailable("neutrino worker is not running")
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        await self._requests.put(_Request(op, args, future))
        return await future

    async def chain_info(self, known_height: int | None = None) -> ChainInfo:
        return await self._request("chain_info", known_height)

    async def block_by_height(self, height: int) -> RawBlock:
        return await self._request("block_by_height", height)

    async def estimate_fees(self) -> FeeEstimate:
        return await self._request("estimate_fees")

    async def get_utxo(self, txid: str, vout: int) -> UtxoView:
        return await self._request("get_utxo", txid, vout)

    async def send_raw_transaction(
        self, tx_hex: str, allow_high_fees: bool = False
    ) -> BroadcastResult:
        return await self._request("send_raw_transaction", tx_hex, allow_high_fees)

    async def close(self) -> None:
        """Stop the worker, wait for it, then stop the daemon if we own it."""
        if self._worker is not None:
            if not self._worker.done():
                await self._requests.put(None)
            await asyncio.gather(self._worker, return_exceptions=True)
            self._worker = None

        if self._process is not None and self._process.returncode is None:
            logger.info("Stopping neutrino daemon")
            self._process.terminate()
            try:
                await asyncio.wait_for(self._process.wait(), timeout=DAEMON_STOP_TIMEOUT)
            except TimeoutError:
                logger.warning("Neutrino daemon did not exit, killing it")
                self._process.kill()
                await self._process.wait()
        self._process = None


class NeutrinoConfig:
    """
    Command line of a neutrino daemon launched by NeutrinoBackend.
    """

    def __init__(
        self,
        network: str = "mainnet",
        data_dir: str = "/data/neutrino",
        listen_port: int = 8334,
        peers: list[str] | None = None,
        tor_socks: str | None = None,
        binary: str = "neutrinod",
    ):
        """
        Initialize neutrino configuration.

        Args:
            network: Bitcoin network (mainnet, testnet, regtest, signet)
            data_dir: Directory for neutrino data
            listen_port: Port for REST API
            peers: List of peer addresses to connect to
            tor_socks: Tor SOCKS5 proxy address (e.g., "127.0.0.1:9050")
            binary: Daemon executable
        """
        self.network = NEUTRINO_NETWORKS.get(network, network)
        self.data_dir = data_dir
        self.listen_port = listen_port
        self.peers = peers or []
        self.tor_socks = tor_socks
        self.binary = binary

    @property
    def rest_url(self) -> str:
        return f"http://127.0.0.1:{self.listen_port}"

    def to_args(self) -> list[str]:
        """Generate command-line arguments for neutrino daemon."""
        args = [
            f"--datadir={self.data_dir}",
            f"--{self.network}",
            f"--restlisten=127.0.0.1:{self.listen_port}",
        ]

        if self.tor_socks:
            args.append(f"--proxy={self.tor_socks}")

        for peer in self.peers:
            args.append(f"--connect={peer}")

        return args
