"""
Build backends and the dispatcher from Settings.
"""

from __future__ import annotations

from loguru import logger

from chaincore.errors import ConfigurationError
from chaincore.models import BackendKind
from chaincore.recovery import FixedIntervalRetry, NoRetry, RecoveryStrategy, TimeoutRetry
from chainsource.backends.base import BlockchainBackend
from chainsource.backends.bitcoin_core import BitcoinCoreBackend
from chainsource.backends.esplora import EsploraBackend
from chainsource.backends.neutrino import NeutrinoBackend, NeutrinoConfig
from chainsource.config import RetryConfig, Settings
from chainsource.dispatcher import BackendDispatcher, BackendEntry


def create_recovery(config: RetryConfig) -> RecoveryStrategy:
    if config.strategy == "none":
        return NoRetry()
    if config.strategy == "fixed":
        return FixedIntervalRetry(config.initial_timeout, config.max_attempts)
    return TimeoutRetry(config.initial_timeout, config.max_attempts)


def create_backend(kind: BackendKind, settings: Settings) -> BlockchainBackend:
    """
    Instantiate one backend.

    Raises:
        ConfigurationError: if the backend is missing credentials or does
            not support the configured network
    """
    if kind == BackendKind.RPC_NODE:
        bitcoind = settings.bitcoind
        if not bitcoind.rpc_user or not bitcoind.rpc_password:
            raise ConfigurationError("bitcoind needs bitcoin-rpcuser and bitcoin-rpcpassword")
        return BitcoinCoreBackend(
            rpc_url=bitcoind.rpc_url(settings.network),
            rpc_user=bitcoind.rpc_user,
            rpc_password=bitcoind.rpc_password,
            timeout=bitcoind.timeout,
        )

    if kind == BackendKind.HTTP_EXPLORER:
        return EsploraBackend(
            network=settings.network,
            esplora_url=settings.esplora.url,
            timeout=settings.esplora.timeout,
        )

    neutrino = settings.neutrino
    daemon = None
    url = neutrino.url
    if neutrino.launch_daemon:
        daemon = NeutrinoConfig(
            network=settings.network,
            data_dir=neutrino.data_dir,
            listen_port=neutrino.listen_port,
            peers=neutrino.peers,
            tor_socks=neutrino.tor_socks,
            binary=neutrino.binary,
        )
        url = daemon.rest_url
    return NeutrinoBackend(
        network=settings.network,
        neutrino_url=url,
        daemon=daemon,
        sync_timeout=neutrino.sync_timeout,
        poll_interval=neutrino.poll_interval,
    )


def create_dispatcher(settings: Settings) -> BackendDispatcher:
    """
    Build the dispatcher for every configured backend.

    A backend that cannot be configured is left out with a warning; the
    others keep working.

    Raises:
        ConfigurationError: if no backend could be configured
    """
    recovery = create_recovery(settings.retry)
    entries: list[BackendEntry] = []
    errors: list[str] = []
    for kind in settings.backend_kinds:
        try:
            backend = create_backend(kind, settings)
        except ConfigurationError as e:
            logger.warning(f"Disabling {kind.value} backend: {e}")
            errors.append(f"{kind.value}: {e}")
            continue
        logger.info(f"Using {kind.value} backend on {settings.network}")
        entries.append(BackendEntry(backend, recovery))

    if not entries:
        raise ConfigurationError(f"no usable backend ({'; '.join(errors)})")
    return BackendDispatcher(entries)
