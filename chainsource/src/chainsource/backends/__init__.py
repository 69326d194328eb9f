"""
Blockchain backend implementations.

Available backends:
- BitcoinCoreBackend: Full node via Bitcoin Core RPC (no wallet)
- EsploraBackend: Esplora REST API (mempool.space, blockstream.info, electrs)
- NeutrinoBackend: Lightweight BIP157/BIP158 light client daemon
"""

from chainsource.backends.base import BlockchainBackend
from chainsource.backends.bitcoin_core import BitcoinCoreBackend
from chainsource.backends.esplora import EsploraBackend
from chainsource.backends.neutrino import NeutrinoBackend, NeutrinoConfig

__all__ = [
    "BlockchainBackend",
    "BitcoinCoreBackend",
    "EsploraBackend",
    "NeutrinoBackend",
    "NeutrinoConfig",
]
