"""
chainsource - Bitcoin chain data provider for Lightning nodes

Serves chain info, fee estimates, raw blocks, UTXO lookups and transaction
broadcast from a full node, an Esplora explorer or a Neutrino light client,
with automatic fallback between them.
"""

__version__ = "0.1.0"
