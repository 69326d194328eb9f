"""
Bitcoin network and Lightning backend constants.

Fee buckets follow what a Lightning node asks its backend for: four
confirmation targets, all estimated in conservative mode.
"""

from __future__ import annotations

from typing import NamedTuple

SATS_PER_BTC = 100_000_000

# Lightning fee rates are expressed per kilo-vbyte
VBYTES_PER_KVB = 1000


class FeePriority(NamedTuple):
    """A (confirmation target, estimate mode) pair."""

    target: int
    mode: str


CONSERVATIVE = "CONSERVATIVE"

# Ordered highest -> slowest. The fee model relies on this order.
FEE_PRIORITIES: tuple[FeePriority, ...] = (
    FeePriority(2, CONSERVATIVE),
    FeePriority(6, CONSERVATIVE),
    FeePriority(12, CONSERVATIVE),
    FeePriority(100, CONSERVATIVE),
)

# Pseudo-target used by adapters to carry the minimum relay fee
FLOOR_TARGET = 0

# Genesis block hash -> BIP70 chain name
GENESIS_HASHES: dict[str, str] = {
    "000000000019d6689c085ae165831e934ff763ae46a2a6c172b3f1b60a8ce26f": "main",
    "000000000933ea01ad0ee984209779baaec3ced90fa3f408719526f8d77f4943": "test",
    "00000008819873e925422c1ff0f99f7cc9bbb232af63a077a480a3633bee1ef6": "signet",
    "1466275836220db2944ca059a3a10ef6fd2ea684b0688d2c379296888a206003": "liquidv1",
}

# Host network name -> BIP70 chain name
CHAIN_NAMES: dict[str, str] = {
    "bitcoin": "main",
    "mainnet": "main",
    "testnet": "test",
    "signet": "signet",
    "regtest": "regtest",
    "liquid": "liquidv1",
}

MEMPOOL_ONION = "http://explorerzydxu5ecjrkwceayqybizmpjjznk5izmitf2modhcusuqlid.onion"

# Default Esplora-compatible explorer per host network
ESPLORA_URLS: dict[str, str] = {
    "bitcoin": "https://mempool.space/api",
    "bitcoin/tor": f"{MEMPOOL_ONION}/api",
    "testnet": "https://mempool.space/testnet/api",
    "testnet/tor": f"{MEMPOOL_ONION}/testnet/api",
    "signet": "https://mempool.space/signet/api",
    "liquid": "https://blockstream.info/liquid/api",
}

# Explorers answer by target ranges, so each bucket is searched forward
# over this many blocks before it is considered missing.
ESPLORA_FEE_SEARCH_WINDOW = 100

# Default Bitcoin Core RPC ports per host network
RPC_PORTS: dict[str, int] = {
    "bitcoin": 8332,
    "testnet": 18332,
    "signet": 38332,
    "regtest": 18443,
}

# Recovery defaults
DEFAULT_RETRY_TIMEOUT = 60.0  # seconds
DEFAULT_RETRY_ATTEMPTS = 4
