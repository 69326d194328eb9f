"""
chaincore - Core library for chainsource components

Canonical data model, fee model, error taxonomy and recovery strategies
shared by every blockchain backend.
"""

__version__ = "0.1.0"

from chaincore.constants import (
    ESPLORA_URLS,
    FEE_PRIORITIES,
    FLOOR_TARGET,
    GENESIS_HASHES,
    FeePriority,
)
from chaincore.errors import (
    BackendError,
    BackendUnavailable,
    ChainSourceError,
    ConfigurationError,
    ProtocolError,
    RecoveryExhausted,
    RpcError,
)
from chaincore.fees import FeeModel, fee_in_range
from chaincore.models import (
    BackendKind,
    BroadcastResult,
    ChainInfo,
    FeeEstimate,
    RawBlock,
    UtxoView,
)
from chaincore.protocol import (
    BackendMethod,
    BlockByHeightRequest,
    GetChainInfoRequest,
    GetUtxoRequest,
    SendRawTransactionRequest,
)
from chaincore.recovery import (
    FixedIntervalRetry,
    NoRetry,
    RecoveryStrategy,
    RetryState,
    TimeoutRetry,
)

__all__ = [
    "BackendError",
    "BackendKind",
    "BackendMethod",
    "BackendUnavailable",
    "BlockByHeightRequest",
    "BroadcastResult",
    "ChainInfo",
    "ChainSourceError",
    "ConfigurationError",
    "ESPLORA_URLS",
    "FEE_PRIORITIES",
    "FLOOR_TARGET",
    "FeeEstimate",
    "FeeModel",
    "FeePriority",
    "FixedIntervalRetry",
    "GENESIS_HASHES",
    "GetChainInfoRequest",
    "GetUtxoRequest",
    "NoRetry",
    "ProtocolError",
    "RawBlock",
    "RecoveryExhausted",
    "RecoveryStrategy",
    "RetryState",
    "RpcError",
    "SendRawTransactionRequest",
    "TimeoutRetry",
    "UtxoView",
    "fee_in_range",
]
