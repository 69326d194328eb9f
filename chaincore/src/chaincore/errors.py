"""
Error taxonomy shared by backends, the recovery layer and the dispatcher.

Absence of data (unknown block, spent output, no fee estimate) is never an
error: it is reported as a null-valued response.
"""

from __future__ import annotations


class ChainSourceError(Exception):
    """Base class for every error raised by chainsource."""


class BackendError(ChainSourceError):
    """A backend call failed. Retryable by the recovery layer."""


class BackendUnavailable(BackendError):
    """Transport or connection failure talking to a backend."""


class ProtocolError(BackendError):
    """Backend answered with a malformed or unexpected response."""


class RpcError(ProtocolError):
    """JSON-RPC error object returned by a full node."""

    def __init__(self, code: int | str, message: str) -> None:
        super().__init__(f"RPC error {code}: {message}")
        self.code = code
        self.message = message


class RecoveryExhausted(ChainSourceError):
    """The retry budget for one backend call has been consumed."""

    def __init__(self, last_error: BaseException, attempts: int) -> None:
        super().__init__(
            f"recovery strategy gave up after {attempts} retries: {last_error}"
        )
        self.last_error = last_error
        self.attempts = attempts


class ConfigurationError(ChainSourceError):
    """Missing or invalid credential, URL or network for a backend."""
