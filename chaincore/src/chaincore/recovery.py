"""
Recovery strategies for fallible backend calls.

A strategy wraps a zero-argument coroutine factory and decides whether and
when to call it again after a BackendError. Strategies hold configuration
only; retry state lives in a RetryState created per apply() call, so one
strategy instance can serve any number of calls.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Protocol, TypeVar

from loguru import logger

from chaincore.constants import DEFAULT_RETRY_ATTEMPTS, DEFAULT_RETRY_TIMEOUT
from chaincore.errors import BackendError, ConfigurationError, RecoveryExhausted

T = TypeVar("T")


class SleepFunc(Protocol):
    async def __call__(self, seconds: float) -> None: ...


@dataclass
class RetryState:
    current_timeout: float
    max_attempts: int
    attempts_made: int = 0

    @property
    def exhausted(self) -> bool:
        return self.attempts_made >= self.max_attempts


class RecoveryStrategy(ABC):
    @abstractmethod
    async def apply(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run operation, recovering from BackendError per the strategy.

        Raises:
            RecoveryExhausted: when the operation still fails after the
                strategy gave up.
        """


class NoRetry(RecoveryStrategy):
    """Single attempt; failures are reported as exhausted immediately."""

    async def apply(self, operation: Callable[[], Awaitable[T]]) -> T:
        try:
            return await operation()
        except BackendError as e:
            raise RecoveryExhausted(e, 0) from e


class TimeoutRetry(RecoveryStrategy):
    """
    Retry with exponential backoff.

    After each failure sleeps current_timeout, doubles it and tries again,
    up to max_attempts retries. max_attempts counts retries, not calls: the
    operation runs at most max_attempts + 1 times, so the default of 4 makes
    5 calls and 4 sleeps (t, 2t, 4t, 8t).

    The sleep is not cancellable; callers that need a deadline must bound
    the whole apply() call.
    """

    def __init__(
        self,
        initial_timeout: float = DEFAULT_RETRY_TIMEOUT,
        max_attempts: int = DEFAULT_RETRY_ATTEMPTS,
        sleep: SleepFunc = asyncio.sleep,
    ):
        if initial_timeout < 0:
            raise ConfigurationError(f"retry timeout must be >= 0, got {initial_timeout}")
        if max_attempts < 0:
            raise ConfigurationError(f"retry attempts must be >= 0, got {max_attempts}")
        self.initial_timeout = initial_timeout
        self.max_attempts = max_attempts
        self._sleep = sleep

    def new_state(self) -> RetryState:
        return RetryState(current_timeout=self.initial_timeout, max_attempts=self.max_attempts)

    def next_delay(self, state: RetryState) -> float:
        delay = state.current_timeout
        state.current_timeout = delay * 2
        return delay

    async def apply(self, operation: Callable[[], Awaitable[T]]) -> T:
        state = self.new_state()
        while True:
            try:
                return await operation()
            except BackendError as e:
                if state.exhausted:
                    logger.error(
                        f"Recovery strategy {type(self).__name__} failed after "
                        f"{state.attempts_made} retries: {e}"
                    )
                    raise RecoveryExhausted(e, state.attempts_made) from e
                delay = self.next_delay(state)
                state.attempts_made += 1
                logger.warning(
                    f"Backend call failed ({e}), retry {state.attempts_made}/"
                    f"{state.max_attempts} in {delay:.2f}s"
                )
                await self._sleep(delay)


class FixedIntervalRetry(TimeoutRetry):
    """Same retry budget as TimeoutRetry but without backoff."""

    def next_delay(self, state: RetryState) -> float:
        return state.current_timeout
