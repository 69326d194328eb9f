"""
Tests for chaincore.recovery
"""

from unittest.mock import AsyncMock

import pytest

from chaincore.errors import (
    BackendUnavailable,
    ConfigurationError,
    ProtocolError,
    RecoveryExhausted,
)
from chaincore.recovery import FixedIntervalRetry, NoRetry, TimeoutRetry


class SleepRecorder:
    """Stands in for asyncio.sleep and records the requested delays."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def sleep():
    return SleepRecorder()


@pytest.mark.asyncio
async def test_success_needs_no_retry(sleep):
    strategy = TimeoutRetry(initial_timeout=0.01, max_attempts=4, sleep=sleep)
    operation = AsyncMock(return_value=42)

    assert await strategy.apply(operation) == 42
    assert operation.await_count == 1
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_backoff_doubles_until_exhausted(sleep):
    strategy = TimeoutRetry(initial_timeout=0.01, max_attempts=4, sleep=sleep)
    error = BackendUnavailable("connection refused")
    operation = AsyncMock(side_effect=error)

    with pytest.raises(RecoveryExhausted) as exc_info:
        await strategy.apply(operation)

    assert operation.await_count == 5
    assert sleep.delays == [0.01, 0.02, 0.04, 0.08]
    assert exc_info.value.attempts == 4
    assert exc_info.value.last_error is error


@pytest.mark.asyncio
async def test_recovers_after_transient_failures(sleep):
    strategy = TimeoutRetry(initial_timeout=0.01, max_attempts=4, sleep=sleep)
    operation = AsyncMock(
        side_effect=[BackendUnavailable("timeout"), ProtocolError("garbage"), "ok"]
    )

    assert await strategy.apply(operation) == "ok"
    assert operation.await_count == 3
    assert sleep.delays == [0.01, 0.02]


@pytest.mark.asyncio
async def test_state_resets_between_calls(sleep):
    strategy = TimeoutRetry(initial_timeout=0.01, max_attempts=4, sleep=sleep)

    for _ in range(2):
        operation = AsyncMock(side_effect=[BackendUnavailable("down"), "ok"])
        assert await strategy.apply(operation) == "ok"

    assert sleep.delays == [0.01, 0.01]


@pytest.mark.asyncio
async def test_non_backend_errors_are_not_retried(sleep):
    strategy = TimeoutRetry(initial_timeout=0.01, max_attempts=4, sleep=sleep)
    operation = AsyncMock(side_effect=KeyError("bug"))

    with pytest.raises(KeyError):
        await strategy.apply(operation)
    assert operation.await_count == 1
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_zero_attempts_means_single_call(sleep):
    strategy = TimeoutRetry(initial_timeout=0.01, max_attempts=0, sleep=sleep)
    operation = AsyncMock(side_effect=BackendUnavailable("down"))

    with pytest.raises(RecoveryExhausted) as exc_info:
        await strategy.apply(operation)
    assert operation.await_count == 1
    assert exc_info.value.attempts == 0
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_fixed_interval_keeps_delay(sleep):
    strategy = FixedIntervalRetry(initial_timeout=0.5, max_attempts=3, sleep=sleep)
    operation = AsyncMock(side_effect=BackendUnavailable("down"))

    with pytest.raises(RecoveryExhausted):
        await strategy.apply(operation)
    assert operation.await_count == 4
    assert sleep.delays == [0.5, 0.5, 0.5]


@pytest.mark.asyncio
async def test_no_retry():
    operation = AsyncMock(side_effect=BackendUnavailable("down"))

    with pytest.raises(RecoveryExhausted) as exc_info:
        await NoRetry().apply(operation)
    assert operation.await_count == 1
    assert exc_info.value.attempts == 0


@pytest.mark.asyncio
async def test_no_retry_passes_result_through():
    assert await NoRetry().apply(AsyncMock(return_value="tip")) == "tip"


def test_new_state_uses_configuration():
    state = TimeoutRetry(initial_timeout=60, max_attempts=4).new_state()
    assert state.current_timeout == 60
    assert state.max_attempts == 4
    assert state.attempts_made == 0
    assert not state.exhausted


@pytest.mark.parametrize("timeout,attempts", [(-1, 4), (60, -1)])
def test_negative_configuration_rejected(timeout, attempts):
    with pytest.raises(ConfigurationError):
        TimeoutRetry(initial_timeout=timeout, max_attempts=attempts)
