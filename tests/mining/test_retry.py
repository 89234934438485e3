from __future__ import annotations

import asyncio

import pytest

from gold_miner.common.cancellation import CancellationToken
from gold_miner.common.errors import InvalidInputError, OperationCancelledError, RetryExhaustedError
from gold_miner.common import retry as retry_module
from gold_miner.common.retry import RetryConfig, execute_with_retry

FAST = RetryConfig(max_retries=3, initial_delay=0.001, max_delay=0.005)


class FlakyOperation:
    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionError(f"transient failure {self.calls}")
        return "ok"


@pytest.mark.asyncio
async def test_retry_returns_result_after_transient_failures() -> None:
    operation = FlakyOperation(failures=2)

    result = await execute_with_retry(operation, FAST)

    assert result == "ok"
    assert operation.calls == 3


@pytest.mark.asyncio
async def test_retry_exhaustion_wraps_last_error_and_attempt_count() -> None:
    operation = FlakyOperation(failures=100)
    config = RetryConfig(max_retries=2, initial_delay=0.001, max_delay=0.005)

    with pytest.raises(RetryExhaustedError) as exc_info:
        await execute_with_retry(operation, config)

    assert operation.calls == 3
    assert exc_info.value.attempts == 3
    assert str(exc_info.value.last_error) == "transient failure 3"
    assert exc_info.value.__cause__ is exc_info.value.last_error


@pytest.mark.asyncio
async def test_retry_accepts_plain_callables() -> None:
    calls = []

    def operation() -> int:
        calls.append(1)
        return 42

    assert await execute_with_retry(operation, FAST) == 42
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_cancel_during_backoff_stops_before_next_attempt() -> None:
    operation = FlakyOperation(failures=100)
    config = RetryConfig(max_retries=3, initial_delay=5.0, max_delay=5.0)
    token = CancellationToken()
    asyncio.get_running_loop().call_later(0.05, token.cancel)

    with pytest.raises(OperationCancelledError) as exc_info:
        await asyncio.wait_for(execute_with_retry(operation, config, cancel=token), timeout=2)

    assert not isinstance(exc_info.value, RetryExhaustedError)
    assert operation.calls == 1
    assert exc_info.value.attempts == 1


@pytest.mark.asyncio
async def test_already_cancelled_token_prevents_first_attempt() -> None:
    operation = FlakyOperation(failures=0)
    token = CancellationToken()
    token.cancel()

    with pytest.raises(OperationCancelledError):
        await execute_with_retry(operation, FAST, cancel=token)

    assert operation.calls == 0


@pytest.mark.asyncio
async def test_cancellation_raised_by_operation_is_not_retried() -> None:
    calls = []

    async def operation() -> None:
        calls.append(1)
        raise OperationCancelledError()

    with pytest.raises(OperationCancelledError):
        await execute_with_retry(operation, FAST)

    assert len(calls) == 1


@pytest.mark.asyncio
async def test_missing_operation_is_rejected_without_retrying() -> None:
    with pytest.raises(InvalidInputError):
        await execute_with_retry(None, FAST)


def test_retry_config_replaces_invalid_values_with_defaults() -> None:
    config = RetryConfig(max_retries=-1, initial_delay=0, max_delay=-5, multiplier=0)

    assert config.max_retries == 3
    assert config.initial_delay == 1.0
    assert config.max_delay == 30.0
    assert config.multiplier == 2.0
    assert config.max_attempts == 4


def test_retry_config_delay_grows_exponentially_and_caps() -> None:
    config = RetryConfig(max_retries=5, initial_delay=1.0, max_delay=5.0, multiplier=2.0)

    assert [config.delay_for(attempt) for attempt in range(1, 6)] == [1.0, 2.0, 4.0, 5.0, 5.0]


@pytest.mark.asyncio
async def test_retry_without_config_uses_configured_defaults(monkeypatch) -> None:
    monkeypatch.setattr(retry_module.settings, "RETRY_MAX_RETRIES", 1)
    monkeypatch.setattr(retry_module.settings, "RETRY_INITIAL_DELAY_SECONDS", 0.001)
    monkeypatch.setattr(retry_module.settings, "RETRY_MAX_DELAY_SECONDS", 0.002)
    operation = FlakyOperation(failures=100)

    with pytest.raises(RetryExhaustedError) as exc_info:
        await execute_with_retry(operation)

    assert operation.calls == 2
    assert exc_info.value.attempts == 2
