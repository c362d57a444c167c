"""
Tests for the retry executor.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from taskpilot.errors import OperationCancelledError, RetryExhaustedError
from taskpilot.retry import RetryConfig, run_with_retry

FAST = RetryConfig(max_retries=3, initial_delay=0, max_delay=0)


def test_calculate_delay_exponential():
    config = RetryConfig(initial_delay=1.0, exponential_base=2.0, max_delay=60.0)

    assert config.calculate_delay(0) == 1.0
    assert config.calculate_delay(1) == 2.0
    assert config.calculate_delay(3) == 8.0


def test_calculate_delay_capped():
    config = RetryConfig(initial_delay=1.0, exponential_base=2.0, max_delay=5.0)

    assert config.calculate_delay(10) == 5.0


@pytest.mark.asyncio
async def test_success_first_attempt():
    operation = AsyncMock(return_value="ok")
    on_retry = MagicMock()

    result = await run_with_retry(operation, FAST, on_retry)

    assert result == "ok"
    assert operation.await_count == 1
    on_retry.assert_not_called()


@pytest.mark.asyncio
async def test_succeeds_after_failures():
    """Fails twice, then succeeds: three calls, two retry notifications."""
    operation = AsyncMock(side_effect=[RuntimeError("a"), RuntimeError("b"), "done"])
    on_retry = MagicMock()

    result = await run_with_retry(operation, FAST, on_retry)

    assert result == "done"
    assert operation.await_count == 3
    assert on_retry.call_count == 2
    attempts = [call.args[1] for call in on_retry.call_args_list]
    assert attempts == [1, 2]


@pytest.mark.asyncio
async def test_exhausted_after_max_retries_plus_one():
    error = RuntimeError("always")
    operation = AsyncMock(side_effect=error)
    on_retry = MagicMock()

    with pytest.raises(RetryExhaustedError) as exc_info:
        await run_with_retry(operation, FAST, on_retry)

    assert operation.await_count == FAST.max_retries + 1
    assert on_retry.call_count == FAST.max_retries
    assert exc_info.value.attempts == FAST.max_retries + 1
    assert exc_info.value.last_error is error
    assert "always" in str(exc_info.value)


@pytest.mark.asyncio
async def test_disabled_runs_once_and_propagates_raw_error():
    operation = AsyncMock(side_effect=ValueError("boom"))

    with pytest.raises(ValueError, match="boom"):
        await run_with_retry(operation, RetryConfig(enabled=False))

    assert operation.await_count == 1


@pytest.mark.asyncio
async def test_zero_retries_is_single_attempt():
    operation = AsyncMock(side_effect=RuntimeError("x"))

    with pytest.raises(RetryExhaustedError):
        await run_with_retry(operation, RetryConfig(max_retries=0, initial_delay=0))

    assert operation.await_count == 1


@pytest.mark.asyncio
async def test_cancel_during_backoff_returns_promptly():
    operation = AsyncMock(side_effect=RuntimeError("slow down"))
    cancel_event = asyncio.Event()
    config = RetryConfig(max_retries=5, initial_delay=30.0, max_delay=30.0)

    async def fire_soon():
        await asyncio.sleep(0.05)
        cancel_event.set()

    asyncio.create_task(fire_soon())
    with pytest.raises(OperationCancelledError):
        await asyncio.wait_for(run_with_retry(operation, config, cancel_event=cancel_event), timeout=5)

    assert operation.await_count == 1
