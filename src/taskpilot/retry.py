"""
Bounded exponential-backoff retry for async operations.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

import structlog

from .cancellation import sleep_cancellable
from .errors import RetryExhaustedError

logger = structlog.get_logger()

T = TypeVar("T")

OnRetry = Callable[[Exception, int], Any]


@dataclass(frozen=True)
class RetryConfig:
    """Retry policy. ``max_retries`` counts attempts after the first one."""

    enabled: bool = True
    max_retries: int = 3
    initial_delay: float = 1.0
    max_delay: float = 60.0
    exponential_base: float = 2.0

    def calculate_delay(self, attempt: int) -> float:
        """Delay in seconds after the failed 0-based ``attempt``."""
        delay = self.initial_delay * (self.exponential_base ** attempt)
        return min(delay, self.max_delay)


async def run_with_retry(
    operation: Callable[[], Awaitable[T]],
    config: RetryConfig | None = None,
    on_retry: OnRetry | None = None,
    cancel_event: asyncio.Event | None = None,
) -> T:
    """Run ``operation`` with retries according to ``config``.

    Args:
        operation: Zero-argument callable returning a fresh awaitable per attempt
        config: Retry policy (defaults to ``RetryConfig()``)
        on_retry: Called as ``on_retry(error, attempt)`` before each backoff wait,
            with ``attempt`` counting from 1
        cancel_event: Optional ``asyncio.Event``; firing it during a backoff
            wait raises ``OperationCancelledError``

    Returns:
        The first successful result

    Raises:
        RetryExhaustedError: after ``max_retries + 1`` failed attempts
    """
    config = config or RetryConfig()

    if not config.enabled:
        return await operation()

    last_error: Exception | None = None
    for attempt in range(config.max_retries + 1):
        try:
            return await operation()
        except Exception as e:
            last_error = e

        if attempt >= config.max_retries:
            break

        delay = config.calculate_delay(attempt)
        logger.warning(
            "Operation failed, retrying",
            attempt=attempt + 1,
            delay=delay,
            error=str(last_error),
        )
        if on_retry is not None:
            on_retry(last_error, attempt + 1)

        await sleep_cancellable(delay, cancel_event)

    raise RetryExhaustedError(last_error, config.max_retries + 1) from last_error
