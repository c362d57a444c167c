"""
Helpers for racing work against a caller-supplied cancellation signal.

The signal is a plain ``asyncio.Event``; setting it asks every in-flight
operation that was handed the event to stop promptly.
"""

import asyncio
from typing import Awaitable, TypeVar

from .errors import OperationCancelledError

T = TypeVar("T")


def check_cancelled(cancel_event: asyncio.Event | None, message: str = "Operation cancelled") -> None:
    """Raise if the signal has already fired."""
    if cancel_event is not None and cancel_event.is_set():
        raise OperationCancelledError(message)


async def run_cancellable(
    awaitable: Awaitable[T],
    cancel_event: asyncio.Event | None,
    message: str = "Operation cancelled",
) -> T:
    """Await ``awaitable`` unless ``cancel_event`` fires first.

    When the event wins, the work is cancelled and awaited so its cleanup
    (for example killing a subprocess) runs before this returns.
    """
    if cancel_event is None:
        return await awaitable

    check_cancelled(cancel_event, message)

    work = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(cancel_event.wait())
    try:
        await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        work.cancel()
        await asyncio.gather(work, return_exceptions=True)
        raise
    finally:
        waiter.cancel()

    if work.done():
        return work.result()

    work.cancel()
    await asyncio.gather(work, return_exceptions=True)
    raise OperationCancelledError(message)


async def sleep_cancellable(delay: float, cancel_event: asyncio.Event | None) -> None:
    """Sleep for ``delay`` seconds, raising early if the signal fires."""
    await run_cancellable(asyncio.sleep(delay), cancel_event, "Retry wait cancelled")
