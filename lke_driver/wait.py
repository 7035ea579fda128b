"""Readiness polling for remote convergence.

Every "wait until the remote side reports X" in the driver goes through
wait_for_ready. The poll function is re-issued on every tick, the interval
is fixed, and the wait is either bounded (raises ConvergenceTimeoutError)
or unbounded. Either variant can be abandoned through a cancel event.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

from loguru import logger
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_delay,
    stop_never,
    stop_when_event_set,
    wait_fixed,
)

from lke_driver.errors import ConvergenceTimeoutError, LinodeAPIError, PollCancelledError

log = logger.bind(component="wait")


class _PendingError(Exception):
    """Condition not met yet - retry."""


def is_transient(error: Exception) -> bool:
    """Whether a failed poll should be retried instead of aborting the wait."""
    match error:
        case LinodeAPIError() as e:
            return e.transient
        case _:
            return False


async def wait_for_ready[T](
    poll_fn: Callable[[], Awaitable[T]],
    ready_check: Callable[[T], bool],
    *,
    interval: float,
    timeout: float | None = None,
    description: str = "resource",
    cancel: asyncio.Event | None = None,
) -> T:
    """Poll until ``ready_check(await poll_fn())`` holds.

    Args:
        poll_fn: Async function querying the current remote state.
        ready_check: Returns True when the polled state is the awaited one.
        interval: Fixed seconds between polls.
        timeout: Maximum seconds to wait. None waits forever.
        description: Description for log and error messages.
        cancel: Optional event; once set the wait stops at the next tick.

    Returns:
        The first polled state that passed ready_check.

    Raises:
        ConvergenceTimeoutError: The bounded wait ran out of time. A transient
            query failure on the last attempt is chained as the cause.
        PollCancelledError: The cancel event was set.
        Exception: Any non-transient error raised by poll_fn.
    """
    stop = stop_never if timeout is None else stop_after_delay(timeout)
    if cancel is not None:
        stop = stop | stop_when_event_set(cancel)

    @retry(
        stop=stop,
        wait=wait_fixed(interval),
        retry=retry_if_exception_type(_PendingError),
        reraise=True,
    )
    async def _check() -> T:
        if cancel is not None and cancel.is_set():
            raise _PendingError(f"{description}: cancelled")
        try:
            result = await poll_fn()
        except Exception as e:
            if not is_transient(e):
                raise
            log.debug("Transient error while waiting for {what}: {error}", what=description, error=e)
            raise _PendingError(f"{description}: {e}") from e

        if not ready_check(result):
            log.trace("Still waiting for {what}", what=description)
            raise _PendingError(f"{description}: not ready")
        return result

    try:
        return await _check()
    except _PendingError as e:
        if cancel is not None and cancel.is_set():
            raise PollCancelledError(f"Wait for {description} was cancelled") from e
        raise ConvergenceTimeoutError(
            f"Timeout waiting for {description} after {timeout:.1f}s"
        ) from e.__cause__ or e
