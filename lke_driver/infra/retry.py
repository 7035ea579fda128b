"""Request-level retry for Linode rate limiting and brief outages.

The Linode API answers 429 when a token exceeds its rate limit and 503
during maintenance, both usually with a Retry-After header. Requests that
fail that way are re-sent with exponential backoff, never sooner than the
server asked for. Waiting for a cluster to converge is a different concern
and lives in lke_driver.wait.

Example:
    from lke_driver.infra.retry import on_status_code, retry

    @retry(on=on_status_code(429, 503), max_attempts=5)
    async def api_call():
        ...
"""

from __future__ import annotations

import asyncio
import functools
import random
from collections.abc import Awaitable, Callable

from loguru import logger

type RetryPredicate = Callable[[Exception], bool]

log = logger.bind(component="retry")


def on_status_code(*codes: int) -> RetryPredicate:
    """Retry exceptions whose ``status`` attribute is one of ``codes``."""

    def predicate(e: Exception) -> bool:
        return getattr(e, "status", None) in codes

    return predicate


def _as_predicate(
    on: type[Exception] | tuple[type[Exception], ...] | RetryPredicate,
) -> RetryPredicate:
    if isinstance(on, (type, tuple)):
        return lambda e: isinstance(e, on)
    return on


def backoff_delay(
    attempt: int,
    error: Exception,
    *,
    base_delay: float,
    factor: float,
    max_delay: float,
    jitter: bool,
) -> float:
    """Seconds to sleep after failed attempt number ``attempt`` (0-based).

    A ``retry_after`` hint on the error raises the delay, capped at ``max_delay``.
    """
    delay = min(base_delay * factor**attempt, max_delay)
    if jitter:
        delay += random.uniform(0, delay * 0.1)
    hint = getattr(error, "retry_after", None)
    if hint is not None:
        delay = max(delay, min(hint, max_delay))
    return delay


def retry[**P, T](
    on: type[Exception] | tuple[type[Exception], ...] | RetryPredicate = Exception,
    max_attempts: int = 5,
    base_delay: float = 1.0,
    factor: float = 2.0,
    max_delay: float = 30.0,
    jitter: bool = True,
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Re-run an async function while it raises retryable errors.

    Args:
        on: Exception class(es), or a predicate, selecting retryable errors.
        max_attempts: Total attempts including the first one.
        base_delay: Delay before the first retry.
        factor: Backoff multiplier per attempt.
        max_delay: Upper bound for any single delay.
        jitter: Add up to 10% random jitter.
    """
    should_retry = _as_predicate(on)

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            attempt = 0
            while True:
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    if attempt + 1 >= max_attempts or not should_retry(e):
                        raise
                    delay = backoff_delay(
                        attempt, e,
                        base_delay=base_delay, factor=factor,
                        max_delay=max_delay, jitter=jitter,
                    )
                    log.warning(
                        "{name} failed ({error}), attempt {attempt}/{total}; retrying in {delay:.1f}s",
                        name=func.__name__, error=e,
                        attempt=attempt + 1, total=max_attempts, delay=delay,
                    )
                    attempt += 1
                    await asyncio.sleep(delay)

        return wrapper

    return decorator
