"""
Bounded retry with a fixed delay for upstream operations.

``run_with_retry`` invokes an asynchronous operation up to
``maximum_retries`` times.  A raised fault is retried only when it is an
``UpstreamServiceError`` whose ``retryable`` property is true (timeouts,
connection failures and upstream 5xx responses); anything else is
re-raised immediately.  Between a retryable failure and the next attempt
the policy suspends for exactly ``retry_delay_milliseconds``; there is no
backoff growth and no jitter, and no pause follows the final attempt.

The pause is an ``asyncio`` suspension, so only the request being retried
waits.  The ``sleep`` argument exists so tests can observe the pauses
without waiting for them.
"""

import asyncio
import collections.abc
import typing

import structlog

import image_edit_proxy.exceptions

logger = structlog.get_logger()

T = typing.TypeVar("T")


def is_retryable_fault(fault: BaseException) -> bool:
    """Return whether ``fault`` may be retried by the policy."""
    return isinstance(fault, image_edit_proxy.exceptions.UpstreamServiceError) and fault.retryable


async def run_with_retry(
    operation: collections.abc.Callable[[], collections.abc.Awaitable[T]],
    maximum_retries: int,
    retry_delay_milliseconds: int,
    sleep: collections.abc.Callable[[float], collections.abc.Awaitable[typing.Any]] = asyncio.sleep,
) -> T:
    """
    Run ``operation`` until it succeeds, fails terminally, or the attempt
    budget is spent.

    Args:
        operation: Zero-argument callable returning an awaitable.  It is
            called afresh for every attempt.
        maximum_retries: Total number of attempts, including the first.
            Values below 1 still perform a single attempt.
        retry_delay_milliseconds: Fixed pause between attempts.
        sleep: Coroutine function used for the pause, in seconds.

    Returns:
        The result of the first successful attempt.

    Raises:
        The last fault raised by ``operation``, unchanged.
    """
    total_attempts = max(1, maximum_retries)
    retry_delay_seconds = retry_delay_milliseconds / 1000

    for attempt in range(1, total_attempts + 1):
        try:
            return await operation()
        except Exception as fault:
            if not is_retryable_fault(fault):
                raise

            if attempt >= total_attempts:
                logger.warning(
                    "upstream_retries_exhausted",
                    attempts=attempt,
                    error_type=type(fault).__name__,
                )
                raise

            logger.warning(
                "upstream_retry_scheduled",
                attempt=attempt,
                maximum_retries=total_attempts,
                retry_delay_milliseconds=retry_delay_milliseconds,
                error_type=type(fault).__name__,
            )
            await sleep(retry_delay_seconds)

    # Unreachable: the final iteration either returns or raises.
    raise AssertionError("run_with_retry exited without a result")
