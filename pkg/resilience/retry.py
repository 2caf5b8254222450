"""
Timeout and retry helpers for external I/O.

Every call into storage or the event bus is bounded by a timeout; a
timeout surfaces as a retryable error instead of hanging the caller.
"""
import asyncio
import random
from typing import Awaitable, Callable, Optional, TypeVar

from internal.domain.errors import InfrastructureTimeoutError
from pkg.logger.logger import get_logger


logger = get_logger(__name__)


T = TypeVar("T")

DEFAULT_TIMEOUT = 5.0


async def with_timeout(
    awaitable: Awaitable[T],
    operation: str,
    timeout: Optional[float] = DEFAULT_TIMEOUT,
) -> T:
    """
    Await an I/O operation within a time budget.

    Args:
        awaitable: The pending I/O call.
        operation: Operation name for errors and logs.
        timeout: Budget in seconds; None disables the bound.

    Returns:
        The awaited result.

    Raises:
        InfrastructureTimeoutError: If the budget is exceeded.
    """
    if timeout is None:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as e:
        logger.warning("I/O operation timed out", operation=operation, timeout=timeout)
        raise InfrastructureTimeoutError(operation, timeout) from e


def is_retryable(error: BaseException) -> bool:
    """Errors flagged ``retryable`` and plain timeouts/connection errors are retried."""
    if getattr(error, "retryable", False):
        return True
    return isinstance(error, (asyncio.TimeoutError, ConnectionError))


async def retry_async(
    func: Callable[[], Awaitable[T]],
    operation: str,
    max_attempts: int = 3,
    base_delay: float = 0.1,
    max_delay: float = 2.0,
    retry_on: Callable[[BaseException], bool] = is_retryable,
) -> T:
    """
    Call ``func`` until it succeeds, retrying retryable errors with backoff.

    Delay doubles per attempt, capped at ``max_delay``, with full jitter.
    Non-retryable errors and the last retryable error propagate unchanged.

    Args:
        func: Zero-argument coroutine factory.
        operation: Operation name for logs.
        max_attempts: Total attempts including the first one.
        base_delay: Delay before the second attempt.
        max_delay: Upper bound for a single delay.
        retry_on: Predicate deciding whether an error is retried.

    Returns:
        Result of the first successful call.
    """
    attempt = 1
    while True:
        try:
            return await func()
        except Exception as e:
            if attempt >= max_attempts or not retry_on(e):
                raise
            delay = random.uniform(0, min(max_delay, base_delay * (2 ** (attempt - 1))))
            logger.warning(
                "Retrying operation after error",
                operation=operation,
                attempt=attempt,
                max_attempts=max_attempts,
                delay=round(delay, 3),
                error=str(e),
            )
            await asyncio.sleep(delay)
            attempt += 1
