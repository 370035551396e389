"""
Bounded retry with exponential backoff for async operations.

The policy knows nothing about LLMs: whether an error is worth retrying is
decided by a predicate.  The default predicate treats authentication
failures, 4xx client errors (except 408 and 429) and quota exhaustion as
fatal, and everything else (timeouts, connection drops, 5xx, transient
rate limits) as retryable.
"""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from .logger import get_module_logger

logger = get_module_logger("retry")

T = TypeVar("T")

# Messages that mean "this will not fix itself"
FATAL_MESSAGE_MARKERS = (
    "unauthorized",
    "forbidden",
    "invalid api key",
    "quota exceeded",
    "exceeded your current quota",
    "insufficient_quota",
)

# 4xx codes that are worth waiting out
RETRYABLE_CLIENT_STATUSES = {408, 429}


def error_status(error: BaseException) -> Optional[int]:
    """HTTP status carried by an exception, if any."""
    for attr in ("status_code", "status"):
        value = getattr(error, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(error, "response", None)
    value = getattr(response, "status_code", None)
    return value if isinstance(value, int) else None


def is_retryable_error(error: BaseException) -> bool:
    """Default classification: False for errors that will not self-resolve."""
    message = str(error).lower()
    if any(marker in message for marker in FATAL_MESSAGE_MARKERS):
        return False

    status = error_status(error)
    if status is not None and 400 <= status < 500:
        return status in RETRYABLE_CLIENT_STATUSES
    return True


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    base_delay: float = 1.0,
    exponential: bool = True,
    is_retryable: Callable[[BaseException], bool] = is_retryable_error,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
) -> T:
    """
    Run `operation`, retrying failures the predicate accepts.

    Attempts are numbered 0..max_attempts: the first call plus up to
    `max_attempts` retries.  Before retry n+1 we wait
    base_delay * 2**n (or base_delay when exponential is False).

    Args:
        operation: Zero-argument coroutine function
        max_attempts: Number of retries after the first call
        base_delay: Delay in seconds before the first retry
        exponential: Double the delay after each failure
        is_retryable: Predicate deciding whether an error is worth retrying
        sleep: Awaitable sleep (injectable for tests)

    Returns:
        The operation's result

    Raises:
        The first fatal error, or the last error once attempts are exhausted
    """
    for attempt in range(max_attempts + 1):
        try:
            return await operation()
        except Exception as e:
            if not is_retryable(e):
                logger.debug(f"Not retrying fatal error: {e}")
                raise

            if attempt == max_attempts:
                logger.error(f"Giving up after {attempt + 1} attempts: {e}")
                raise

            wait_time = base_delay * (2 ** attempt) if exponential else base_delay
            logger.warning(
                f"Attempt {attempt + 1} failed ({type(e).__name__}: {e}); "
                f"retry {attempt + 1}/{max_attempts} in {wait_time:.2f}s"
            )
            await sleep(wait_time)

    # range() always runs at least once and every path above returns or raises
    raise RuntimeError("Unexpected state in retry loop")


@dataclass
class RetryPolicy:
    """Retry parameters bundled for reuse."""
    max_attempts: int = 3
    base_delay: float = 1.0
    exponential: bool = True
    is_retryable: Callable[[BaseException], bool] = is_retryable_error
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep

    async def run(self, operation: Callable[[], Awaitable[T]]) -> T:
        return await with_retry(
            operation,
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            exponential=self.exponential,
            is_retryable=self.is_retryable,
            sleep=self.sleep,
        )
