"""
Retry executor for remote calls.

Wraps a coroutine factory with bounded exponential backoff and jitter
using tenacity. Transient failures are retried; anything else propagates
on the first attempt. When the budget runs out the last error is wrapped
in ExhaustedRetriesError.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from studio_sync.core.exceptions import ExhaustedRetriesError, is_transient_error

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_RETRIES = 3
INITIAL_DELAY = 1.0  # seconds
MAX_JITTER = 1.0  # seconds

Sleep = Callable[[float], Awaitable[Any]]


def _log_retry(retry_state: RetryCallState) -> None:
    error = retry_state.outcome.exception() if retry_state.outcome else None
    delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
    logger.warning(
        "Transient failure on attempt %d, retrying in %.2fs: %s",
        retry_state.attempt_number,
        delay,
        error,
    )


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    max_retries: int = MAX_RETRIES,
    initial_delay: float = INITIAL_DELAY,
    max_jitter: float = MAX_JITTER,
    sleep: Sleep = asyncio.sleep,
) -> T:
    """
    Run an operation with bounded exponential backoff.

    Retry k (0-indexed) waits initial_delay * 2**k plus a uniform jitter
    in [0, max_jitter). At most max_retries attempts are made.

    Args:
        operation: Zero-argument callable returning a fresh awaitable per attempt
        max_retries: Total attempts allowed
        initial_delay: Base delay in seconds
        max_jitter: Upper bound of the random jitter in seconds
        sleep: Coroutine used to wait between attempts

    Returns:
        The operation's result

    Raises:
        ExhaustedRetriesError: If every attempt failed transiently
        Exception: Any non-transient error, unchanged, on first occurrence
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(max_retries),
        wait=wait_exponential(multiplier=initial_delay, exp_base=2, min=0)
        + wait_random(0, max_jitter),
        retry=retry_if_exception(is_transient_error),
        before_sleep=_log_retry,
        sleep=sleep,
        reraise=False,
    )

    try:
        async for attempt in retrying:
            with attempt:
                result = await operation()
    except RetryError as e:
        last_error = e.last_attempt.exception()
        attempts = e.last_attempt.attempt_number
        logger.error("All %d attempts failed: %s", attempts, last_error)
        raise ExhaustedRetriesError(last_error, attempts=attempts) from last_error

    return result


@dataclass
class RetryPolicy:
    """Retry settings shared by the generation client and the poller."""

    max_retries: int = MAX_RETRIES
    initial_delay: float = INITIAL_DELAY
    max_jitter: float = MAX_JITTER
    sleep: Sleep = field(default=asyncio.sleep, repr=False)

    async def run(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run an operation under this policy."""
        return await with_retry(
            operation,
            max_retries=self.max_retries,
            initial_delay=self.initial_delay,
            max_jitter=self.max_jitter,
            sleep=self.sleep,
        )
