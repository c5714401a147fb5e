"""Shared retry/backoff and timeout helpers for async operations."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from app.core.exceptions import ProviderError, ProviderTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_ATTEMPTS = 3
DEFAULT_BASE_DELAY = 0.5

SleepFunc = Callable[[float], Awaitable[None]]


def is_retryable(error: BaseException) -> bool:
    """Provider errors carry their own verdict; anything else is retried."""
    if isinstance(error, ProviderError):
        return error.retryable
    return True


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    attempts: int = DEFAULT_ATTEMPTS,
    base_delay: float = DEFAULT_BASE_DELAY,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    sleep: SleepFunc = asyncio.sleep,
    description: str = "operation",
) -> T:
    """
    Run `operation`, retrying on failure with exponential backoff.

    Delays are base_delay, base_delay*2, base_delay*4, ... between attempts.
    Non-retryable provider errors are raised immediately. After the attempt
    budget is exhausted the last error is re-raised.
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")

    for attempt in range(attempts):
        try:
            return await operation()
        except retry_on as e:
            if not is_retryable(e) or attempt == attempts - 1:
                if attempt > 0:
                    logger.error(f"{description} failed after {attempt + 1} attempts: {e}")
                raise
            delay = base_delay * (2**attempt)
            logger.warning(
                f"{description} failed (attempt {attempt + 1}/{attempts}), "
                f"retrying in {delay}s: {e}"
            )
            await sleep(delay)

    # Unreachable: the loop either returns or raises
    raise RuntimeError(f"{description} failed after retries")


async def with_timeout(awaitable: Awaitable[T], seconds: float, description: str) -> T:
    """Await with an upper bound; a timeout becomes a retryable ProviderTimeoutError."""
    try:
        async with asyncio.timeout(seconds):
            return await awaitable
    except TimeoutError:
        raise ProviderTimeoutError(f"{description} timed out after {seconds}s") from None
