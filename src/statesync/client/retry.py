"""Retry helpers for backend discovery.

This module provides:
- retry_with_backoff: Async retry with (optionally exponential) backoff
- first_success: Ranked first-success selection over ordered candidates
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
C = TypeVar("C")

# Default retry configuration
DEFAULT_MAX_ATTEMPTS = 2
DEFAULT_INITIAL_BACKOFF = 0.4  # seconds
DEFAULT_MAX_BACKOFF = 60.0  # seconds
DEFAULT_BACKOFF_MULTIPLIER = 1.0


async def retry_with_backoff(
    func: Callable[[], Awaitable[T]],
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    initial_backoff: float = DEFAULT_INITIAL_BACKOFF,
    max_backoff: float = DEFAULT_MAX_BACKOFF,
    backoff_multiplier: float = DEFAULT_BACKOFF_MULTIPLIER,
    retryable_exceptions: tuple[type[Exception], ...] = (Exception,),
) -> T:
    """Await a coroutine function, retrying with backoff on failure.

    Args:
        func: Coroutine function to execute.
        max_attempts: Maximum number of attempts (including the first one).
        initial_backoff: Delay after the first failure in seconds.
        max_backoff: Maximum delay in seconds.
        backoff_multiplier: Multiplier applied to the delay after each failure.
        retryable_exceptions: Tuple of exception types to retry on.

    Returns:
        Result of the function.

    Raises:
        The last exception if all attempts fail.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    backoff = initial_backoff
    for attempt in range(1, max_attempts + 1):
        try:
            return await func()
        except retryable_exceptions as e:
            if attempt == max_attempts:
                logger.debug(f"All {max_attempts} attempts failed: {e}")
                raise

            logger.debug(
                f"Attempt {attempt}/{max_attempts} failed: {e}. "
                f"Retrying in {backoff:.1f}s..."
            )
            await asyncio.sleep(backoff)
            backoff = min(backoff * backoff_multiplier, max_backoff)

    raise RuntimeError("Unexpected retry loop exit")


async def first_success(
    candidates: Iterable[C],
    attempt: Callable[[C], Awaitable[T]],
    retryable_exceptions: tuple[type[Exception], ...] = (Exception,),
) -> tuple[C, T] | None:
    """Return the first candidate whose attempt succeeds.

    Candidates are tried sequentially in order; the first success
    short-circuits the rest.

    Args:
        candidates: Ordered candidates, most preferred first.
        attempt: Coroutine function run against one candidate.
        retryable_exceptions: Failures that move on to the next candidate.

    Returns:
        (candidate, result) for the first success, or None if all failed.
    """
    for candidate in candidates:
        try:
            return candidate, await attempt(candidate)
        except retryable_exceptions as e:
            logger.debug(f"Candidate {candidate} failed: {e}")
    return None
