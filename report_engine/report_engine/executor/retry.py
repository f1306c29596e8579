"""Bounded retry with exponential backoff for upstream capability calls.

The pipeline retries engine calls at most once; the helper is general so
that the retry budget stays a configuration value rather than a loop
written inline.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import TypeVar

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryConfig(BaseModel):
    """Tuneable parameters for retry behaviour."""

    max_retries: int = Field(
        default=1,
        ge=0,
        description="Retries after the first attempt before re-raising.",
    )
    base_delay: float = Field(
        default=1.0,
        gt=0.0,
        description="Base delay in seconds for exponential backoff.",
    )
    max_delay: float = Field(
        default=30.0,
        gt=0.0,
        description="Upper bound on delay in seconds.",
    )
    jitter: bool = Field(
        default=True,
        description="When enabled, randomise the delay within [0.5x, 1.5x].",
    )


def compute_delay(attempt: int, config: RetryConfig) -> float:
    """Return the backoff delay after the zero-based *attempt*."""
    delay: float = min(config.base_delay * (2**attempt), config.max_delay)
    if config.jitter:
        delay *= random.uniform(0.5, 1.5)  # noqa: S311
    return delay


async def async_retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    config: RetryConfig,
    retryable_exceptions: tuple[type[BaseException], ...] = (Exception,),
    on_attempt: Callable[[int], None] | None = None,
) -> T:
    """Await *fn* until it succeeds or the retry budget is spent.

    Parameters
    ----------
    fn:
        Zero-argument coroutine factory.  It is called afresh for every
        attempt, so it must be safe to invoke repeatedly.
    config:
        Retry parameters.
    retryable_exceptions:
        Exception types that trigger a retry.  Anything else propagates
        immediately.
    on_attempt:
        Called with the one-based attempt number before each attempt.

    Raises
    ------
    BaseException
        The last retryable exception once all attempts failed.
    """
    last_exception: BaseException | None = None

    for attempt in range(config.max_retries + 1):
        if on_attempt is not None:
            on_attempt(attempt + 1)
        try:
            return await fn()
        except retryable_exceptions as exc:
            last_exception = exc
            if attempt >= config.max_retries:
                break
            delay = compute_delay(attempt, config)
            logger.warning(
                "Retry %d/%d after %.2fs: %s",
                attempt + 1,
                config.max_retries,
                delay,
                exc or type(exc).__name__,
            )
            await asyncio.sleep(delay)

    assert last_exception is not None  # noqa: S101
    raise last_exception
