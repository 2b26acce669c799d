"""Resilience helpers: retry and timeout wrappers.

The wrappers are applied once, when a collaborator is constructed, so the
calling code stays free of retry loops:

    fetch = with_retry(with_timeout(client.list_issues, 30), RetryConfig(max_attempts=2))
"""

import asyncio
import functools
import logging
import random
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable


logger = logging.getLogger(__name__)


class RetryStrategy(Enum):
    """Retry strategy types."""
    EXPONENTIAL_BACKOFF = "exponential_backoff"
    LINEAR_BACKOFF = "linear_backoff"
    FIXED_DELAY = "fixed_delay"


@dataclass(frozen=True)
class RetryConfig:
    """Configuration for retry behavior."""
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    strategy: RetryStrategy = RetryStrategy.EXPONENTIAL_BACKOFF
    jitter: bool = True
    backoff_multiplier: float = 2.0
    exceptions: tuple = (Exception,)


def _calculate_delay(attempt: int, config: RetryConfig) -> float:
    """Calculate delay for retry attempt.

    Args:
        attempt: Current attempt number (0-based)
        config: Retry configuration

    Returns:
        Delay in seconds
    """
    if config.strategy == RetryStrategy.EXPONENTIAL_BACKOFF:
        delay = config.base_delay * (config.backoff_multiplier ** attempt)
    elif config.strategy == RetryStrategy.LINEAR_BACKOFF:
        delay = config.base_delay * (attempt + 1)
    else:
        delay = config.base_delay

    delay = min(delay, config.max_delay)

    # Jitter keeps many sources from retrying in lockstep
    if config.jitter:
        delay += delay * 0.1 * random.random()

    return delay


def with_retry(func: Callable[..., Awaitable[Any]], config: RetryConfig = None) -> Callable[..., Awaitable[Any]]:
    """Wrap a coroutine function so failed calls are retried with backoff.

    Args:
        func: Coroutine function to wrap
        config: Retry configuration

    Returns:
        Coroutine function with the same signature
    """
    if config is None:
        config = RetryConfig()
    name = getattr(func, '__name__', repr(func))

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        last_exception = None

        for attempt in range(config.max_attempts):
            try:
                return await func(*args, **kwargs)
            except config.exceptions as e:
                last_exception = e

                if attempt < config.max_attempts - 1:
                    delay = _calculate_delay(attempt, config)
                    logger.warning(
                        f"Attempt {attempt + 1} failed for {name}: {e}. Retrying in {delay:.2f}s"
                    )
                    await asyncio.sleep(delay)
                else:
                    logger.error(f"All {config.max_attempts} attempts failed for {name}")

        raise last_exception

    return wrapper


def with_timeout(func: Callable[..., Awaitable[Any]], timeout: float) -> Callable[..., Awaitable[Any]]:
    """Wrap a coroutine function so each call is bounded by ``timeout`` seconds.

    Raises:
        asyncio.TimeoutError: when a call exceeds the bound
    """
    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        return await asyncio.wait_for(func(*args, **kwargs), timeout=timeout)

    return wrapper
