"""
Simple retry utilities with exponential backoff
"""

import asyncio
import random
from typing import Any, Callable, Optional
from functools import wraps
import structlog

logger = structlog.get_logger(__name__)


class RetryConfig:
    """Configuration for retry behavior"""

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        backoff_factor: float = 2.0,
        jitter: bool = True,
        exceptions: tuple = (Exception,)
    ):
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.backoff_factor = backoff_factor
        self.jitter = jitter
        self.exceptions = exceptions


def calculate_delay(attempt: int, config: RetryConfig, retry_after: Optional[float] = None) -> float:
    """Calculate delay for retry attempt with exponential backoff

    A server supplied ``retry_after`` replaces the computed backoff, still
    bounded by ``config.max_delay``.
    """
    if retry_after is not None:
        return max(0.0, min(float(retry_after), config.max_delay))

    delay = config.base_delay * (config.backoff_factor ** (attempt - 1))
    delay = min(delay, config.max_delay)

    if config.jitter:
        # Add random jitter (±25%)
        jitter_range = delay * 0.25
        delay += random.uniform(-jitter_range, jitter_range)

    return max(0, delay)


def retry_async(config: Optional[RetryConfig] = None):
    """Decorator for asynchronous functions with retry logic"""
    if config is None:
        config = RetryConfig()

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            last_exception = None

            for attempt in range(1, config.max_attempts + 1):
                try:
                    result = await func(*args, **kwargs)
                    if attempt > 1:
                        logger.info("Async function succeeded after retry",
                                    function=func.__name__,
                                    attempt=attempt)
                    return result

                except config.exceptions as e:
                    last_exception = e
                    if attempt == config.max_attempts:
                        logger.error("Async function failed after all retries",
                                     function=func.__name__,
                                     attempts=config.max_attempts,
                                     error=str(e))
                        break

                    delay = calculate_delay(attempt, config, getattr(e, "retry_after", None))
                    logger.warning("Async function failed, retrying",
                                   function=func.__name__,
                                   attempt=attempt,
                                   delay=delay,
                                   error=str(e))
                    await asyncio.sleep(delay)

            # Re-raise the last exception if all retries failed
            if last_exception:
                raise last_exception

        return wrapper
    return decorator


async def retry_call_async(
    func: Callable[..., Any],
    *args,
    config: Optional[RetryConfig] = None,
    **kwargs
) -> Any:
    """Call an async function with retry logic"""
    if config is None:
        config = RetryConfig()

    decorated_func = retry_async(config)(func)
    return await decorated_func(*args, **kwargs)
