"""
Retry for calls to the upstream node.

Only the exceptions named by the caller are retried. A JSON-RPC error object
is an answer from the node and is never retried here.
"""

import asyncio
import functools
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Tuple, Type

from shared.logging import get_logger


@dataclass(frozen=True)
class RetryConfig:
    """Attempts and doubling backoff between them."""

    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 5.0
    jitter: bool = True


class RetryError(Exception):
    """Exception raised when all retry attempts are exhausted."""

    def __init__(self, message: str, last_exception: Exception, attempts: int):
        super().__init__(message)
        self.last_exception = last_exception
        self.attempts = attempts


def retry_on_exception(exceptions: Tuple[Type[BaseException], ...] = (Exception,),
                       config: Optional[RetryConfig] = None,
                       operation: Optional[str] = None) -> Callable:
    """Decorator for retrying async functions on exceptions.

    ``operation`` names the call in log events, defaulting to the function name.
    """
    config = config or RetryConfig()

    def decorator(func: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
        name = operation or func.__name__
        logger = get_logger(f"gateway.retry.{name}")

        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            for attempt in range(1, config.max_attempts + 1):
                try:
                    result = await func(*args, **kwargs)
                except exceptions as e:
                    if attempt == config.max_attempts:
                        logger.error("All retry attempts exhausted", attempts=attempt,
                                     error_type=type(e).__name__, error=str(e))
                        raise RetryError(
                            f"{name} failed after {attempt} attempts",
                            last_exception=e,
                            attempts=attempt
                        ) from e

                    delay = _calculate_delay(attempt, config)
                    logger.warning("Retrying after failure", attempt=attempt, delay=round(delay, 3),
                                   error_type=type(e).__name__, error=str(e))
                    await asyncio.sleep(delay)
                    continue

                if attempt > 1:
                    logger.info("Retry succeeded", attempt=attempt)
                return result

        return wrapper

    return decorator


def _calculate_delay(attempt: int, config: RetryConfig) -> float:
    """Delay after the given failed attempt: doubled each time, capped, then
    shifted by up to 10% either way when jitter is on."""
    delay = min(config.base_delay * (2 ** (attempt - 1)), config.max_delay)
    if config.jitter:
        delay += random.uniform(-0.1 * delay, 0.1 * delay)
    return max(0.0, delay)
