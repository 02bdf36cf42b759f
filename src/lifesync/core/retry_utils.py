"""
Retry utilities for recovering store connections.

Live subscriptions that lose their connection to the incident store are
re-established through these helpers with exponential backoff.
"""

import logging
import asyncio
from typing import Any, Callable, Iterator, Optional, List

logger = logging.getLogger(__name__)


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(
        self,
        max_attempts: int = 3,
        initial_delay: float = 1.0,
        max_delay: float = 10.0,
        exponential_base: float = 2.0,
        retryable_exceptions: Optional[List[type]] = None,
    ):
        """
        Initialize retry configuration.

        Args:
            max_attempts: Maximum number of attempts per retry round
            initial_delay: Delay in seconds before the first retry
            max_delay: Upper bound in seconds for any single delay
            exponential_base: Growth factor applied to the delay after each failure
            retryable_exceptions: Exception types that trigger a retry.
                                 If None, all exceptions are retryable
        """
        self.max_attempts = max_attempts
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.retryable_exceptions = retryable_exceptions or [Exception]

    def delays(self) -> Iterator[float]:
        """Yield the backoff delays between consecutive attempts."""
        delay = self.initial_delay
        for _ in range(self.max_attempts - 1):
            yield delay
            delay = min(delay * self.exponential_base, self.max_delay)

    def is_retryable(self, error: BaseException) -> bool:
        return any(isinstance(error, exc_type) for exc_type in self.retryable_exceptions)


async def retry_async(
    func: Callable[..., Any],
    config: RetryConfig,
    operation_id: Optional[str] = None,
    *args,
    **kwargs
) -> Any:
    """
    Retry an async function with exponential backoff.

    Args:
        func: The async function to retry
        config: Retry configuration
        operation_id: Optional identifier attached to log records
        *args: Positional arguments to pass to func
        **kwargs: Keyword arguments to pass to func

    Returns:
        Result from the first successful call

    Raises:
        Exception: The last exception if every attempt fails, or the first
                   non-retryable exception
    """
    delays = config.delays()
    attempt = 0

    while True:
        attempt += 1
        try:
            result = await func(*args, **kwargs)

            if attempt > 1:
                logger.info(
                    "Operation succeeded after retry",
                    extra={
                        "operation_id": operation_id,
                        "function": func.__name__,
                        "attempt": attempt,
                    },
                )

            return result

        except Exception as e:
            if not config.is_retryable(e):
                logger.error(
                    "Non-retryable exception occurred",
                    extra={
                        "operation_id": operation_id,
                        "function": func.__name__,
                        "attempt": attempt,
                        "error": str(e),
                        "error_type": type(e).__name__,
                    },
                )
                raise

            delay = next(delays, None)
            if delay is None:
                logger.error(
                    "Operation failed after all retry attempts",
                    extra={
                        "operation_id": operation_id,
                        "function": func.__name__,
                        "attempt": attempt,
                        "error": str(e),
                        "error_type": type(e).__name__,
                    },
                )
                raise

            logger.warning(
                "Operation failed, will retry",
                extra={
                    "operation_id": operation_id,
                    "function": func.__name__,
                    "attempt": attempt,
                    "max_attempts": config.max_attempts,
                    "error": str(e),
                    "error_type": type(e).__name__,
                    "retry_delay": delay,
                },
            )
            await asyncio.sleep(delay)
