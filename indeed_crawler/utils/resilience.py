"""Indeed Crawler — Resilience Utilities.

Circuit breaker for the record sink and a retry decorator for transient
transport failures.

Circuit Breaker states:
  CLOSED → normal operation, calls flow through
  OPEN   → `failure_threshold` consecutive failures seen; every call is
           refused for the rest of the run

Usage:
    breaker = CircuitBreaker("sink", failure_threshold=5)
    await breaker.call(sink.append, record)

    @retry_async(max_attempts=3, base_delay=2.0, exceptions=(httpx.TimeoutException,))
    async def flaky_function():
        ...
"""

from __future__ import annotations

import asyncio
import functools
from typing import Any, Awaitable, Callable, Optional, Sequence, Type

from indeed_crawler.utils.logger import get_logger

logger = get_logger(__name__)


class CircuitOpenError(Exception):
    """Raised when a circuit breaker is OPEN and refusing calls."""

    def __init__(self, name: str, failures: int) -> None:
        self.name = name
        self.failures = failures
        super().__init__(f"Circuit '{name}' is OPEN after {failures} consecutive failures")


class CircuitBreaker:
    """Trips after a run of consecutive failures.

    A success resets the failure count. Once open, the breaker stays
    open for the lifetime of the crawl run.

    Attributes:
        name: Human-readable name (for logging).
        failure_threshold: Consecutive failures that open the circuit.
    """

    CLOSED = "CLOSED"
    OPEN = "OPEN"

    def __init__(self, name: str, failure_threshold: int = 5) -> None:
        self.name = name
        self.failure_threshold = failure_threshold
        self._state = self.CLOSED
        self._failure_count = 0

    @property
    def is_open(self) -> bool:
        """Whether the circuit is refusing calls."""
        return self._state == self.OPEN

    @property
    def consecutive_failures(self) -> int:
        return self._failure_count

    async def call(
        self,
        func: Callable[..., Awaitable[Any]],
        *args: Any,
        **kwargs: Any,
    ) -> Any:
        """Execute an async callable through the breaker.

        Args:
            func: Async callable to execute.
            *args: Positional arguments for func.
            **kwargs: Keyword arguments for func.

        Returns:
            The result of func(*args, **kwargs).

        Raises:
            CircuitOpenError: If the circuit is already OPEN.
            Exception: Any exception from func, after it is counted.
        """
        if self.is_open:
            raise CircuitOpenError(self.name, self._failure_count)

        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            self._on_failure(e)
            raise
        self._on_success()
        return result

    def _on_success(self) -> None:
        if self._failure_count > 0:
            logger.debug(
                "Circuit '%s': failure count reset (was %d)",
                self.name, self._failure_count,
            )
        self._failure_count = 0

    def _on_failure(self, error: Exception) -> None:
        self._failure_count += 1

        if self._failure_count >= self.failure_threshold:
            self._state = self.OPEN
            logger.warning(
                "Circuit '%s': CLOSED → OPEN (%d consecutive failures). Error: %s",
                self.name, self._failure_count, str(error)[:200],
            )
        else:
            logger.debug(
                "Circuit '%s': failure %d/%d: %s",
                self.name, self._failure_count, self.failure_threshold,
                type(error).__name__,
            )


def retry_async(
    max_attempts: int = 3,
    base_delay: float = 2.0,
    max_delay: float = 60.0,
    exceptions: Sequence[Type[BaseException]] = (Exception,),
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> Callable:
    """Decorator for async functions that should be retried on failure.

    Uses exponential backoff: delay = base_delay * 2^(attempt-1),
    capped at max_delay.

    Args:
        max_attempts: Maximum number of attempts (including first).
        base_delay: Base delay in seconds (doubles each retry).
        max_delay: Maximum delay between retries.
        exceptions: Exception types to retry on.
        sleep: Awaitable sleep, replaceable in tests.

    Returns:
        Decorator function.
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            last_error: Optional[BaseException] = None
            for attempt in range(1, max_attempts + 1):
                try:
                    return await func(*args, **kwargs)
                except tuple(exceptions) as e:
                    last_error = e
                    if attempt == max_attempts:
                        logger.warning(
                            "Retry exhausted for %s after %d attempts: %s",
                            func.__name__, max_attempts, e,
                        )
                        raise
                    delay = min(base_delay * (2 ** (attempt - 1)), max_delay)
                    logger.debug(
                        "Retry %d/%d for %s in %.1fs: %s",
                        attempt, max_attempts, func.__name__, delay, e,
                    )
                    await sleep(delay)
            raise last_error  # type: ignore[misc]
        return wrapper
    return decorator
