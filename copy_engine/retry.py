"""
Copy Engine - Retry Policy.

============================================================
PURPOSE
============================================================
Bounded retry with exponential backoff for order placement.

RULES:
- At most max_attempts attempts (default 3)
- Waits base * multiplier^attempt between attempts (1s, 2s)
- No jitter, no cap on the delay
- Re-raises the last error once attempts are exhausted

Only order placement is retried. Symbol resolution, quotes and
trade-impact checks fail the follower immediately.

The sleeper is injected so tests can run without wall-clock waits.

============================================================
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from .config import RetryConfig


logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleeper = Callable[[float], Awaitable[None]]


class RetryPolicy:
    """Runs an async operation with bounded exponential backoff."""

    def __init__(
        self,
        config: Optional[RetryConfig] = None,
        sleep: Optional[Sleeper] = None,
    ):
        self._config = config or RetryConfig()
        self._sleep = sleep or asyncio.sleep

    @property
    def max_attempts(self) -> int:
        return self._config.max_attempts

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        description: str = "operation",
    ) -> T:
        """
        Run operation until it succeeds or attempts run out.

        Args:
            operation: Zero-argument coroutine factory
            description: Label used in log messages

        Returns:
            The operation's result

        Raises:
            The last error raised by the operation
        """
        max_attempts = max(self._config.max_attempts, 1)
        last_error: Optional[Exception] = None

        for attempt in range(max_attempts):
            try:
                return await operation()
            except Exception as e:
                last_error = e
                if attempt + 1 >= max_attempts:
                    break

                delay = self._config.delay_for(attempt)
                # Broker errors flag transient failures; others are retried blind
                kind = "transient" if getattr(e, "is_retryable", False) else "unclassified"
                logger.warning(
                    f"{description} failed (attempt {attempt + 1}/{max_attempts}, {kind}): {e}. "
                    f"Retrying in {delay:.1f}s"
                )
                await self._sleep(delay)

        logger.error(f"{description} failed after {max_attempts} attempts: {last_error}")
        raise last_error


__all__ = ["RetryPolicy", "Sleeper"]
