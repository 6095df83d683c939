"""
Retry executor with bounded exponential backoff.
Knows nothing about uploads; only which failures are worth another attempt.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from src.core.exceptions import (
    MediaUploadException,
    RetryExhaustedException,
    TransientNetworkException,
    UploadCancelledException
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryExecutor:
    """Runs an async operation until it succeeds, fails permanently or runs out of attempts."""

    def __init__(self, max_attempts: int = 3, base_delay: float = 0.5, sleep: Callable[[float], Awaitable[None]] = None):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self._sleep = sleep or asyncio.sleep

    def delay_before(self, attempt: int, base_delay: Optional[float] = None) -> float:
        """Backoff before the given 1-based attempt: base * 2^(attempt - 1)."""
        if attempt < 2:
            return 0.0
        base = self.base_delay if base_delay is None else base_delay
        return base * (2 ** (attempt - 1))

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        max_attempts: Optional[int] = None,
        base_delay: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None,
        description: str = "operation"
    ) -> T:
        """
        Run operation with retries.

        Args:
            operation: Zero-argument coroutine factory, called once per attempt
            max_attempts: Override for the configured attempt bound
            base_delay: Override for the configured base delay in seconds
            cancel_event: When set, stops before the next attempt or mid-backoff
            description: Label used in log lines

        Returns:
            The operation's result

        Raises:
            RetryExhaustedException: If every attempt failed transiently
            UploadCancelledException: If cancel_event was set
            MediaUploadException: Non-retryable errors, raised on first occurrence
        """
        attempts_allowed = max_attempts or self.max_attempts
        last_error: Optional[MediaUploadException] = None
        for attempt in range(1, attempts_allowed + 1):
            if attempt > 1:
                delay = self.delay_before(attempt, base_delay)
                logger.warning(
                    "Retrying %s (attempt %d/%d) in %.2fs after error: %s",
                    description, attempt, attempts_allowed, delay, last_error.message
                )
                await self._wait(delay, cancel_event, description)
            self._check_cancelled(cancel_event, description)

            try:
                return await operation()
            except TransientNetworkException as e:
                last_error = e

        logger.error("%s failed after %d attempts: %s", description, attempts_allowed, last_error.message)
        raise RetryExhaustedException(last_error, attempts_allowed) from last_error

    async def _wait(self, delay: float, cancel_event: Optional[asyncio.Event], description: str) -> None:
        if cancel_event is None:
            await self._sleep(delay)
            return
        sleeper = asyncio.ensure_future(self._sleep(delay))
        waiter = asyncio.ensure_future(cancel_event.wait())
        try:
            await asyncio.wait({sleeper, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (sleeper, waiter):
                if not task.done():
                    task.cancel()
            await asyncio.gather(sleeper, waiter, return_exceptions=True)
        self._check_cancelled(cancel_event, description)

    @staticmethod
    def _check_cancelled(cancel_event: Optional[asyncio.Event], description: str) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise UploadCancelledException(f"{description} cancelled")
