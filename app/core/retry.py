"""Retry/backoff and per-call deadlines for remote calls."""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from app.core.errors import DeadlineExceededError, PageEngineError
from app.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def is_transient(exc: BaseException) -> bool:
    """Whether an exception looks like a transient transport failure.

    Our own domain errors (bad JSON, validation, deadline) are never retried.
    """
    if isinstance(exc, PageEngineError):
        return False
    if isinstance(exc, (ConnectionError, TimeoutError, OSError)):
        return True
    name = type(exc).__name__
    return name in {
        "APIConnectionError",
        "APITimeoutError",
        "RateLimitError",
        "InternalServerError",
        "ConnectError",
        "ReadTimeout",
        "RemoteProtocolError",
    }


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff with jitter for transient failures."""

    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 4.0

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.RETRY_MAX_ATTEMPTS,
            base_delay=settings.RETRY_BASE_DELAY_SECONDS,
            max_delay=settings.RETRY_MAX_DELAY_SECONDS,
        )

    def wait(self):
        """Doubling backoff from base_delay, capped at max_delay, plus up to base_delay of jitter."""
        return wait_exponential(multiplier=self.base_delay, max=self.max_delay) + wait_random(
            0, self.base_delay
        )

    async def call(self, operation: str, fn: Callable[[], Awaitable[T]]) -> T:
        """
        Invoke an async callable, retrying transient failures.

        Args:
            operation: Name used in log lines
            fn: Zero-arg callable returning a fresh awaitable per attempt

        Returns:
            Result of the first successful attempt

        Raises:
            The last exception once attempts are exhausted, or any
            non-transient exception immediately.
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(max(1, self.max_attempts)),
            wait=self.wait(),
            retry=retry_if_exception(is_transient),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                number = attempt.retry_state.attempt_number
                if number > 1:
                    logger.warning(f"Retrying {operation} (attempt {number}/{self.max_attempts})")
                return await fn()
        raise RuntimeError("unreachable")  # pragma: no cover


async def with_deadline(awaitable: Awaitable[T], seconds: float | None, operation: str) -> T:
    """Await with a deadline, raising DeadlineExceededError on overrun."""
    if not seconds or seconds <= 0:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout=seconds)
    except asyncio.TimeoutError as e:
        raise DeadlineExceededError(operation, seconds) from e


async def call_remote(
    operation: str,
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    timeout: float | None,
) -> T:
    """Retry policy around a per-attempt deadline."""
    return await policy.call(operation, lambda: with_deadline(fn(), timeout, operation))
