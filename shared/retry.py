"""
Retry with exponential backoff for async engine operations.

``RetryExecutor.run`` awaits an operation up to ``policy.max_retries`` times,
sleeping ``min(initial_delay * backoff_multiplier ** (attempt - 1), max_delay)``
seconds between attempts. Errors the policy considers permanent are re-raised
on the spot; transient ones are retried until the attempts or the wall-clock
budget (``policy.timeout``) run out.

Usage:
    executor = RetryExecutor()
    workflows = await executor.run(lambda: client.get("/workflows"))
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Optional, TypeVar

import httpx

from shared.errors import (
    ApiError,
    EngineConnectionError,
    OperationTimeoutError,
    RetryExhaustedError,
)
from shared.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

RETRYABLE_CONNECTION_CODES = frozenset({"connection_refused", "timeout"})


def default_is_retryable(error: BaseException) -> bool:
    """Retry transport failures, 5xx responses and 429; nothing else."""
    if isinstance(error, EngineConnectionError):
        return error.code in RETRYABLE_CONNECTION_CODES
    if isinstance(error, (httpx.ConnectError, httpx.TimeoutException, ConnectionRefusedError)):
        return True
    status = getattr(error, "status_code", None)
    if isinstance(status, int):
        return status >= 500 or status == 429
    return False


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff settings. Delays and ``timeout`` are in seconds."""

    max_retries: int = 3
    initial_delay: float = 1.0
    max_delay: float = 30.0
    backoff_multiplier: float = 2.0
    timeout: float = 60.0
    is_retryable: Callable[[BaseException], bool] = default_is_retryable
    on_retry: Optional[Callable[[BaseException, int], None]] = None

    def delay_for(self, attempt: int) -> float:
        return min(self.initial_delay * self.backoff_multiplier ** (attempt - 1), self.max_delay)

    @classmethod
    def from_config(cls, config: Any) -> "RetryPolicy":
        return cls(
            max_retries=config.retry_max_attempts,
            initial_delay=config.retry_initial_delay,
            max_delay=config.retry_max_delay,
            backoff_multiplier=config.retry_backoff_multiplier,
            timeout=config.retry_timeout,
        )


class RetryExecutor:
    """Runs async operations under a ``RetryPolicy``."""

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self._clock = clock

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        policy: Optional[RetryPolicy] = None,
    ) -> T:
        policy = policy or self.policy
        started = self._clock()
        last_error: Optional[BaseException] = None
        attempts = 0

        for attempt in range(1, policy.max_retries + 1):
            if attempt > 1:
                elapsed = self._clock() - started
                if elapsed > policy.timeout:
                    raise OperationTimeoutError(
                        "Retry operation",
                        policy.timeout,
                        {"attempts": attempts, "elapsed": elapsed},
                    ) from last_error

            attempts = attempt
            try:
                return await operation()
            except Exception as e:
                last_error = e
                if attempt >= policy.max_retries:
                    break
                if not policy.is_retryable(e):
                    raise

                delay = policy.delay_for(attempt)
                logger.warning(
                    f"Attempt {attempt}/{policy.max_retries} failed: {e}. Retrying in {delay:.2f}s"
                )
                if policy.on_retry is not None:
                    policy.on_retry(e, attempt)
                await self._sleep(delay)

        assert last_error is not None
        logger.error(f"All {attempts} attempts failed. Final error: {last_error}")
        raise RetryExhaustedError(last_error, attempts) from last_error


async def with_retry(operation: Callable[[], Awaitable[T]], **overrides: Any) -> T:
    """Run ``operation`` once under a default policy adjusted by ``overrides``."""
    policy = replace(RetryPolicy(), **overrides)
    return await RetryExecutor(policy).run(operation)


def create_retry_wrapper(
    policy: Optional[RetryPolicy] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> Callable[[Callable[[], Awaitable[T]]], Awaitable[T]]:
    """Bind a policy once and reuse it for many operations."""
    executor = RetryExecutor(policy, sleep=sleep)

    async def wrapper(operation: Callable[[], Awaitable[T]]) -> T:
        return await executor.run(operation)

    return wrapper


__all__ = [
    "RetryExecutor",
    "RetryPolicy",
    "create_retry_wrapper",
    "default_is_retryable",
    "with_retry",
]
