"""
Token-bucket rate limiter for outgoing engine requests.

The bucket holds up to ``max_requests`` tokens and refills continuously at
``max_requests / interval`` tokens per second, measured on ``time.monotonic``.
Callers that find the bucket empty queue up in FIFO order behind a single
wake-up timer; nobody is admitted ahead of an earlier waiter.
"""

from __future__ import annotations

import asyncio
import functools
import math
import time
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Optional, TypeVar

from shared.errors import OperationTimeoutError
from shared.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class RateLimiter:
    """Async token bucket with a bounded FIFO wait."""

    def __init__(
        self,
        max_requests: int,
        interval: float,
        max_wait: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_requests <= 0:
            raise ValueError("max_requests must be positive")
        if interval <= 0:
            raise ValueError("interval must be positive")

        self.capacity = float(max_requests)
        self.interval = interval
        self.max_wait = max_wait
        self.refill_rate = max_requests / interval
        self._clock = clock
        self._tokens = self.capacity
        self._last_refill = clock()
        self._waiters: Deque[asyncio.Future] = deque()
        self._timer: Optional[asyncio.TimerHandle] = None

    def _refill(self) -> None:
        now = self._clock()
        elapsed = now - self._last_refill
        if elapsed > 0:
            self._tokens = min(self.capacity, self._tokens + elapsed * self.refill_rate)
            self._last_refill = now

    def _wait_for(self, position: int) -> float:
        """Seconds until the ``position``-th queued caller can take a token, rounded up to ms."""
        deficit = position - self._tokens
        if deficit <= 0:
            return 0.0
        return math.ceil(deficit / self.refill_rate * 1000) / 1000

    def available_tokens(self) -> int:
        self._refill()
        return math.floor(self._tokens)

    @property
    def queued(self) -> int:
        return len(self._waiters)

    async def acquire(self) -> None:
        self._refill()
        if not self._waiters and self._tokens >= 1:
            self._tokens -= 1
            return

        wait = self._wait_for(len(self._waiters) + 1)
        if wait > self.max_wait:
            raise OperationTimeoutError(
                "Rate limit acquire",
                self.max_wait,
                {"wait_time": wait, "available_tokens": math.floor(self._tokens)},
            )

        loop = asyncio.get_running_loop()
        waiter = loop.create_future()
        self._waiters.append(waiter)
        logger.debug(f"Rate limit reached, waiting ~{wait:.3f}s ({len(self._waiters)} queued)")
        self._arm_timer(loop)
        await waiter

    def _arm_timer(self, loop: asyncio.AbstractEventLoop) -> None:
        if self._timer is not None:
            return
        delay = max(self._wait_for(1), 0.001)
        self._timer = loop.call_later(delay, self._process_queue)

    def _process_queue(self) -> None:
        self._timer = None
        self._refill()
        while self._waiters:
            head = self._waiters[0]
            if head.done():
                # Cancelled while queued
                self._waiters.popleft()
                continue
            if self._tokens < 1:
                break
            self._tokens -= 1
            self._waiters.popleft()
            head.set_result(None)

        if self._waiters:
            self._arm_timer(asyncio.get_running_loop())


def rate_limited(fn: Callable[..., Awaitable[T]], limiter: RateLimiter) -> Callable[..., Awaitable[T]]:
    """Wrap ``fn`` so every call first acquires a token from ``limiter``."""

    @functools.wraps(fn)
    async def wrapper(*args: Any, **kwargs: Any) -> T:
        await limiter.acquire()
        return await fn(*args, **kwargs)

    return wrapper


__all__ = ["RateLimiter", "rate_limited"]
