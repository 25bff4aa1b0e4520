"""
Retry timer for the request executor.

Produces a bounded sequence of attempt numbers. The first attempt runs
immediately; each later attempt is preceded by an exponentially growing,
capped and jittered delay.
"""

import random
from typing import AsyncIterator, Awaitable, Callable, Iterator, Optional

from .context import Context

MAX_RETRY = 5

DEFAULT_RETRY_UNIT = 0.2  # seconds
DEFAULT_RETRY_CAP = 1.0  # seconds

MAX_JITTER = 1.0
NO_JITTER = 0.0


class RetryTimer:
    """
    Bounded exponential backoff with jitter.

    The delay before attempt ``n`` (n >= 2) is ``unit * 2 ** (n - 2)``
    capped at ``cap``; jitter then removes a random share of up to
    ``jitter`` of that delay, so a wait never exceeds the cap.
    """

    def __init__(
        self,
        max_retry: int = MAX_RETRY,
        unit: float = DEFAULT_RETRY_UNIT,
        cap: float = DEFAULT_RETRY_CAP,
        jitter: float = MAX_JITTER,
        rng: Optional[random.Random] = None,
    ):
        if max_retry < 1:
            raise ValueError("max_retry must be at least 1")
        self.max_retry = max_retry
        self.unit = unit
        self.cap = cap
        self.jitter = min(max(jitter, NO_JITTER), MAX_JITTER)
        self._rng = rng or random.Random()

    def with_max_retry(self, max_retry: int) -> "RetryTimer":
        """Copy of this timer with a different attempt budget."""
        return RetryTimer(max_retry, self.unit, self.cap, self.jitter, self._rng)

    def base_delay(self, attempt: int) -> float:
        """Delay before ``attempt`` without jitter; zero for the first attempt."""
        if attempt <= 1:
            return 0.0
        return min(self.cap, self.unit * (2 ** (attempt - 2)))

    def delay(self, attempt: int) -> float:
        """Jittered delay before ``attempt``."""
        sleep = self.base_delay(attempt)
        if self.jitter != NO_JITTER:
            sleep -= self._rng.random() * sleep * self.jitter
        return sleep

    def attempts(
        self,
        ctx: Context,
        sleep: Optional[Callable[[float], None]] = None,
    ) -> Iterator[int]:
        """
        Yield attempt numbers 1..max_retry, waiting between them.

        Args:
            ctx: Context checked before every attempt
            sleep: Delay function; defaults to waiting on the context

        Raises:
            RequestCancelledError: If the context is cancelled
            DeadlineExceededError: If the context deadline passes
        """
        wait = sleep or ctx.wait
        for attempt in range(1, self.max_retry + 1):
            if attempt > 1:
                wait(self.delay(attempt))
            ctx.raise_if_done()
            yield attempt

    async def async_attempts(
        self,
        ctx: Context,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ) -> AsyncIterator[int]:
        """Async counterpart of :meth:`attempts`."""
        wait = sleep or ctx.async_wait
        for attempt in range(1, self.max_retry + 1):
            if attempt > 1:
                await wait(self.delay(attempt))
            ctx.raise_if_done()
            yield attempt
