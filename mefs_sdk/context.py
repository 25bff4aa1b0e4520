"""
Cancellation and deadline handling for SDK calls.

A Context is handed to every executor call. It can be cancelled from any
thread and may carry a deadline; waits between retries and the transport
timeout are both bounded by it.
"""

import asyncio
import threading
import time
from typing import Optional

from .exceptions import DeadlineExceededError, MefsError, RequestCancelledError

# cancel() may come from another thread, so async waits poll the flag.
ASYNC_POLL_INTERVAL = 0.05  # seconds


class Context:
    """Cancellation token with an optional deadline."""

    def __init__(self, timeout: Optional[float] = None):
        """
        Create a context.

        Args:
            timeout: Seconds from now until the context expires (None = never)
        """
        self._cancelled = threading.Event()
        self.deadline: Optional[float] = None
        if timeout is not None:
            self.deadline = time.monotonic() + timeout

    def cancel(self) -> None:
        """Cancel the context. Safe to call more than once."""
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, or None without a deadline."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def err(self) -> Optional[MefsError]:
        """Return the cancellation error if the context is done, else None."""
        if self._cancelled.is_set():
            return RequestCancelledError()
        if self.deadline is not None and time.monotonic() >= self.deadline:
            return DeadlineExceededError()
        return None

    def raise_if_done(self) -> None:
        err = self.err()
        if err is not None:
            raise err

    def wait(self, seconds: float) -> None:
        """Block for up to ``seconds``, returning early if cancelled or expired."""
        remaining = self.remaining()
        if remaining is not None:
            seconds = min(seconds, remaining)
        if seconds > 0:
            self._cancelled.wait(seconds)

    async def async_wait(self, seconds: float) -> None:
        """Async counterpart of :meth:`wait`; wakes within one poll interval of a cancel."""
        remaining = self.remaining()
        if remaining is not None:
            seconds = min(seconds, remaining)
        end = time.monotonic() + seconds
        while not self._cancelled.is_set():
            left = end - time.monotonic()
            if left <= 0:
                return
            await asyncio.sleep(min(left, ASYNC_POLL_INTERVAL))


def background() -> Context:
    """Return a fresh context that is never cancelled and has no deadline."""
    return Context()
