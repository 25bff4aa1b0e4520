import asyncio
import random
import threading
import time

import pytest

from mefs_sdk.context import Context
from mefs_sdk.exceptions import DeadlineExceededError, RequestCancelledError
from mefs_sdk.retry import MAX_JITTER, NO_JITTER, RetryTimer


def test_first_attempt_has_no_delay():
    timer = RetryTimer()
    assert timer.base_delay(1) == 0
    assert timer.delay(1) == 0


def test_backoff_is_monotonic_and_capped():
    timer = RetryTimer(max_retry=10, unit=0.2, cap=1.0, jitter=NO_JITTER)

    delays = [timer.delay(n) for n in range(1, 11)]

    assert delays == sorted(delays)
    assert delays[1] == pytest.approx(0.2)
    assert delays[2] == pytest.approx(0.4)
    assert delays[3] == pytest.approx(0.8)
    assert max(delays) == pytest.approx(1.0)


def test_jitter_never_exceeds_base_delay():
    timer = RetryTimer(max_retry=8, jitter=MAX_JITTER, rng=random.Random(7))

    for attempt in range(2, 9):
        for _ in range(50):
            assert 0 <= timer.delay(attempt) <= timer.base_delay(attempt)


def test_jitter_is_clamped():
    assert RetryTimer(jitter=5).jitter == MAX_JITTER
    assert RetryTimer(jitter=-1).jitter == NO_JITTER


def test_budget_must_allow_one_attempt():
    with pytest.raises(ValueError):
        RetryTimer(max_retry=0)


def test_attempts_yield_budget_with_waits_between():
    waits = []
    timer = RetryTimer(max_retry=4, jitter=NO_JITTER)

    attempts = list(timer.attempts(Context(), sleep=waits.append))

    assert attempts == [1, 2, 3, 4]
    assert waits == [pytest.approx(0.2), pytest.approx(0.4), pytest.approx(0.8)]


def test_with_max_retry_keeps_backoff_shape():
    timer = RetryTimer(max_retry=5, unit=0.5, cap=2.0, jitter=NO_JITTER)

    single = timer.with_max_retry(1)

    assert single.max_retry == 1
    assert (single.unit, single.cap, single.jitter) == (0.5, 2.0, NO_JITTER)
    assert list(single.attempts(Context(), sleep=lambda s: None)) == [1]


def test_cancelled_context_stops_sequence():
    ctx = Context()
    timer = RetryTimer(max_retry=5, jitter=NO_JITTER)
    seen = []

    with pytest.raises(RequestCancelledError):
        for attempt in timer.attempts(ctx, sleep=lambda s: ctx.cancel()):
            seen.append(attempt)

    assert seen == [1]


def test_expired_context_raises_deadline_exceeded():
    timer = RetryTimer()

    with pytest.raises(DeadlineExceededError):
        next(timer.attempts(Context(timeout=0)))


def test_default_sleep_waits_on_context():
    ctx = Context()
    ctx.cancel()
    timer = RetryTimer(max_retry=2, unit=30, cap=30)
    gen = timer.attempts(ctx)

    # Cancelled before the first attempt; the 30s wait is never entered.
    with pytest.raises(RequestCancelledError):
        next(gen)


@pytest.mark.asyncio
async def test_async_attempts_use_injected_sleep():
    waits = []

    async def sleep(seconds):
        waits.append(seconds)

    timer = RetryTimer(max_retry=3, jitter=NO_JITTER)
    attempts = [n async for n in timer.async_attempts(Context(), sleep=sleep)]

    assert attempts == [1, 2, 3]
    assert waits == [pytest.approx(0.2), pytest.approx(0.4)]


@pytest.mark.asyncio
async def test_async_wait_returns_when_cancelled_from_another_thread():
    ctx = Context()
    threading.Timer(0.1, ctx.cancel).start()

    started = time.monotonic()
    await ctx.async_wait(5.0)

    assert time.monotonic() - started < 1.0
    assert ctx.cancelled


@pytest.mark.asyncio
async def test_async_wait_sleeps_full_delay_without_cancel():
    ctx = Context()

    started = time.monotonic()
    await ctx.async_wait(0.12)

    assert time.monotonic() - started >= 0.1
    assert not ctx.cancelled


@pytest.mark.asyncio
async def test_async_wait_is_bounded_by_deadline():
    ctx = Context(timeout=0.1)

    started = time.monotonic()
    await asyncio.wait_for(ctx.async_wait(5.0), timeout=2.0)

    assert time.monotonic() - started < 1.0
