"""
Unit tests for the sliding-window rate limiter.
"""

import pytest

from message_relay.dispatch import SlidingWindowRateLimiter


@pytest.mark.asyncio
async def test_admits_up_to_limit_then_denies(clock):
    rl = SlidingWindowRateLimiter(3, 1.0, clock=clock)

    assert [await rl.admit() for _ in range(3)] == [True, True, True]
    assert await rl.admit() is False
    assert rl.in_window == 3


@pytest.mark.asyncio
async def test_window_slides(clock):
    """Old admissions fall out after window_sec and free capacity."""
    rl = SlidingWindowRateLimiter(2, 1.0, clock=clock)
    assert await rl.admit()
    clock.advance(0.5)
    assert await rl.admit()
    assert not await rl.admit()

    clock.advance(0.5)  # first stamp is now exactly window_sec old
    assert await rl.admit()
    assert not await rl.admit()

    clock.advance(2.0)
    assert rl.in_window == 0
    assert await rl.admit()


@pytest.mark.asyncio
async def test_denials_are_not_recorded(clock):
    rl = SlidingWindowRateLimiter(1, 1.0, clock=clock)
    assert await rl.admit()
    for _ in range(5):
        clock.advance(0.1)
        assert not await rl.admit()
    clock.advance(0.6)  # over 1.0s after the only admission
    assert await rl.admit()


@pytest.mark.asyncio
async def test_never_more_than_n_in_any_window(clock):
    """At most N admissions in any trailing window, for uneven call timing."""
    n, w = 4, 1.0
    rl = SlidingWindowRateLimiter(n, w, clock=clock)
    gaps = [0.0, 0.05, 0.3, 0.01, 0.6, 0.02, 0.02, 0.5, 0.9, 0.0, 0.0, 0.13, 0.7, 0.25, 0.01] * 4

    admitted = []
    for gap in gaps:
        clock.advance(gap)
        if await rl.admit():
            admitted.append(clock())

    assert admitted
    for t in admitted:
        in_window = [s for s in admitted if t <= s < t + w]
        assert len(in_window) <= n


def test_invalid_arguments():
    with pytest.raises(ValueError):
        SlidingWindowRateLimiter(0, 1.0)
    with pytest.raises(ValueError):
        SlidingWindowRateLimiter(5, 0)


@pytest.mark.asyncio
async def test_in_window_does_not_prune(clock):
    rl = SlidingWindowRateLimiter(2, 1.0, clock=clock)
    assert await rl.admit()
    clock.advance(0.5)
    assert await rl.admit()
    clock.advance(0.5)

    assert rl.in_window == 1
    assert len(rl._stamps) == 2  # left for admit() to prune
    assert await rl.admit()
    assert len(rl._stamps) == 2
