"""
Pytest configuration and fixtures for message-relay.

Provides cross-platform event loop configuration, a controllable clock,
an instant sleep and scripted backends so nothing waits on real backoff.
"""

import asyncio
import sys
from typing import Any, Optional

import pytest

from message_relay import Backend, Message
from message_relay.dispatch import DispatchOrchestrator, SlidingWindowRateLimiter

# Set policy *before* pytest-asyncio creates any loops
if sys.platform.startswith("win"):
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())


class FakeClock:
    """Monotonic clock the test moves by hand."""

    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class SleepRecorder:
    """Drop-in for asyncio.sleep that records delays and returns immediately."""

    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        await asyncio.sleep(0)


class ScriptedBackend(Backend):
    """Backend whose behaviour is set by the test."""

    def __init__(
        self,
        name: str,
        *,
        fail_first: int = 0,
        always_fail: bool = False,
        latency: float = 0.0,
        result: Any = None,
        error: Optional[Exception] = None,
    ):
        self.name = name
        self.fail_first = fail_first
        self.always_fail = always_fail
        self.latency = latency
        self.result = result
        self.error = error
        self.calls = 0
        self.keys: list[str] = []

    async def send(self, message: Message):
        self.calls += 1
        self.keys.append(message.idempotency_key)
        await asyncio.sleep(self.latency)
        if self.always_fail or self.calls <= self.fail_first:
            raise self.error or TimeoutError(f"{self.name} unavailable")
        if self.result is not None:
            return self.result
        return {"status": "success", "message": f"sent by {self.name}"}


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleeper():
    return SleepRecorder()


@pytest.fixture
def make_backend():
    """Factory for ScriptedBackend instances."""
    return ScriptedBackend


@pytest.fixture
def primary(make_backend):
    return make_backend("primary")


@pytest.fixture
def secondary(make_backend):
    return make_backend("secondary")


@pytest.fixture
def make_relay(clock, sleeper):
    """Orchestrator factory wired to the fake clock and instant sleep.

    Admission defaults to a roomy 100/s window so only rate-limit tests
    have to think about it.
    """

    def _make(backends, **kwargs) -> DispatchOrchestrator:
        kwargs.setdefault("rate_limiter", SlidingWindowRateLimiter(100, 1.0, clock=clock))
        kwargs.setdefault("clock", clock)
        kwargs.setdefault("sleep", sleeper)
        return DispatchOrchestrator(backends, **kwargs)

    return _make


@pytest.fixture
def relay(make_relay, primary, secondary):
    return make_relay([primary, secondary])
