from __future__ import annotations

import asyncio
import random
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Generic, Literal, Optional, TypeVar

from loguru import logger

from ..errors import CircuitOpenError, PermanentBackendFailure, RetriesExhausted
from .types import Clock, Sleep

T = TypeVar("T")

CircuitStateName = Literal["closed", "open", "half_open"]
RetryHook = Callable[[int, BaseException, float], Awaitable[None]]
TransitionHook = Callable[[str, str, str], Awaitable[None]]


def default_retry_classifier(exc: BaseException) -> bool:
    """Backend failures are assumed transient unless marked permanent."""
    return not isinstance(exc, PermanentBackendFailure)


@dataclass
class RetryPolicy:
    """Exponential backoff settings. Jitter is opt-in."""

    max_attempts: int = 3
    initial_backoff_ms: int = 500
    max_backoff_ms: int = 30_000
    backoff_multiplier: float = 2.0
    jitter: bool = False
    classify_retryable: Callable[[BaseException], bool] = field(
        default=default_retry_classifier
    )

    def __post_init__(self) -> None:
        if self.max_attempts < 0:
            raise ValueError("max_attempts must be >= 0")
        if self.initial_backoff_ms < 0:
            raise ValueError("initial_backoff_ms must be >= 0")

    def next_backoff_ms(self, attempt: int, initial_ms: Optional[int] = None) -> float:
        """Wait after failed attempt ``attempt`` (1-based)."""
        base = self.initial_backoff_ms if initial_ms is None else initial_ms
        delay = min(base * (self.backoff_multiplier ** max(0, attempt - 1)), self.max_backoff_ms)
        if self.jitter:
            delay = random.uniform(delay / 2, delay)
        return delay


@dataclass(frozen=True)
class Attempted(Generic[T]):
    value: T
    attempts: int


class RetryExecutor:
    """Runs one operation with bounded retry and exponential backoff."""

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        *,
        sleep: Optional[Sleep] = None,
        on_retry: Optional[RetryHook] = None,
    ):
        self.policy = policy or RetryPolicy()
        self._sleep = sleep or asyncio.sleep
        self._on_retry = on_retry

    async def execute_with_backoff(
        self,
        operation: Callable[[], Awaitable[T]],
        max_attempts: Optional[int] = None,
        initial_delay_ms: Optional[int] = None,
        *,
        on_retry: Optional[RetryHook] = None,
    ) -> Attempted[T]:
        limit = self.policy.max_attempts if max_attempts is None else max_attempts
        if limit < 0:
            raise ValueError("max_attempts must be >= 0")
        if limit == 0:
            raise RetriesExhausted(0)

        hook = on_retry or self._on_retry
        attempt = 0
        while True:
            attempt += 1
            try:
                value = await operation()
            except Exception as exc:
                if attempt >= limit or not self.policy.classify_retryable(exc):
                    raise RetriesExhausted(attempt, exc) from exc
                delay_ms = self.policy.next_backoff_ms(attempt, initial_delay_ms)
                logger.warning(
                    f"Attempt {attempt}/{limit} failed: {type(exc).__name__}: {exc}. "
                    f"Retrying in {delay_ms:.0f}ms"
                )
                if hook:
                    await hook(attempt, exc, delay_ms)
                await self._sleep(delay_ms / 1000.0)
                continue
            return Attempted(value=value, attempts=attempt)


@dataclass(frozen=True)
class CircuitState:
    state: CircuitStateName
    consecutive_failures: int
    reopen_at: float


class CircuitBreaker:
    """Per-backend health gate: closed -> open -> half_open -> closed|open.

    Half-open lets a single probe through at a time; everyone else is
    refused until that probe reports back.
    """

    def __init__(
        self,
        name: str = "backend",
        failure_threshold: int = 3,
        cooldown_sec: float = 5.0,
        *,
        clock: Optional[Clock] = None,
        on_transition: Optional[TransitionHook] = None,
    ):
        if failure_threshold <= 0:
            raise ValueError("failure_threshold must be > 0")
        if cooldown_sec < 0:
            raise ValueError("cooldown_sec must be >= 0")
        self.name = name
        self.failure_threshold = failure_threshold
        self.cooldown_sec = cooldown_sec
        self._clock = clock or time.monotonic
        self._on_transition = on_transition

        self._state: CircuitStateName = "closed"
        self._failures = 0
        self._reopen_at = 0.0
        self._probe_in_flight = False
        self._lock = asyncio.Lock()

    @property
    def state(self) -> CircuitStateName:
        return self._state

    @property
    def consecutive_failures(self) -> int:
        return self._failures

    def snapshot(self) -> CircuitState:
        return CircuitState(self._state, self._failures, self._reopen_at)

    async def can_request(self) -> bool:
        async with self._lock:
            if self._state == "closed":
                return True
            if self._state == "open":
                if self._clock() < self._reopen_at:
                    return False
                await self._transition("half_open")
                self._probe_in_flight = True
                return True
            # half_open
            if self._probe_in_flight:
                return False
            self._probe_in_flight = True
            return True

    async def allow(self) -> None:
        """Like ``can_request`` but raises CircuitOpenError on denial."""
        if not await self.can_request():
            raise CircuitOpenError(self.name)

    async def on_success(self) -> None:
        async with self._lock:
            self._failures = 0
            self._probe_in_flight = False
            if self._state != "closed":
                await self._transition("closed")

    async def on_failure(self) -> None:
        async with self._lock:
            self._failures += 1
            self._probe_in_flight = False
            if self._state == "half_open" or self._failures >= self.failure_threshold:
                self._reopen_at = self._clock() + self.cooldown_sec
                if self._state != "open":
                    await self._transition("open")

    async def _transition(self, new: CircuitStateName) -> None:
        old, self._state = self._state, new
        if new == "open":
            logger.warning(
                f"Circuit {self.name} OPEN after {self._failures} consecutive failures "
                f"(cooldown {self.cooldown_sec}s)"
            )
        else:
            logger.debug(f"Circuit {self.name}: {old} -> {new}")
        if self._on_transition:
            await self._on_transition(self.name, old, new)
