from __future__ import annotations

import asyncio
import time
from collections import deque
from typing import Optional

from .types import Clock


class SlidingWindowRateLimiter:
    """Admit at most ``max_requests`` calls in any trailing ``window_sec``.

    Purely a gate: ``admit()`` never blocks on capacity, callers decide what
    a denial means. Local to one process.
    """

    def __init__(
        self,
        max_requests: int,
        window_sec: float,
        *,
        clock: Optional[Clock] = None,
    ):
        if max_requests <= 0:
            raise ValueError("max_requests must be > 0")
        if window_sec <= 0:
            raise ValueError("window_sec must be > 0")
        self._max = max_requests
        self._window = window_sec
        self._clock = clock or time.monotonic
        self._stamps: deque[float] = deque()
        self._lock = asyncio.Lock()

    @property
    def max_requests(self) -> int:
        return self._max

    @property
    def window_sec(self) -> float:
        return self._window

    @property
    def in_window(self) -> int:
        """Admissions in the trailing window. Read-only; only admit() prunes."""
        now = self._clock()
        return sum(1 for ts in self._stamps if now - ts < self._window)

    async def admit(self) -> bool:
        async with self._lock:
            now = self._clock()
            self._prune(now)
            if len(self._stamps) < self._max:
                self._stamps.append(now)
                return True
            return False

    def _prune(self, now: float) -> None:
        # stamps are appended in clock order, so the oldest sit on the left
        while self._stamps and now - self._stamps[0] >= self._window:
            self._stamps.popleft()
