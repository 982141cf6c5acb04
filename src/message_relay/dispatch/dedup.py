from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Optional

from ..models import DispatchOutcome


@dataclass
class _Claim:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    holders: int = 0  # holder plus waiters


class DedupCache:
    """Idempotency-keyed outcome cache.

    ``claim(key)`` serialises dispatches of one key: a second caller waits
    for the first to finish and then finds its cached outcome instead of
    sending again.
    """

    def __init__(self) -> None:
        self._outcomes: dict[str, DispatchOutcome] = {}
        self._lock = asyncio.Lock()
        self._claims: dict[str, _Claim] = {}

    async def get(self, key: str) -> Optional[DispatchOutcome]:
        async with self._lock:
            return self._outcomes.get(key)

    async def put(self, key: str, outcome: DispatchOutcome) -> None:
        async with self._lock:
            # first resolution wins
            self._outcomes.setdefault(key, outcome)

    @asynccontextmanager
    async def claim(self, key: str) -> AsyncIterator[None]:
        entry = self._claims.get(key)
        if entry is None:
            entry = self._claims[key] = _Claim()
        entry.holders += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.holders -= 1
            if entry.holders == 0:
                self._claims.pop(key, None)

    @property
    def in_flight(self) -> int:
        return len(self._claims)

    def __contains__(self, key: object) -> bool:
        return key in self._outcomes

    def __len__(self) -> int:
        return len(self._outcomes)
