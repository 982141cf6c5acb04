from __future__ import annotations

import asyncio
from typing import Optional

from ..models import DeliveryStatus, StatusRecord


class StatusLog:
    """Latest StatusRecord per idempotency key (not a history)."""

    def __init__(self) -> None:
        self._records: dict[str, StatusRecord] = {}
        self._lock = asyncio.Lock()

    async def record(
        self,
        key: str,
        status: DeliveryStatus,
        *,
        backend: Optional[str] = None,
        attempts: int = 0,
        retry_count: int = 0,
    ) -> StatusRecord:
        rec = StatusRecord(
            idempotency_key=key,
            status=status,
            backend=backend,
            attempts=attempts,
            retry_count=retry_count,
        )
        async with self._lock:
            self._records[key] = rec
        return rec

    def get(self, key: str) -> Optional[StatusRecord]:
        return self._records.get(key)

    def __len__(self) -> int:
        return len(self._records)
