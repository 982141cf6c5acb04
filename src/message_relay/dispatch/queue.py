from __future__ import annotations

import asyncio
from collections import deque
from typing import Optional

from loguru import logger

from ..metrics.registry import DEFERRED_QUEUE_DEPTH
from ..models import DispatchOutcome, Message
from .types import DeadLetterFn, ResubmitFn


class DeferredQueue:
    """Unbounded FIFO of messages that could not be dispatched right away.

    A background loop pops one message per ``drain_interval_sec`` and hands
    it back to ``resubmit`` (the orchestrator entry point). Ticks never
    overlap; a tick that finds the previous one still running is skipped.

    With ``max_requeues=None`` a message that keeps getting deferred cycles
    forever at the drain cadence. Setting a cap escalates such a message to
    ``on_dead_letter`` once its ``retry_count`` reaches the cap.
    """

    def __init__(
        self,
        resubmit: ResubmitFn,
        *,
        drain_interval_sec: float = 0.5,
        max_requeues: Optional[int] = None,
        on_dead_letter: Optional[DeadLetterFn] = None,
    ):
        if drain_interval_sec <= 0:
            raise ValueError("drain_interval_sec must be > 0")
        if max_requeues is not None and max_requeues < 1:
            raise ValueError("max_requeues must be >= 1 (or None for unbounded)")

        self._resubmit = resubmit
        self._interval = drain_interval_sec
        self._max_requeues = max_requeues
        self._on_dead_letter = on_dead_letter

        self._items: deque[Message] = deque()
        self._lock = asyncio.Lock()  # guards _items
        self._tick_lock = asyncio.Lock()  # single-flight drain
        self._task: Optional[asyncio.Task] = None
        self._wake = asyncio.Event()
        self._running = False

    @property
    def depth(self) -> int:
        return len(self._items)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def max_requeues(self) -> Optional[int]:
        return self._max_requeues

    def __len__(self) -> int:
        return len(self._items)

    def at_cap(self, message: Message) -> bool:
        """True if ``enqueue`` would escalate this message instead of queueing it."""
        return self._max_requeues is not None and message.retry_count >= self._max_requeues

    async def enqueue(self, message: Message) -> bool:
        """Append message at the tail; False if it was escalated instead."""
        if self.at_cap(message):
            logger.warning(
                f"[queue] {message.idempotency_key} hit requeue cap "
                f"({message.retry_count}/{self._max_requeues}); escalating"
            )
            if self._on_dead_letter:
                await self._on_dead_letter(message)
            return False

        async with self._lock:
            message.retry_count += 1
            self._items.append(message)
            DEFERRED_QUEUE_DEPTH.set(len(self._items))
        logger.info(
            f"[queue] Queued {message.idempotency_key} "
            f"(retry {message.retry_count}, depth {len(self._items)})"
        )
        return True

    async def drain_once(self) -> Optional[DispatchOutcome]:
        """Resubmit the oldest message, if any. Skipped if a tick is running."""
        if self._tick_lock.locked():
            logger.debug("[queue] Previous drain tick still running; skipping")
            return None

        async with self._tick_lock:
            async with self._lock:
                if not self._items:
                    return None
                message = self._items.popleft()
                DEFERRED_QUEUE_DEPTH.set(len(self._items))

            logger.info(f"[queue] Processing queued message {message.idempotency_key}")
            try:
                outcome = await self._resubmit(message)
            except Exception as exc:
                logger.error(
                    f"[queue] Resubmission of {message.idempotency_key} failed: "
                    f"{type(exc).__name__}: {exc}"
                )
                await self.enqueue(message)
                return None

            logger.info(
                f"[queue] {message.idempotency_key} processed: {outcome.status.value}"
            )
            return outcome

    def start(self) -> None:
        if self.running:
            return
        self._running = True
        self._wake.clear()
        self._task = asyncio.create_task(self._run(), name="deferred-queue-drain")
        logger.debug(f"[queue] Drain loop started (every {self._interval}s)")

    async def stop(self) -> None:
        """Stop the drain loop, letting an in-flight tick finish."""
        if self._task is None:
            return
        self._running = False
        self._wake.set()
        try:
            await self._task
        finally:
            self._task = None
            logger.debug(f"[queue] Drain loop stopped (depth {len(self._items)})")

    async def _run(self) -> None:
        while self._running:
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                pass
            if not self._running:
                break
            try:
                await self.drain_once()
            except Exception as exc:
                # keep the loop alive; the message was already requeued or resolved
                logger.error(f"[queue] Drain tick error: {type(exc).__name__}: {exc}")
