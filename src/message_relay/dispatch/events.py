"""
Dispatch event feed.

In-process pub/sub for what happens to messages as they move through the
orchestrator: retries, deferrals, circuit transitions, deliveries,
terminal failures and dead-lettering. Subscribers can forward these to an
audit sink, alerting, dashboards, etc.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol

from loguru import logger


class DispatchEventKind(str, Enum):
    """What happened."""

    RETRY = "retry"  # an attempt failed and will be retried
    DEFERRED = "deferred"  # message placed on the deferred queue
    CIRCUIT = "circuit"  # breaker changed state
    DELIVERED = "delivered"
    DUPLICATE = "duplicate"
    FAILED = "failed"  # every backend exhausted
    DEAD_LETTERED = "dead_lettered"


@dataclass(frozen=True)
class DispatchEvent:
    """Immutable dispatch event.

    Attributes:
        kind: Event type
        idempotency_key: Message the event concerns (None for circuit events)
        backend: Backend involved, if any
        attempt: Attempt number or total attempts, depending on kind
        detail: Free-form context (error text, "closed->open", "rate_limit", ...)
    """

    kind: DispatchEventKind
    idempotency_key: Optional[str] = None
    backend: Optional[str] = None
    attempt: int = 0
    detail: Optional[str] = None


class EventSubscriber(Protocol):
    """Async callable accepting DispatchEvent.

    Exceptions are caught and logged to prevent cascade failures.
    """

    async def __call__(self, event: DispatchEvent) -> None:
        ...


class EventBus:
    """In-process pub/sub bus for dispatch events.

    One subscriber's failure does not affect others. Best-effort delivery.

    Example:
        bus = EventBus()

        async def on_event(event: DispatchEvent):
            if event.kind == DispatchEventKind.DEAD_LETTERED:
                await page_someone(event)

        bus.subscribe(on_event)
    """

    def __init__(self) -> None:
        self._subs: list[EventSubscriber] = []

    def subscribe(self, callback: EventSubscriber) -> None:
        if callback not in self._subs:
            self._subs.append(callback)
            logger.debug(f"Event subscriber added (total: {len(self._subs)})")

    def unsubscribe(self, callback: EventSubscriber) -> None:
        """Remove a subscriber. No-op if it was never added."""
        try:
            self._subs.remove(callback)
            logger.debug(f"Event subscriber removed (total: {len(self._subs)})")
        except ValueError:
            pass

    async def publish(self, event: DispatchEvent) -> None:
        """Deliver event to all subscribers in registration order."""
        if not self._subs:
            return

        # Iterate over copy to allow unsubscribe during iteration
        for callback in list(self._subs):
            try:
                await callback(event)
            except Exception as exc:
                logger.debug(f"Event subscriber error (ignored): {type(exc).__name__}: {exc}")

    @property
    def subscriber_count(self) -> int:
        return len(self._subs)
