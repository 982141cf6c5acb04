"""
Unit tests for the dispatch EventBus.
"""

import pytest

from message_relay.dispatch import DispatchEvent, DispatchEventKind, EventBus


@pytest.fixture
def bus():
    """Fresh EventBus for each test."""
    return EventBus()


@pytest.fixture
def event():
    return DispatchEvent(
        kind=DispatchEventKind.RETRY,
        idempotency_key="k1",
        backend="primary",
        attempt=1,
        detail="timeout",
    )


def test_event_immutable(event):
    with pytest.raises(Exception):  # dataclass frozen raises on assignment
        event.attempt = 2  # type: ignore


@pytest.mark.asyncio
async def test_subscribe_and_publish(bus, event):
    received = []

    async def subscriber(evt: DispatchEvent):
        received.append(evt)

    bus.subscribe(subscriber)
    await bus.publish(event)

    assert received == [event]


@pytest.mark.asyncio
async def test_duplicate_subscribe_ignored(bus, event):
    received = []

    async def subscriber(evt: DispatchEvent):
        received.append(evt)

    bus.subscribe(subscriber)
    bus.subscribe(subscriber)
    assert bus.subscriber_count == 1

    await bus.publish(event)
    assert len(received) == 1


@pytest.mark.asyncio
async def test_unsubscribe(bus, event):
    received = []

    async def subscriber(evt: DispatchEvent):
        received.append(evt)

    bus.subscribe(subscriber)
    bus.unsubscribe(subscriber)
    bus.unsubscribe(subscriber)  # safe to repeat
    await bus.publish(event)

    assert received == []
    assert bus.subscriber_count == 0


@pytest.mark.asyncio
async def test_failing_subscriber_isolated(bus, event):
    received = []

    async def broken(evt: DispatchEvent):
        raise RuntimeError("boom")

    async def healthy(evt: DispatchEvent):
        received.append(evt)

    bus.subscribe(broken)
    bus.subscribe(healthy)
    await bus.publish(event)

    assert received == [event]


@pytest.mark.asyncio
async def test_publish_without_subscribers(bus, event):
    await bus.publish(event)
