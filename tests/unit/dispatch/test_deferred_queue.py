"""
Unit tests for DeferredQueue.
"""

import asyncio

import pytest

from message_relay import DispatchOutcome, DispatchStatus, Message
from message_relay.dispatch import DeferredQueue


def _msg(key: str) -> Message:
    return Message(idempotency_key=key, payload={"n": key})


class Recorder:
    """Resubmit callable that records messages and returns Success."""

    def __init__(self, raise_first: int = 0):
        self.seen: list[str] = []
        self._raise = raise_first

    async def __call__(self, message: Message) -> DispatchOutcome:
        self.seen.append(message.idempotency_key)
        if self._raise > 0:
            self._raise -= 1
            raise RuntimeError("resubmit blew up")
        return DispatchOutcome(status=DispatchStatus.SUCCESS, detail="ok")


@pytest.mark.asyncio
async def test_enqueue_increments_retry_count():
    q = DeferredQueue(Recorder())
    m = _msg("a")

    assert await q.enqueue(m)
    assert m.retry_count == 1
    assert q.depth == 1

    await q.enqueue(m)
    assert m.retry_count == 2
    assert len(q) == 2


@pytest.mark.asyncio
async def test_drain_once_is_fifo():
    rec = Recorder()
    q = DeferredQueue(rec)
    for k in ("a", "b", "c"):
        await q.enqueue(_msg(k))

    for _ in range(3):
        out = await q.drain_once()
        assert out.status == DispatchStatus.SUCCESS

    assert rec.seen == ["a", "b", "c"]
    assert q.depth == 0
    assert await q.drain_once() is None


@pytest.mark.asyncio
async def test_failed_resubmission_requeues_at_tail():
    rec = Recorder(raise_first=1)
    q = DeferredQueue(rec)
    a, b = _msg("a"), _msg("b")
    await q.enqueue(a)
    await q.enqueue(b)

    assert await q.drain_once() is None
    assert a.retry_count == 2
    assert q.depth == 2

    await q.drain_once()
    await q.drain_once()
    assert rec.seen == ["a", "b", "a"]


@pytest.mark.asyncio
async def test_requeue_cap_escalates():
    dead = []

    async def on_dead(message: Message):
        dead.append(message.idempotency_key)

    q = DeferredQueue(Recorder(), max_requeues=2, on_dead_letter=on_dead)
    m = _msg("a")
    assert await q.enqueue(m)
    assert await q.enqueue(m)
    assert not await q.enqueue(m)

    assert dead == ["a"]
    assert m.retry_count == 2
    assert q.depth == 2


@pytest.mark.asyncio
async def test_overlapping_tick_is_skipped():
    release = asyncio.Event()
    seen = []

    async def slow(message: Message) -> DispatchOutcome:
        seen.append(message.idempotency_key)
        await release.wait()
        return DispatchOutcome(status=DispatchStatus.SUCCESS, detail="ok")

    q = DeferredQueue(slow)
    await q.enqueue(_msg("a"))
    await q.enqueue(_msg("b"))

    first = asyncio.create_task(q.drain_once())
    await asyncio.sleep(0)
    assert await q.drain_once() is None  # skipped, not processed
    assert q.depth == 1

    release.set()
    await first
    assert seen == ["a"]


@pytest.mark.asyncio
async def test_background_loop_drains():
    rec = Recorder()
    q = DeferredQueue(rec, drain_interval_sec=0.01)
    for k in ("a", "b", "c"):
        await q.enqueue(_msg(k))

    q.start()
    assert q.running
    for _ in range(200):
        if q.depth == 0:
            break
        await asyncio.sleep(0.01)
    await q.stop()

    assert not q.running
    assert rec.seen == ["a", "b", "c"]


@pytest.mark.asyncio
async def test_stop_without_start_is_noop():
    q = DeferredQueue(Recorder())
    await q.stop()
    assert not q.running


def test_invalid_arguments():
    with pytest.raises(ValueError):
        DeferredQueue(Recorder(), drain_interval_sec=0)
    with pytest.raises(ValueError):
        DeferredQueue(Recorder(), max_requeues=0)
