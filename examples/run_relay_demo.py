"""
Demo script for the dispatch orchestrator.

Sends a burst of keyed messages through two flaky simulated backends so
rate limiting, retries, fallback and deferred redelivery all show up in
the log, then waits for the queue to drain.
"""

import asyncio

from loguru import logger

from message_relay import DispatchOrchestrator, DispatchRuntimeSettings, Message
from message_relay.dispatch import DispatchEvent, DispatchEventKind
from relay_service.backends import SimulatedBackend


async def on_event(event: DispatchEvent):
    if event.kind in (DispatchEventKind.DEFERRED, DispatchEventKind.CIRCUIT):
        logger.info(f"event {event.kind.value}: key={event.idempotency_key} {event.detail}")


async def main():
    settings = DispatchRuntimeSettings(retry_initial_backoff_ms=50, breaker_cooldown_sec=1.0)
    backends = [SimulatedBackend("ProviderA", 0.7, 0.05), SimulatedBackend("ProviderB", 0.8, 0.05)]

    async with DispatchOrchestrator.from_settings(backends, settings) as relay:
        relay.events.subscribe(on_event)
        logger.info("🚀 Sending 10 messages")

        for i in range(10):
            outcome = await relay.dispatch(
                Message(idempotency_key=f"demo{i}", payload={"to": f"test{i}@example.com"})
            )
            logger.info(f"demo{i}: {outcome.status.value} ({outcome.detail})")

        # Same key again comes back from the dedup cache
        again = await relay.dispatch(Message(idempotency_key="demo0", payload={}))
        logger.info(f"demo0 resent: {again.status.value}")

        logger.info("⏳ Waiting for deferred messages...")
        for _ in range(50):
            if not relay.queue_depth:
                break
            await asyncio.sleep(0.2)

        health = relay.health()
        logger.info(f"Final health: queue={health.queue_depth} circuits={health.circuits}")
        for i in range(10):
            rec = relay.status(f"demo{i}")
            logger.info(f"demo{i}: {rec.status.value if rec else 'unknown'}")

    logger.info("✅ Relay demo complete")


if __name__ == "__main__":
    asyncio.run(main())
