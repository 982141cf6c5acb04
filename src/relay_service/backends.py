"""
Simulated delivery backends.

Stand-ins for real providers: each send sleeps for ``latency_sec`` and then
succeeds with probability ``success_rate``.
"""

from __future__ import annotations

import asyncio
import random
from typing import Optional

from message_relay import Backend, BackendFailure, BackendReceipt, Message

from .config import Settings


class SimulatedBackend(Backend):
    def __init__(
        self,
        name: str,
        success_rate: float,
        latency_sec: float = 0.1,
        *,
        rng: Optional[random.Random] = None,
    ):
        if not 0.0 <= success_rate <= 1.0:
            raise ValueError("success_rate must be between 0.0 and 1.0")
        self.name = name
        self.success_rate = success_rate
        self.latency_sec = latency_sec
        self._rng = rng or random.Random()
        self.sent = 0

    async def send(self, message: Message) -> BackendReceipt:
        await asyncio.sleep(self.latency_sec)
        if self._rng.random() >= self.success_rate:
            raise BackendFailure(self.name, f"Failed to send message by {self.name}")
        self.sent += 1
        return BackendReceipt(
            backend=self.name,
            message=f"Message sent successfully by {self.name}",
        )


def default_backends(settings: Settings) -> list[SimulatedBackend]:
    """Primary/secondary pair configured from service settings."""
    return [
        SimulatedBackend(
            settings.PRIMARY_NAME, settings.PRIMARY_SUCCESS_RATE, settings.BACKEND_LATENCY_SEC
        ),
        SimulatedBackend(
            settings.SECONDARY_NAME, settings.SECONDARY_SUCCESS_RATE, settings.BACKEND_LATENCY_SEC
        ),
    ]
