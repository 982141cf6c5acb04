"""
Message Relay

Delivers messages to one of several interchangeable, unreliable backends
with at-most-once effect: idempotent dedup, rate limiting, per-backend
circuit breaking, bounded retry with backoff, ordered fallback and a
deferred redelivery queue.

Usage:
    from message_relay import DispatchOrchestrator, Message

    async with DispatchOrchestrator([primary, secondary]) as relay:
        outcome = await relay.dispatch(Message(idempotency_key="k1", payload={...}))
"""

from .dispatch import Backend, DispatchOrchestrator, DispatchRuntimeSettings
from .errors import (
    AdmissionDenied,
    AllBackendsExhausted,
    BackendFailure,
    CircuitOpenError,
    ClientError,
    DispatchError,
    PermanentBackendFailure,
    RetriesExhausted,
)
from .models import (
    BackendReceipt,
    DeliveryStatus,
    DispatchOutcome,
    DispatchStatus,
    Message,
    StatusRecord,
)

__version__ = "0.3.0"
__all__ = [
    "Backend",
    "DispatchOrchestrator",
    "DispatchRuntimeSettings",
    "Message",
    "DispatchOutcome",
    "DispatchStatus",
    "DeliveryStatus",
    "StatusRecord",
    "BackendReceipt",
    "DispatchError",
    "ClientError",
    "AdmissionDenied",
    "CircuitOpenError",
    "BackendFailure",
    "PermanentBackendFailure",
    "RetriesExhausted",
    "AllBackendsExhausted",
]
