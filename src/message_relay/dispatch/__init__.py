"""Dispatch engine

Per-message reliability pipeline:
- SlidingWindowRateLimiter (admission control)
- CircuitBreaker per backend (closed/open/half-open, single probe)
- RetryPolicy + RetryExecutor (bounded exponential backoff)
- DedupCache (idempotency-keyed outcomes, per-key serialisation)
- DeferredQueue (periodic redelivery, optional requeue cap)
- DeadLetterQueue (file-based NDJSON)
- EventBus (dispatch events for observability)
- DispatchOrchestrator (composition, ordered backend fallback, status log)
- Environment-based settings
"""

from .types import Backend
from .admission import SlidingWindowRateLimiter
from .policy import (
    Attempted,
    CircuitBreaker,
    CircuitState,
    RetryExecutor,
    RetryPolicy,
    default_retry_classifier,
)
from .dedup import DedupCache
from .status import StatusLog
from .queue import DeferredQueue
from .dlq import DeadLetterQueue, DeadLetterRecord
from .events import DispatchEvent, DispatchEventKind, EventBus
from .orchestrator import DispatchHealth, DispatchOrchestrator
from .settings import DispatchRuntimeSettings

__all__ = [
    # types
    "Backend",
    "Attempted",
    "CircuitState",
    "DispatchHealth",
    "DeadLetterRecord",
    "DispatchEvent",
    "DispatchEventKind",
    # policies
    "SlidingWindowRateLimiter",
    "RetryPolicy",
    "RetryExecutor",
    "default_retry_classifier",
    "CircuitBreaker",
    # state
    "DedupCache",
    "StatusLog",
    "DeferredQueue",
    # runtime
    "DispatchOrchestrator",
    "DispatchRuntimeSettings",
    "EventBus",
    # tooling
    "DeadLetterQueue",
]
