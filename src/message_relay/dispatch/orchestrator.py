from __future__ import annotations

import json
import time
from dataclasses import dataclass
from functools import partial
from typing import Any, Mapping, Optional, Sequence, Union

from loguru import logger
from pydantic import ValidationError
from pydantic_core import PydanticSerializationError

from ..errors import (
    AdmissionDenied,
    AllBackendsExhausted,
    BackendFailure,
    CircuitOpenError,
    ClientError,
    DispatchError,
    RetriesExhausted,
)
from ..metrics.registry import (
    ADMISSION_DENIED_TOTAL,
    BACKEND_ATTEMPTS_TOTAL,
    BACKEND_SEND_LATENCY,
    CIRCUIT_STATE,
    CIRCUIT_STATE_VALUES,
    DEAD_LETTERS_TOTAL,
    DISPATCH_OUTCOMES_TOTAL,
)
from ..models import (
    BackendReceipt,
    DeliveryStatus,
    DispatchOutcome,
    DispatchStatus,
    Message,
    StatusRecord,
)
from .admission import SlidingWindowRateLimiter
from .dedup import DedupCache
from .dlq import DeadLetterQueue
from .events import DispatchEvent, DispatchEventKind, EventBus
from .policy import CircuitBreaker, RetryExecutor, RetryPolicy
from .queue import DeferredQueue
from .settings import DispatchRuntimeSettings
from .status import StatusLog
from .types import Backend, Clock, SendResult, Sleep


@dataclass(frozen=True)
class DispatchHealth:
    queue_enabled: bool
    queue_depth: int
    queue_running: bool
    circuits: dict[str, str]
    cached_outcomes: int
    admissions_in_window: int


def _receipt_json(receipt: BackendReceipt) -> dict[str, Any]:
    """JSON-safe dump; values pydantic cannot serialise are stringified."""
    try:
        return receipt.model_dump(mode="json")
    except PydanticSerializationError:
        return json.loads(json.dumps(receipt.model_dump(), default=str))


def _coerce_receipt(raw: SendResult, backend: str) -> BackendReceipt:
    if isinstance(raw, BackendReceipt):
        return raw
    if raw is None:
        raise BackendFailure(backend, f"{backend} returned no receipt")
    if isinstance(raw, Mapping):
        return BackendReceipt.model_validate({"backend": backend, **raw})
    raise BackendFailure(backend, f"{backend} returned unexpected {type(raw).__name__}")


class DispatchOrchestrator:
    """Sends each message through admission, dedup and ordered backend fallback.

    Per message:
        1. no idempotency key        -> Failure (client_error), nothing else touched
        2. rate limit denies         -> deferred, Queued
        3. key already delivered     -> cached outcome re-tagged Duplicate
        4. each backend in order     -> skip (and defer) if its circuit is open,
                                        else send with retry; first success wins
        5. nothing worked            -> Failure (all_backends_exhausted), not cached

    ``dispatch`` never raises for these conditions; every path returns a
    DispatchOutcome and updates the status log.
    """

    def __init__(
        self,
        backends: Sequence[Backend],
        *,
        rate_limiter: Optional[SlidingWindowRateLimiter] = None,
        retry_policy: Optional[RetryPolicy] = None,
        breaker_failure_threshold: int = 3,
        breaker_cooldown_sec: float = 5.0,
        enable_queue: bool = True,
        drain_interval_sec: float = 0.5,
        max_requeues: Optional[int] = None,
        dead_letters: Optional[DeadLetterQueue] = None,
        events: Optional[EventBus] = None,
        clock: Optional[Clock] = None,
        sleep: Optional[Sleep] = None,
    ):
        if not backends:
            raise ValueError("at least one backend is required")
        names = [b.name for b in backends]
        if len(set(names)) != len(names):
            raise ValueError(f"backend names must be unique: {names}")

        self._backends = list(backends)
        self._limiter = rate_limiter or SlidingWindowRateLimiter(5, 1.0, clock=clock)
        self._retry = RetryExecutor(retry_policy, sleep=sleep)
        self._breakers = {
            b.name: CircuitBreaker(
                b.name,
                breaker_failure_threshold,
                breaker_cooldown_sec,
                clock=clock,
                on_transition=self._on_circuit_transition,
            )
            for b in self._backends
        }
        for name in self._breakers:
            CIRCUIT_STATE.labels(name).set(CIRCUIT_STATE_VALUES["closed"])

        self._dedup = DedupCache()
        self._status = StatusLog()
        self._events = events or EventBus()
        self._dead_letters = dead_letters
        self._queue: Optional[DeferredQueue] = (
            DeferredQueue(
                self._redeliver,
                drain_interval_sec=drain_interval_sec,
                max_requeues=max_requeues,
                on_dead_letter=self._dead_letter,
            )
            if enable_queue
            else None
        )

    @classmethod
    def from_settings(
        cls,
        backends: Sequence[Backend],
        settings: Optional[DispatchRuntimeSettings] = None,
        **overrides: Any,
    ) -> "DispatchOrchestrator":
        s = settings or DispatchRuntimeSettings()
        kwargs: dict[str, Any] = dict(
            rate_limiter=SlidingWindowRateLimiter(
                s.rate_limit_max_requests, s.rate_limit_window_sec, clock=overrides.get("clock")
            ),
            retry_policy=RetryPolicy(
                max_attempts=s.retry_max_attempts,
                initial_backoff_ms=s.retry_initial_backoff_ms,
                max_backoff_ms=s.retry_max_backoff_ms,
                backoff_multiplier=s.retry_backoff_multiplier,
                jitter=s.retry_jitter,
            ),
            breaker_failure_threshold=s.breaker_failure_threshold,
            breaker_cooldown_sec=s.breaker_cooldown_sec,
            enable_queue=s.queue_enabled,
            drain_interval_sec=s.queue_drain_interval_sec,
            max_requeues=s.queue_max_requeues,
            dead_letters=DeadLetterQueue(s.dlq_path) if s.dlq_path else None,
        )
        kwargs.update(overrides)
        return cls(backends, **kwargs)

    # ---------- introspection ----------

    @property
    def backends(self) -> list[Backend]:
        return list(self._backends)

    @property
    def events(self) -> EventBus:
        return self._events

    @property
    def queue(self) -> Optional[DeferredQueue]:
        return self._queue

    @property
    def queue_depth(self) -> int:
        return self._queue.depth if self._queue is not None else 0

    def breaker(self, backend: str) -> CircuitBreaker:
        return self._breakers[backend]

    def status(self, idempotency_key: str) -> Optional[StatusRecord]:
        return self._status.get(idempotency_key)

    def health(self) -> DispatchHealth:
        return DispatchHealth(
            queue_enabled=self._queue is not None,
            queue_depth=self.queue_depth,
            queue_running=self._queue is not None and self._queue.running,
            circuits={name: cb.state for name, cb in self._breakers.items()},
            cached_outcomes=len(self._dedup),
            admissions_in_window=self._limiter.in_window,
        )

    # ---------- lifecycle ----------

    def start(self) -> None:
        if self._queue is not None:
            self._queue.start()

    async def stop(self) -> None:
        if self._queue is not None:
            await self._queue.stop()

    async def __aenter__(self) -> "DispatchOrchestrator":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    # ---------- entry point ----------

    async def dispatch(self, message: Union[Message, Mapping[str, Any]]) -> DispatchOutcome:
        try:
            if not isinstance(message, Message):
                try:
                    message = Message.model_validate(message)
                except ValidationError as exc:
                    raise ClientError(
                        f"Invalid message: {exc.error_count()} validation error(s)"
                    ) from exc
            outcome = await self._dispatch(message)
        except ClientError as exc:
            outcome = DispatchOutcome(
                status=DispatchStatus.FAILURE, detail=str(exc), reason=exc.code
            )
        except Exception as exc:
            key = getattr(message, "idempotency_key", None)
            logger.exception(f"Unexpected error dispatching {key}")
            outcome = DispatchOutcome(
                status=DispatchStatus.FAILURE,
                detail=f"{type(exc).__name__}: {exc}",
                reason=DispatchError.code,
            )
        DISPATCH_OUTCOMES_TOTAL.labels(outcome.status.value).inc()
        return outcome

    async def _dispatch(self, message: Message) -> DispatchOutcome:
        key = self._require_key(message)

        try:
            await self._admit()
        except AdmissionDenied as exc:
            return await self._on_admission_denied(message, exc)

        async with self._dedup.claim(key):
            cached = await self._dedup.get(key)
            if cached is not None:
                logger.info(f"Duplicate message {key} - returning cached outcome")
                await self._publish(DispatchEventKind.DUPLICATE, key, backend=cached.backend)
                return cached.as_duplicate()

            try:
                return await self._deliver(message)
            except AllBackendsExhausted as exc:
                logger.error(f"All backends failed for {key}: {exc}")
                await self._status.record(
                    key,
                    DeliveryStatus.FAILURE,
                    attempts=exc.attempts,
                    retry_count=message.retry_count,
                )
                await self._publish(
                    DispatchEventKind.FAILED, key, attempt=exc.attempts, detail=str(exc)
                )
                return DispatchOutcome(
                    status=DispatchStatus.FAILURE,
                    detail="All backends failed to deliver the message after retries.",
                    attempts=exc.attempts,
                    reason=exc.code,
                )

    def _require_key(self, message: Message) -> str:
        if not message.has_key:
            raise ClientError("Idempotency key is required.")
        return message.idempotency_key  # type: ignore[return-value]

    async def _admit(self) -> None:
        if not await self._limiter.admit():
            raise AdmissionDenied("rate limit exceeded")

    async def _on_admission_denied(self, message: Message, exc: AdmissionDenied) -> DispatchOutcome:
        ADMISSION_DENIED_TOTAL.inc()
        key: str = message.idempotency_key  # type: ignore[assignment]
        if await self._defer(message, DeliveryStatus.QUEUED_RATE_LIMIT, detail=exc.code):
            return DispatchOutcome(
                status=DispatchStatus.QUEUED,
                detail="Rate limit hit. Message has been queued for retry.",
                reason=exc.code,
            )
        if self._queue is None:
            logger.warning(f"Rate limit hit for {key} and deferred queue is disabled")
            await self._status.record(key, DeliveryStatus.FAILURE, retry_count=message.retry_count)
            return DispatchOutcome(
                status=DispatchStatus.FAILURE,
                detail="Rate limit hit and the deferred queue is disabled.",
                reason=exc.code,
            )
        return DispatchOutcome(
            status=DispatchStatus.FAILURE,
            detail="Requeue limit reached. Message has been dead-lettered.",
            reason="dead_lettered",
        )

    async def _deliver(self, message: Message) -> DispatchOutcome:
        key: str = message.idempotency_key  # type: ignore[assignment]
        attempts = 0
        errors: dict[str, BaseException] = {}
        deferred = False
        # at the requeue cap, escalation waits until no backend delivered
        escalate_for: Optional[CircuitOpenError] = None

        for backend in self._backends:
            breaker = self._breakers[backend.name]
            try:
                await breaker.allow()
            except CircuitOpenError as exc:
                errors[backend.name] = exc
                logger.warning(f"{backend.name} circuit open; skipping for {key}")
                # one deferral per dispatch, even if it was refused
                if not deferred:
                    deferred = True
                    if self._queue is not None and self._queue.at_cap(message):
                        escalate_for = exc
                    else:
                        await self._defer(
                            message,
                            DeliveryStatus.QUEUED_CIRCUIT_OPEN,
                            backend=backend.name,
                            detail=exc.code,
                        )
                continue

            try:
                result = await self._retry.execute_with_backoff(
                    partial(self._send, backend, message),
                    on_retry=partial(self._on_retry, key, backend.name),
                )
            except RetriesExhausted as exc:
                attempts += exc.attempts
                errors[backend.name] = exc.last_error or exc
                await breaker.on_failure()
                logger.warning(
                    f"{backend.name} failed for {key} after {exc.attempts} attempt(s): "
                    f"{exc.last_error}"
                )
                continue

            attempts += result.attempts
            receipt = result.value
            outcome = DispatchOutcome(
                status=DispatchStatus.SUCCESS,
                backend=backend.name,
                detail=receipt.message or f"Message delivered by {backend.name}",
                attempts=attempts,
                receipt=_receipt_json(receipt),
            )
            # cached before anything else can fail, so a repeat is a duplicate
            await self._dedup.put(key, outcome)
            await breaker.on_success()
            await self._status.record(
                key,
                DeliveryStatus.SUCCESS,
                backend=backend.name,
                attempts=attempts,
                retry_count=message.retry_count,
            )
            logger.info(f"Delivered {key} via {backend.name} ({attempts} attempt(s))")
            await self._publish(
                DispatchEventKind.DELIVERED, key, backend=backend.name, attempt=attempts
            )
            return outcome

        if escalate_for is not None:
            await self._defer(
                message,
                DeliveryStatus.QUEUED_CIRCUIT_OPEN,
                backend=escalate_for.backend,
                detail=escalate_for.code,
            )
        raise AllBackendsExhausted(attempts, errors)

    async def _send(self, backend: Backend, message: Message) -> BackendReceipt:
        started = time.perf_counter()
        try:
            raw = await backend.send(message)
        except Exception:
            BACKEND_ATTEMPTS_TOTAL.labels(backend.name, "error").inc()
            raise
        finally:
            BACKEND_SEND_LATENCY.labels(backend.name).observe(time.perf_counter() - started)

        receipt = _coerce_receipt(raw, backend.name)
        if not receipt.ok:
            BACKEND_ATTEMPTS_TOTAL.labels(backend.name, "rejected").inc()
            raise BackendFailure(
                backend.name,
                receipt.message or f"{backend.name} returned status {receipt.status!r}",
            )
        BACKEND_ATTEMPTS_TOTAL.labels(backend.name, "success").inc()
        return receipt

    # ---------- deferral ----------

    async def _defer(
        self,
        message: Message,
        status: DeliveryStatus,
        *,
        backend: Optional[str] = None,
        detail: Optional[str] = None,
    ) -> bool:
        """Put message on the deferred queue; False if it could not be queued."""
        if self._queue is None:
            return False
        if not await self._queue.enqueue(message):
            return False
        key: str = message.idempotency_key  # type: ignore[assignment]
        await self._status.record(key, status, backend=backend, retry_count=message.retry_count)
        await self._publish(
            DispatchEventKind.DEFERRED,
            key,
            backend=backend,
            attempt=message.retry_count,
            detail=detail,
        )
        return True

    async def _redeliver(self, message: Message) -> DispatchOutcome:
        return await self.dispatch(message)

    async def _dead_letter(self, message: Message) -> None:
        key: str = message.idempotency_key  # type: ignore[assignment]
        DEAD_LETTERS_TOTAL.inc()
        await self._status.record(
            key, DeliveryStatus.DEAD_LETTERED, retry_count=message.retry_count
        )
        if self._dead_letters is not None:
            try:
                await self._dead_letters.save(
                    message, "requeue limit reached", {"retry_count": message.retry_count}
                )
            except Exception:
                logger.exception(
                    f"Failed to write dead letter for {key} to {self._dead_letters.path}"
                )
        await self._publish(
            DispatchEventKind.DEAD_LETTERED, key, attempt=message.retry_count
        )

    # ---------- hooks ----------

    async def _on_retry(
        self, key: str, backend: str, attempt: int, exc: BaseException, delay_ms: float
    ) -> None:
        await self._publish(
            DispatchEventKind.RETRY, key, backend=backend, attempt=attempt, detail=str(exc)
        )

    async def _on_circuit_transition(self, backend: str, old: str, new: str) -> None:
        CIRCUIT_STATE.labels(backend).set(CIRCUIT_STATE_VALUES[new])
        await self._publish(DispatchEventKind.CIRCUIT, backend=backend, detail=f"{old}->{new}")

    async def _publish(
        self,
        kind: DispatchEventKind,
        key: Optional[str] = None,
        *,
        backend: Optional[str] = None,
        attempt: int = 0,
        detail: Optional[str] = None,
    ) -> None:
        await self._events.publish(
            DispatchEvent(
                kind=kind, idempotency_key=key, backend=backend, attempt=attempt, detail=detail
            )
        )
