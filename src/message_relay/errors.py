"""
Custom exceptions for the message relay.

Every recoverable condition is absorbed by the orchestrator and converted
into a structured outcome; these types exist so the internal seams can
signal *why* a message did not go out.
"""

from __future__ import annotations

from typing import Optional


class DispatchError(Exception):
    """Base error for the dispatch engine."""

    code = "dispatch_error"


class ClientError(DispatchError):
    """The caller supplied an unusable message (e.g. no idempotency key)."""

    code = "client_error"


class AdmissionDenied(DispatchError):
    """Rate limit hit; recoverable via the deferred queue."""

    code = "admission_denied"


class CircuitOpenError(DispatchError):
    """Backend circuit is open; recoverable via queue + fallback."""

    code = "circuit_open"

    def __init__(self, backend: str, message: Optional[str] = None):
        super().__init__(message or f"{backend} is temporarily disabled")
        self.backend = backend


class BackendFailure(DispatchError):
    """A single send attempt against a backend failed."""

    code = "backend_failure"

    def __init__(self, backend: str, message: str):
        super().__init__(message)
        self.backend = backend


class PermanentBackendFailure(BackendFailure):
    """Backend rejected the message in a way retrying will not fix."""

    code = "permanent_backend_failure"


class RetriesExhausted(DispatchError):
    """Retry budget spent without a successful attempt."""

    code = "retries_exhausted"

    def __init__(self, attempts: int, last_error: Optional[BaseException] = None):
        detail = f": {last_error}" if last_error is not None else ""
        super().__init__(f"gave up after {attempts} attempt(s){detail}")
        self.attempts = attempts
        self.last_error = last_error


class AllBackendsExhausted(DispatchError):
    """Terminal: every backend was tried (or skipped) without success."""

    code = "all_backends_exhausted"

    def __init__(self, attempts: int, errors: dict[str, BaseException]):
        names = ", ".join(errors) or "none"
        super().__init__(f"all backends failed ({names})")
        self.attempts = attempts
        self.errors = errors
