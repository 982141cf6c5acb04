"""
Pydantic data models for the message relay.

Wire names are camelCase (``idempotencyKey``) to match the request surface;
Python code uses the snake_case field names.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


class Message(BaseModel):
    """A unit of work to deliver. Identity is the idempotency key."""

    model_config = ConfigDict(populate_by_name=True)

    idempotency_key: Optional[str] = Field(default=None, alias="idempotencyKey")
    payload: Any = None
    # Bumped by the deferred queue on every enqueue
    retry_count: int = Field(default=0, alias="retryCount", ge=0)

    @field_validator("idempotency_key")
    @classmethod
    def _blank_is_missing(cls, v):
        if v is not None and not v.strip():
            return None
        return v

    @property
    def has_key(self) -> bool:
        return self.idempotency_key is not None


class DispatchStatus(str, Enum):
    SUCCESS = "success"
    DUPLICATE = "duplicate"
    QUEUED = "queued"
    FAILURE = "failure"


class DispatchOutcome(BaseModel):
    """Result of one dispatch call. Immutable; cached verbatim for duplicates."""

    model_config = ConfigDict(frozen=True)

    status: DispatchStatus
    detail: str
    backend: Optional[str] = None
    attempts: int = 0
    reason: Optional[str] = None
    receipt: Optional[dict[str, Any]] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (DispatchStatus.SUCCESS, DispatchStatus.FAILURE)

    def as_duplicate(self) -> "DispatchOutcome":
        return self.model_copy(update={"status": DispatchStatus.DUPLICATE})


class DeliveryStatus(str, Enum):
    """Latest known state of a key, as kept in the status log."""

    QUEUED_RATE_LIMIT = "queued_rate_limit"
    QUEUED_CIRCUIT_OPEN = "queued_circuit_open"
    SUCCESS = "success"
    FAILURE = "failure"
    DEAD_LETTERED = "dead_lettered"


class StatusRecord(BaseModel):
    """Audit entry; one per key, overwritten on every transition."""

    model_config = ConfigDict(frozen=True)

    idempotency_key: str
    status: DeliveryStatus
    timestamp: datetime = Field(default_factory=utc_now)
    backend: Optional[str] = None
    attempts: int = 0
    retry_count: int = 0


class BackendReceipt(BaseModel):
    """What a backend hands back from ``send``."""

    backend: str
    status: str = "success"
    message: str = ""
    data: dict[str, Any] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == "success"
