from __future__ import annotations

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class DispatchRuntimeSettings(BaseSettings):
    """Runtime knobs for the dispatch engine, read from ``RELAY_*`` env vars.

    Example:
        RELAY_RATE_LIMIT_MAX_REQUESTS=20
        RELAY_BREAKER_COOLDOWN_SEC=10
        RELAY_QUEUE_MAX_REQUEUES=50
    """

    model_config = SettingsConfigDict(env_prefix="RELAY_", env_file=".env", extra="ignore")

    # admission
    rate_limit_max_requests: int = Field(5, gt=0)
    rate_limit_window_sec: float = Field(1.0, gt=0)

    # circuit breaker (per backend)
    breaker_failure_threshold: int = Field(3, gt=0)
    breaker_cooldown_sec: float = Field(5.0, ge=0)

    # retry
    retry_max_attempts: int = Field(3, ge=0)
    retry_initial_backoff_ms: int = Field(500, ge=0)
    retry_backoff_multiplier: float = Field(2.0, ge=1.0)
    retry_max_backoff_ms: int = Field(30_000, ge=0)
    retry_jitter: bool = False

    # deferred queue
    queue_enabled: bool = True
    queue_drain_interval_sec: float = Field(0.5, gt=0)
    queue_max_requeues: Optional[int] = Field(None, ge=1)

    # dead letters (only used with queue_max_requeues)
    dlq_path: Optional[str] = None
