"""
HTTP surface for the relay.

    POST /send              {"idempotencyKey": "...", "payload": {...}} -> DispatchOutcome
    GET  /status/{key}      latest StatusRecord, 404 if unknown
    GET  /healthz           queue + circuit snapshot
    GET  /metrics           Prometheus exposition
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from loguru import logger
from prometheus_client import make_asgi_app

from message_relay import (
    DispatchOrchestrator,
    DispatchOutcome,
    DispatchRuntimeSettings,
    Message,
    StatusRecord,
)

from ..backends import default_backends
from ..config import Settings, get_settings


def build_orchestrator(
    settings: Optional[Settings] = None,
    runtime: Optional[DispatchRuntimeSettings] = None,
) -> DispatchOrchestrator:
    settings = settings or get_settings()
    return DispatchOrchestrator.from_settings(
        default_backends(settings), runtime or DispatchRuntimeSettings()
    )


def _relay(request: Request) -> DispatchOrchestrator:
    return request.app.state.relay


def create_app(orchestrator: Optional[DispatchOrchestrator] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        relay = orchestrator or build_orchestrator()
        app.state.relay = relay
        async with relay:
            logger.info(
                f"Relay started with backends: {', '.join(b.name for b in relay.backends)}"
            )
            yield
        logger.info(f"Relay stopped (queue depth {relay.queue_depth})")

    app = FastAPI(title="message-relay", version="0.3.0", lifespan=lifespan)

    @app.get("/")
    async def root():
        return {"service": "message-relay", "status": "running"}

    @app.post("/send", response_model=DispatchOutcome)
    async def send(message: Message, request: Request) -> DispatchOutcome:
        return await _relay(request).dispatch(message)

    @app.get("/status/{idempotency_key}", response_model=StatusRecord)
    async def status(idempotency_key: str, request: Request) -> StatusRecord:
        record = _relay(request).status(idempotency_key)
        if record is None:
            raise HTTPException(status_code=404, detail="Not found")
        return record

    @app.get("/healthz")
    async def healthz(request: Request):
        health = _relay(request).health()
        degraded = any(state != "closed" for state in health.circuits.values())
        return {"status": "degraded" if degraded else "ok", **asdict(health)}

    app.mount("/metrics", make_asgi_app())
    return app


app = create_app()
