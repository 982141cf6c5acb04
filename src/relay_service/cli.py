import asyncio
import json
import sys
from typing import Optional

import typer
from loguru import logger

from message_relay import DispatchOrchestrator, DispatchRuntimeSettings, Message
from message_relay.dispatch import DeadLetterQueue
from relay_service.backends import default_backends
from relay_service.config import get_settings

app = typer.Typer(help="Message relay CLI (serve, send, simulate, dead letters)")


def _orchestrator(**overrides) -> DispatchOrchestrator:
    return DispatchOrchestrator.from_settings(
        default_backends(get_settings()), DispatchRuntimeSettings(), **overrides
    )


def _parse_payload(payload: Optional[str]):
    if payload is None:
        return None
    try:
        return json.loads(payload)
    except json.JSONDecodeError as e:
        logger.error(f"--payload is not valid JSON: {e}")
        sys.exit(2)


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, help="Bind address (default: APP_HOST)"),
    port: Optional[int] = typer.Option(None, help="Port (default: APP_PORT)"),
    reload: bool = typer.Option(False, help="Auto-reload on code changes"),
):
    """Run the HTTP service."""
    import uvicorn

    settings = get_settings()
    host = host or settings.APP_HOST
    port = port or settings.APP_PORT
    logger.info(f"Starting relay service on {host}:{port}")
    uvicorn.run("relay_service.service.app:app", host=host, port=port, reload=reload)


@app.command()
def send(
    key: str = typer.Argument(..., help="Idempotency key"),
    payload: Optional[str] = typer.Option(None, "--payload", help="JSON payload"),
):
    """Dispatch a single message and print the outcome."""
    message = Message(idempotency_key=key, payload=_parse_payload(payload))

    async def _run():
        # one-shot: no drain loop, a deferred message stays where it is
        relay = _orchestrator(enable_queue=False)
        return await relay.dispatch(message)

    outcome = asyncio.run(_run())
    typer.echo(outcome.model_dump_json(indent=2))
    if outcome.status.value == "failure":
        sys.exit(1)


@app.command()
def simulate(
    count: int = typer.Option(10, "--count", "-n", help="Messages to send"),
    prefix: str = typer.Option("sim", help="Idempotency key prefix"),
    drain_timeout: float = typer.Option(10.0, help="Seconds to wait for the queue to drain"),
):
    """Send COUNT keyed messages through simulated backends, then drain the queue."""

    async def _run():
        tally: dict[str, int] = {}
        async with _orchestrator() as relay:
            for i in range(count):
                message = Message(
                    idempotency_key=f"{prefix}{i}",
                    payload={"to": f"test{i}@example.com", "subject": "Relay test"},
                )
                outcome = await relay.dispatch(message)
                tally[outcome.status.value] = tally.get(outcome.status.value, 0) + 1
                typer.echo(f"Initial send {i + 1}: {outcome.status.value}")

            loop = asyncio.get_running_loop()
            deadline = loop.time() + drain_timeout
            while relay.queue_depth and loop.time() < deadline:
                await asyncio.sleep(0.1)

            for i in range(count):
                rec = relay.status(f"{prefix}{i}")
                typer.echo(
                    json.dumps(rec.model_dump(mode="json") if rec else {"key": f"{prefix}{i}"})
                )
            return tally, relay.queue_depth

    tally, depth = asyncio.run(_run())
    logger.success(f"Simulation done: {tally} (left in queue: {depth})")


@app.command("dead-letters")
def dead_letters(
    path: str = typer.Argument(..., help="Dead-letter NDJSON file"),
    limit: int = typer.Option(100, "--limit", help="Max records to print"),
):
    """Print dead-lettered messages."""
    try:
        records = asyncio.run(DeadLetterQueue(path, mkdirs=False).replay(limit))
    except Exception as e:
        logger.error(f"Failed to read dead letters: {e}")
        sys.exit(1)

    for r in records:
        typer.echo(
            json.dumps(
                {
                    "ts": r.ts,
                    "reason": r.reason,
                    "metadata": r.metadata,
                    "message": r.message.model_dump(mode="json", by_alias=True),
                },
                default=str,
            )
        )
    logger.info(f"{len(records)} dead letter(s) in {path}")


if __name__ == "__main__":
    app()
