from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Union

from loguru import logger

from ..models import Message, utc_now


@dataclass
class DeadLetterRecord:
    message: Message
    reason: str
    metadata: dict[str, Any] = field(default_factory=dict)
    ts: str = ""


class DeadLetterQueue:
    """Append-only NDJSON file of messages given up on.

    One line per message. Not a redelivery mechanism: ``replay`` only reads
    the records back so an operator (or the CLI) can inspect or re-submit
    them by hand.
    """

    def __init__(self, path: Union[str, Path], *, mkdirs: bool = True):
        self.path = Path(path)
        if mkdirs:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = asyncio.Lock()

    async def save(
        self,
        message: Message,
        reason: Union[str, BaseException],
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        rec = {
            "ts": utc_now().isoformat(),
            "reason": reason if isinstance(reason, str) else f"{type(reason).__name__}: {reason}",
            "metadata": metadata or {},
            "message": message.model_dump(mode="json", by_alias=True),
        }
        line = json.dumps(rec, default=str) + "\n"
        async with self._lock:
            await asyncio.to_thread(self._append, line)
        logger.warning(f"[dlq] {message.idempotency_key} dead-lettered to {self.path}")

    def _append(self, line: str) -> None:
        with self.path.open("a", encoding="utf-8") as f:
            f.write(line)

    async def replay(self, max_records: int = 100) -> list[DeadLetterRecord]:
        """Read up to ``max_records`` records, oldest first."""
        if not self.path.exists():
            return []
        lines = await asyncio.to_thread(self.path.read_text, encoding="utf-8")
        out: list[DeadLetterRecord] = []
        for raw in lines.splitlines():
            if len(out) >= max_records:
                break
            if not raw.strip():
                continue
            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                logger.warning(f"[dlq] Skipping malformed line in {self.path}")
                continue
            out.append(
                DeadLetterRecord(
                    message=Message.model_validate(data.get("message", {})),
                    reason=data.get("reason", ""),
                    metadata=data.get("metadata", {}),
                    ts=data.get("ts", ""),
                )
            )
        return out
