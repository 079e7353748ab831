"""In-process event fan-out for Server-Sent Events subscribers."""

from __future__ import annotations

import asyncio
import json
from datetime import UTC, datetime
from typing import Any


class EventBus:
    def __init__(self, maxsize: int = 100) -> None:
        self.maxsize = maxsize
        self._subscribers: set[asyncio.Queue] = set()

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.maxsize)
        self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        self._subscribers.discard(queue)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, kind: str, payload: dict[str, Any]) -> int:
        message = {"type": kind, "timestamp": datetime.now(UTC).isoformat(), "data": payload}
        for queue in list(self._subscribers):
            if queue.full():
                # slow consumer: drop its oldest frame
                try:
                    queue.get_nowait()
                except asyncio.QueueEmpty:
                    pass
            queue.put_nowait(message)
        return len(self._subscribers)


def format_sse(data: Any, event: str | None = None) -> str:
    payload = data if isinstance(data, str) else json.dumps(data, default=str)
    lines = []
    if event:
        lines.append(f"event: {event}")
    for line in payload.splitlines() or [""]:
        lines.append(f"data: {line}")
    return "\n".join(lines) + "\n\n"
