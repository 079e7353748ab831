"""In-memory TTL cache for upstream market responses."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable


@dataclass(slots=True)
class _Entry:
    value: Any
    expires_at: float


class TTLCache:
    """Single-policy cache: entries expire ``ttl_sec`` after they are written."""

    def __init__(self, ttl_sec: float = 60.0, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_sec = max(float(ttl_sec), 0.0)
        self._clock = clock
        self._entries: dict[str, _Entry] = {}

    def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() >= entry.expires_at:
            self._entries.pop(key, None)
            return None
        return entry.value

    def set(self, key: str, value: Any, ttl_sec: float | None = None) -> None:
        ttl = self.ttl_sec if ttl_sec is None else max(float(ttl_sec), 0.0)
        self._entries[key] = _Entry(value=value, expires_at=self._clock() + ttl)

    async def get_or_set(self, key: str, factory: Callable[[], Awaitable[Any]], ttl_sec: float | None = None) -> Any:
        cached = self.get(key)
        if cached is not None:
            return cached
        value = await factory()
        self.set(key, value, ttl_sec)
        return value

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
