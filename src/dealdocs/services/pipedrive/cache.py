"""Small explicit TTL cache for CRM metadata.

Instances are created per sync run and handed to whoever needs them, so
cached CRM metadata (deal field definitions) never outlives the run that
loaded it by more than ``ttl_seconds``.
"""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable
from typing import Any


class TTLCache:
    """Key/value cache whose entries expire ``ttl_seconds`` after being set.

    Args:
        ttl_seconds: Entry lifetime. Zero or negative disables caching.
        clock: Monotonic clock returning seconds (injectable for tests).
    """

    def __init__(
        self,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[float, Any]] = {}

    def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    def set(self, key: str, value: Any) -> None:
        if self._ttl <= 0:
            return
        self._entries[key] = (self._clock() + self._ttl, value)

    async def get_or_load(self, key: str, loader: Callable[[], Awaitable[Any]]) -> Any:
        """Return the cached value for ``key`` or await ``loader`` and cache its result."""
        cached = self.get(key)
        if cached is not None:
            return cached
        value = await loader()
        self.set(key, value)
        return value

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
