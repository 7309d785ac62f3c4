"""Process-local generation cache."""

import asyncio
import time
from collections import OrderedDict
from typing import Any, Callable

from tripweaver.cache.base import GenerationCache


class InMemoryGenerationCache(GenerationCache):
    """
    Generation cache held in a bounded dict.

    Entries expire lazily on read; once ``max_entries`` is reached the
    least recently written entry is dropped.
    """

    def __init__(
        self,
        ttl_seconds: int = 3600,
        max_entries: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(ttl_seconds)
        self._max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, tuple[float, str]] = OrderedDict()
        self._lock = asyncio.Lock()

    @property
    def name(self) -> str:
        return "memory"

    def __len__(self) -> int:
        return len(self._entries)

    async def _read(self, key: str) -> str | None:
        async with self._lock:
            item = self._entries.get(key)
            if item is None:
                return None
            expires_at, data = item
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return data

    async def _write(self, key: str, data: str, ttl_seconds: int) -> None:
        async with self._lock:
            self._entries.pop(key, None)
            self._entries[key] = (self._clock() + ttl_seconds, data)
            while len(self._entries) > self._max_entries:
                self._entries.popitem(last=False)

    async def close(self) -> None:
        self._entries.clear()

    async def health_check(self) -> dict[str, Any]:
        return {
            "backend": self.name,
            "connected": True,
            "entries": len(self._entries),
            "max_entries": self._max_entries,
        }
