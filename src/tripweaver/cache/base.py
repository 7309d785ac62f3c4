"""Generation cache: provider payloads keyed by role, normalized params and tier."""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from tripweaver.cache.keys import generation_cache_key
from tripweaver.models import ItineraryParams, ProviderRole, Tier

logger = logging.getLogger(__name__)


class CachedPayload(BaseModel):
    """Envelope stored for one successful provider result."""

    role: ProviderRole
    provider: str
    payload: dict[str, Any]
    stored_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class CacheHit:
    """A payload served from the cache and what the lookup cost."""

    entry: CachedPayload
    lookup_ms: float


class GenerationCache(ABC):
    """
    Cache of creative and validator payloads.

    Callers work in generation terms (role, request parameters, tier);
    keys and the stored envelope stay inside the cache. A backend that
    cannot answer is logged and behaves like a miss, so generation never
    depends on the cache being up.
    """

    def __init__(self, ttl_seconds: int = 3600) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self._ttl = ttl_seconds

    @property
    @abstractmethod
    def name(self) -> str:
        """Backend name ('memory' or 'redis')."""
        ...

    @abstractmethod
    async def _read(self, key: str) -> str | None:
        """Raw envelope stored under ``key``, or None."""
        ...

    @abstractmethod
    async def _write(self, key: str, data: str, ttl_seconds: int) -> None:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...

    async def health_check(self) -> dict[str, Any]:
        return {"backend": self.name, "connected": True}

    async def lookup(
        self,
        role: ProviderRole,
        params: ItineraryParams,
        tier: Tier,
    ) -> CacheHit | None:
        """
        Find the cached payload for a role call.

        Returns:
            CacheHit with the envelope and lookup latency, or None on a
            miss, a backend error or an unreadable entry
        """
        key = generation_cache_key(role, params, tier)
        started = time.perf_counter()
        try:
            raw = await self._read(key)
        except Exception as e:
            logger.warning(f"Cache read failed for {key}, treating as miss: {e}")
            return None
        lookup_ms = (time.perf_counter() - started) * 1000

        if raw is None:
            return None
        try:
            entry = CachedPayload.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(f"Ignoring unreadable cache entry {key}: {e}")
            return None
        return CacheHit(entry=entry, lookup_ms=lookup_ms)

    async def store(
        self,
        role: ProviderRole,
        params: ItineraryParams,
        tier: Tier,
        provider: str,
        payload: dict[str, Any],
    ) -> bool:
        """Cache a successful payload. Returns False if the backend refused it."""
        key = generation_cache_key(role, params, tier)
        entry = CachedPayload(role=role, provider=provider, payload=payload)
        try:
            await self._write(key, entry.model_dump_json(), self._ttl)
        except Exception as e:
            logger.warning(f"Cache write failed for {key}: {e}")
            return False
        return True
