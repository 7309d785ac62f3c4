"""Generation cache selection from settings."""

import logging

from tripweaver.cache.base import GenerationCache
from tripweaver.cache.memory import InMemoryGenerationCache
from tripweaver.cache.redis import RedisGenerationCache
from tripweaver.config import Settings

logger = logging.getLogger(__name__)


def create_generation_cache(settings: Settings) -> GenerationCache:
    """
    Build the cache named by ``settings.cache_backend``.

    Raises:
        ValueError: If the backend is unknown
    """
    backend = settings.cache_backend
    if backend == "memory":
        return InMemoryGenerationCache(
            ttl_seconds=settings.redis_ttl_seconds,
            max_entries=settings.cache_max_entries,
        )
    if backend == "redis":
        if not settings.redis_url:
            logger.warning(
                "Redis URL not configured, using in-memory generation cache. "
                "Set REDIS_URL to share cached results across instances."
            )
            return InMemoryGenerationCache(
                ttl_seconds=settings.redis_ttl_seconds,
                max_entries=settings.cache_max_entries,
            )
        return RedisGenerationCache(
            url=settings.redis_url,
            ttl_seconds=settings.redis_ttl_seconds,
            prefix=settings.redis_prefix,
        )
    raise ValueError(f"Unknown cache backend: {backend}")


async def open_generation_cache(settings: Settings) -> GenerationCache:
    """Build the cache and fall back to memory if Redis does not answer."""
    cache = create_generation_cache(settings)
    if isinstance(cache, RedisGenerationCache) and not await cache.connect():
        logger.warning("Redis unreachable, falling back to in-memory generation cache")
        await cache.close()
        cache = InMemoryGenerationCache(
            ttl_seconds=settings.redis_ttl_seconds,
            max_entries=settings.cache_max_entries,
        )
    return cache
