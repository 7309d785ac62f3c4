"""
Generation cache.

Lets identical itinerary requests reuse creative and validator payloads
without a provider call, in process or shared through Redis.
"""

from tripweaver.cache.base import CachedPayload, CacheHit, GenerationCache
from tripweaver.cache.factory import create_generation_cache, open_generation_cache
from tripweaver.cache.keys import generation_cache_key, normalize_params
from tripweaver.cache.memory import InMemoryGenerationCache
from tripweaver.cache.redis import RedisGenerationCache

__all__ = [
    "CachedPayload",
    "CacheHit",
    "GenerationCache",
    "InMemoryGenerationCache",
    "RedisGenerationCache",
    "create_generation_cache",
    "open_generation_cache",
    "generation_cache_key",
    "normalize_params",
]
