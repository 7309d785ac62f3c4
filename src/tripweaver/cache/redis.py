"""Redis-backed generation cache shared by all API instances."""

import logging
from typing import Any

from tripweaver.cache.base import GenerationCache

logger = logging.getLogger(__name__)


class RedisGenerationCache(GenerationCache):
    """
    Generation cache on ``redis.asyncio``.

    Envelopes are stored as JSON strings under ``<prefix>gen:...`` with
    the cache TTL as the key expiry.
    """

    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        ttl_seconds: int = 3600,
        prefix: str = "tripweaver:",
        client: Any = None,
        socket_timeout: float = 5.0,
    ) -> None:
        """
        Initialize Redis generation cache.

        Args:
            url: Redis connection URL
            ttl_seconds: Expiry of each cached payload
            prefix: Key prefix for namespacing
            client: Pre-built redis.asyncio client (tests, shared pools)
            socket_timeout: Socket timeout in seconds
        """
        super().__init__(ttl_seconds)
        self._url = url
        self._prefix = prefix
        self._client = client
        self._socket_timeout = socket_timeout

    @property
    def name(self) -> str:
        return "redis"

    def _get_client(self) -> Any:
        if self._client is None:
            import redis.asyncio as redis

            self._client = redis.from_url(
                self._url,
                socket_timeout=self._socket_timeout,
                socket_connect_timeout=self._socket_timeout,
            )
        return self._client

    async def connect(self) -> bool:
        """Check the server answers. Returns False instead of raising."""
        try:
            await self._get_client().ping()
        except Exception as e:
            logger.error(f"Failed to connect to Redis at {self._url}: {e}")
            return False
        logger.info(f"Generation cache connected to Redis at {self._url}")
        return True

    async def _read(self, key: str) -> str | None:
        data = await self._get_client().get(f"{self._prefix}{key}")
        if isinstance(data, bytes):
            return data.decode("utf-8")
        return data

    async def _write(self, key: str, data: str, ttl_seconds: int) -> None:
        await self._get_client().set(f"{self._prefix}{key}", data, ex=ttl_seconds)

    async def close(self) -> None:
        if self._client is not None:
            try:
                await self._client.aclose()
            except Exception as e:
                logger.error(f"Error closing Redis generation cache: {e}")
            finally:
                self._client = None

    async def health_check(self) -> dict[str, Any]:
        try:
            await self._get_client().ping()
        except Exception as e:
            return {"backend": self.name, "connected": False, "error": str(e)}
        return {"backend": self.name, "connected": True}
