"""
Usage counter stores.

Every store exposes a single mutation primitive, an atomic
increment that is applied only while the counter stays within
its limit. Nothing else writes to a counter.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError

from tripweaver.db.models import UsageCounter
from tripweaver.errors import QuotaStoreError
from tripweaver.models import PeriodType, UsageType
from tripweaver.quota.periods import PeriodWindow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UsageKey:
    """Identity of one usage counter."""

    user_id: str
    usage_type: UsageType
    period_type: PeriodType
    period_start: str

    @classmethod
    def for_window(cls, user_id: str, usage_type: UsageType, window: PeriodWindow) -> UsageKey:
        return cls(
            user_id=user_id,
            usage_type=usage_type,
            period_type=window.period_type,
            period_start=window.key,
        )

    def as_string(self) -> str:
        return (
            f"usage:{self.user_id}:{self.usage_type.value}:"
            f"{self.period_type.value}:{self.period_start}"
        )


@dataclass
class IncrementOutcome:
    """Result of an atomic check-and-increment."""

    applied: bool
    """Whether the increment was applied."""

    count: int
    """Counter value after the operation."""


class UsageStore(ABC):
    """Abstract base class for usage counter stores."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Store identifier (e.g., 'memory', 'redis', 'sql')."""
        ...

    @abstractmethod
    async def increment_if_within(
        self,
        key: UsageKey,
        amount: int,
        limit: int,
        expires_at: datetime,
    ) -> IncrementOutcome:
        """
        Atomically add ``amount`` if the result stays within ``limit``.

        Args:
            key: Counter identity
            amount: Units to add (>= 1)
            limit: Maximum counter value for the key's tier
            expires_at: When the counter's window closes

        Returns:
            IncrementOutcome; a rejected call leaves the counter unchanged

        Raises:
            QuotaStoreError: If the store is unreachable
        """
        ...

    @abstractmethod
    async def get(self, key: UsageKey) -> int:
        """
        Read the current counter value (0 if never used).

        Raises:
            QuotaStoreError: If the store is unreachable
        """
        ...

    async def close(self) -> None:
        """Release store resources."""
        return None

    async def health_check(self) -> dict[str, Any]:
        return {"backend": self.name}


class InMemoryUsageStore(UsageStore):
    """
    Process-local usage store.

    Serializes each key behind its own asyncio lock. Suitable for
    tests and single-instance deployments.
    """

    def __init__(self) -> None:
        self._counts: dict[UsageKey, int] = {}
        self._expires: dict[UsageKey, datetime] = {}
        self._locks: dict[UsageKey, asyncio.Lock] = {}

    @property
    def name(self) -> str:
        return "memory"

    def _lock_for(self, key: UsageKey) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    async def increment_if_within(
        self,
        key: UsageKey,
        amount: int,
        limit: int,
        expires_at: datetime,
    ) -> IncrementOutcome:
        async with self._lock_for(key):
            current = self._counts.get(key, 0)
            if current + amount > limit:
                return IncrementOutcome(applied=False, count=current)
            self._counts[key] = current + amount
            self._expires[key] = expires_at
            return IncrementOutcome(applied=True, count=current + amount)

    async def get(self, key: UsageKey) -> int:
        return self._counts.get(key, 0)

    def prune(self, now: datetime | None = None) -> int:
        """Drop counters whose window has closed."""
        now = now or datetime.now(timezone.utc)
        expired = [k for k, exp in self._expires.items() if exp <= now]
        for key in expired:
            self._counts.pop(key, None)
            self._expires.pop(key, None)
            self._locks.pop(key, None)
        return len(expired)


# KEYS[1] counter key; ARGV: amount, limit, expire-at epoch seconds
_INCREMENT_SCRIPT = """
local current = tonumber(redis.call('GET', KEYS[1]) or '0')
local amount = tonumber(ARGV[1])
local limit = tonumber(ARGV[2])
if current + amount > limit then
    return {0, current}
end
local updated = redis.call('INCRBY', KEYS[1], amount)
redis.call('EXPIREAT', KEYS[1], tonumber(ARGV[3]))
return {1, updated}
"""


class RedisUsageStore(UsageStore):
    """
    Redis usage store for multi-instance deployments.

    The compare and the increment run inside one Lua script, so
    concurrent callers on any instance are linearized per key.
    Counters expire a grace period after their window closes.
    """

    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        prefix: str = "tripweaver:",
        client: Any = None,
        expiry_grace_seconds: int = 86400,
        socket_timeout: float = 5.0,
    ) -> None:
        """
        Initialize Redis usage store.

        Args:
            url: Redis connection URL
            prefix: Key prefix for namespacing
            client: Pre-built redis.asyncio client (tests, shared pools)
            expiry_grace_seconds: How long a counter outlives its window
            socket_timeout: Socket timeout in seconds
        """
        self._url = url
        self._prefix = prefix
        self._client = client
        self._grace = expiry_grace_seconds
        self._socket_timeout = socket_timeout
        self._script: Any = None

    @property
    def name(self) -> str:
        return "redis"

    def _get_key(self, key: UsageKey) -> str:
        return f"{self._prefix}{key.as_string()}"

    def _get_client(self) -> Any:
        if self._client is None:
            import redis.asyncio as redis

            self._client = redis.from_url(
                self._url,
                socket_timeout=self._socket_timeout,
                socket_connect_timeout=self._socket_timeout,
            )
        if self._script is None:
            self._script = self._client.register_script(_INCREMENT_SCRIPT)
        return self._client

    async def increment_if_within(
        self,
        key: UsageKey,
        amount: int,
        limit: int,
        expires_at: datetime,
    ) -> IncrementOutcome:
        self._get_client()
        expire_ts = int(expires_at.timestamp()) + self._grace
        try:
            applied, count = await self._script(
                keys=[self._get_key(key)],
                args=[amount, limit, expire_ts],
            )
        except Exception as e:
            raise QuotaStoreError(f"Redis usage increment failed: {e}") from e
        return IncrementOutcome(applied=bool(int(applied)), count=int(count))

    async def get(self, key: UsageKey) -> int:
        client = self._get_client()
        try:
            value = await client.get(self._get_key(key))
        except Exception as e:
            raise QuotaStoreError(f"Redis usage read failed: {e}") from e
        return int(value) if value is not None else 0

    async def close(self) -> None:
        if self._client is not None:
            try:
                await self._client.aclose()
            except Exception as e:
                logger.error(f"Error closing Redis usage store: {e}")
            finally:
                self._client = None
                self._script = None


class SqlUsageStore(UsageStore):
    """
    SQL usage store backed by the ``usage_counters`` table.

    The row is created on first use; the increment is a single
    conditional UPDATE whose row count decides the outcome, so the
    database serializes concurrent callers.
    """

    def __init__(self, db_manager: Any) -> None:
        """
        Initialize SQL usage store.

        Args:
            db_manager: DatabaseManager providing sessions
        """
        self._db_manager = db_manager

    @property
    def name(self) -> str:
        return "sql"

    async def increment_if_within(
        self,
        key: UsageKey,
        amount: int,
        limit: int,
        expires_at: datetime,
    ) -> IncrementOutcome:
        try:
            return await asyncio.to_thread(
                self._increment_sync, key, amount, limit, expires_at
            )
        except SQLAlchemyError as e:
            raise QuotaStoreError(f"SQL usage increment failed: {e}") from e

    async def get(self, key: UsageKey) -> int:
        try:
            return await asyncio.to_thread(self._get_sync, key)
        except SQLAlchemyError as e:
            raise QuotaStoreError(f"SQL usage read failed: {e}") from e

    def _key_filter(self, key: UsageKey) -> tuple[Any, ...]:
        return (
            UsageCounter.user_id == key.user_id,
            UsageCounter.usage_type == key.usage_type.value,
            UsageCounter.period_type == key.period_type.value,
            UsageCounter.period_start == key.period_start,
        )

    def _increment_sync(
        self,
        key: UsageKey,
        amount: int,
        limit: int,
        expires_at: datetime,
    ) -> IncrementOutcome:
        with self._db_manager.get_session() as session:
            if amount > limit:
                # Can never fit; a rejection must not create the row
                count = session.execute(
                    select(UsageCounter.count).where(*self._key_filter(key))
                ).scalar_one_or_none()
                return IncrementOutcome(applied=False, count=count or 0)

            # A fresh row is always followed by an applied increment
            self._ensure_row(session, key, limit, expires_at)

            result = session.execute(
                update(UsageCounter)
                .where(*self._key_filter(key))
                .where(UsageCounter.count + amount <= limit)
                .values(
                    count=UsageCounter.count + amount,
                    usage_limit=limit,
                    updated_at=datetime.utcnow(),
                )
            )
            applied = result.rowcount == 1

            count = session.execute(
                select(UsageCounter.count).where(*self._key_filter(key))
            ).scalar_one()

        return IncrementOutcome(applied=applied, count=count)

    def _ensure_row(self, session: Any, key: UsageKey, limit: int, expires_at: datetime) -> None:
        """Create the counter row if it does not exist yet."""
        values = {
            "user_id": key.user_id,
            "usage_type": key.usage_type.value,
            "period_type": key.period_type.value,
            "period_start": key.period_start,
            "period_end": expires_at.replace(tzinfo=None),
            "count": 0,
            "usage_limit": limit,
        }
        conflict_columns = ["user_id", "usage_type", "period_type", "period_start"]
        dialect = session.get_bind().dialect.name

        if dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert

            session.execute(
                insert(UsageCounter).values(**values).on_conflict_do_nothing(
                    index_elements=conflict_columns
                )
            )
        elif dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert

            session.execute(
                insert(UsageCounter).values(**values).on_conflict_do_nothing(
                    index_elements=conflict_columns
                )
            )
        else:
            # A concurrent insert surfaces as IntegrityError and fails closed upstream
            exists = session.execute(
                select(UsageCounter.id).where(*self._key_filter(key))
            ).first()
            if exists is None:
                session.add(UsageCounter(**values))
                session.flush()

    def _get_sync(self, key: UsageKey) -> int:
        with self._db_manager.get_session() as session:
            count = session.execute(
                select(UsageCounter.count).where(*self._key_filter(key))
            ).scalar_one_or_none()
        return count or 0

    async def health_check(self) -> dict[str, Any]:
        healthy = await asyncio.to_thread(self._db_manager.health_check)
        return {"backend": self.name, "connected": healthy}
