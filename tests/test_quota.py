"""Tests for usage periods, usage stores and the quota gate."""

import asyncio
from datetime import datetime, timezone
from typing import Any

import pytest
from sqlalchemy import func, select

from tripweaver.db.manager import DatabaseManager
from tripweaver.db.models import UsageCounter
from tripweaver.errors import QuotaStoreError
from tripweaver.identity import StaticTierResolver
from tripweaver.models import PeriodType, Tier, UsageType
from tripweaver.quota import (
    InMemoryUsageStore,
    IncrementOutcome,
    QuotaGate,
    RedisUsageStore,
    SqlUsageStore,
    UsageKey,
    UsageStore,
    current_window,
)

FIXED_NOW = datetime(2026, 3, 18, 15, 30, tzinfo=timezone.utc)


def fixed_clock() -> datetime:
    return FIXED_NOW


def monthly_key(user_id: str = "user-1") -> UsageKey:
    window = current_window(PeriodType.MONTHLY, FIXED_NOW)
    return UsageKey.for_window(user_id, UsageType.ITINERARIES_CREATED, window)


class FailingStore(UsageStore):
    """Store whose every operation fails."""

    @property
    def name(self) -> str:
        return "failing"

    async def increment_if_within(self, key, amount, limit, expires_at) -> IncrementOutcome:
        raise QuotaStoreError("connection refused")

    async def get(self, key) -> int:
        raise QuotaStoreError("connection refused")


class SlowStore(InMemoryUsageStore):
    """Store that answers after a delay."""

    def __init__(self, delay: float) -> None:
        super().__init__()
        self.delay = delay

    async def increment_if_within(self, key, amount, limit, expires_at) -> IncrementOutcome:
        await asyncio.sleep(self.delay)
        return await super().increment_if_within(key, amount, limit, expires_at)


class FakeRedis:
    """Minimal redis.asyncio stand-in executing the increment script in Python."""

    def __init__(self, fail: bool = False) -> None:
        self.values: dict[str, int] = {}
        self.expiry: dict[str, int] = {}
        self.fail = fail
        self.closed = False

    def register_script(self, script: str) -> Any:
        async def run(keys: list[str], args: list[Any]) -> list[int]:
            if self.fail:
                raise ConnectionError("redis down")
            key = keys[0]
            amount, limit, expire_at = (int(a) for a in args)
            current = self.values.get(key, 0)
            if current + amount > limit:
                return [0, current]
            self.values[key] = current + amount
            self.expiry[key] = expire_at
            return [1, self.values[key]]

        return run

    async def get(self, key: str) -> bytes | None:
        if self.fail:
            raise ConnectionError("redis down")
        value = self.values.get(key)
        return str(value).encode() if value is not None else None

    async def aclose(self) -> None:
        self.closed = True


class TestPeriods:
    """UTC accounting windows."""

    def test_monthly_window(self) -> None:
        window = current_window(PeriodType.MONTHLY, FIXED_NOW)

        assert window.start == datetime(2026, 3, 1, tzinfo=timezone.utc)
        assert window.end == datetime(2026, 4, 1, tzinfo=timezone.utc)
        assert window.key == "2026-03-01"
        assert window.contains(FIXED_NOW)

    def test_december_rolls_into_next_year(self) -> None:
        window = current_window(PeriodType.MONTHLY, datetime(2026, 12, 31, 23, 59, tzinfo=timezone.utc))

        assert window.end == datetime(2027, 1, 1, tzinfo=timezone.utc)

    def test_weekly_window_starts_monday(self) -> None:
        # 2026-03-18 is a Wednesday
        window = current_window(PeriodType.WEEKLY, FIXED_NOW)

        assert window.start == datetime(2026, 3, 16, tzinfo=timezone.utc)
        assert window.end == datetime(2026, 3, 23, tzinfo=timezone.utc)

    def test_daily_window(self) -> None:
        window = current_window(PeriodType.DAILY, FIXED_NOW)

        assert window.start == datetime(2026, 3, 18, tzinfo=timezone.utc)
        assert not window.contains(window.end)

    def test_naive_times_are_utc(self) -> None:
        naive = datetime(2026, 3, 31, 23, 0)
        assert current_window(PeriodType.MONTHLY, naive).key == "2026-03-01"

    def test_usage_types_have_periods(self) -> None:
        assert UsageType.ITINERARIES_CREATED.period_type == PeriodType.MONTHLY
        assert UsageType.CHAT_MESSAGES.period_type == PeriodType.DAILY
        assert UsageType.STORIES_CREATED.period_type == PeriodType.WEEKLY


class TestInMemoryUsageStore:
    """Atomic increments on the process-local store."""

    @pytest.mark.asyncio
    async def test_increment_within_limit(self) -> None:
        store = InMemoryUsageStore()
        key = monthly_key()
        expires = current_window(PeriodType.MONTHLY, FIXED_NOW).end

        first = await store.increment_if_within(key, 1, 2, expires)
        second = await store.increment_if_within(key, 1, 2, expires)
        third = await store.increment_if_within(key, 1, 2, expires)

        assert (first.applied, first.count) == (True, 1)
        assert (second.applied, second.count) == (True, 2)
        assert (third.applied, third.count) == (False, 2)
        assert await store.get(key) == 2

    @pytest.mark.asyncio
    async def test_concurrent_callers_one_slot_left(self) -> None:
        """Ten concurrent callers competing for the last unit: exactly one wins."""
        store = InMemoryUsageStore()
        key = monthly_key()
        expires = current_window(PeriodType.MONTHLY, FIXED_NOW).end
        for _ in range(4):
            await store.increment_if_within(key, 1, 5, expires)

        outcomes = await asyncio.gather(
            *(store.increment_if_within(key, 1, 5, expires) for _ in range(10))
        )

        assert sum(o.applied for o in outcomes) == 1
        assert await store.get(key) == 5

    @pytest.mark.asyncio
    async def test_prune_drops_closed_windows(self) -> None:
        store = InMemoryUsageStore()
        key = monthly_key()
        expires = current_window(PeriodType.MONTHLY, FIXED_NOW).end
        await store.increment_if_within(key, 1, 5, expires)

        assert store.prune(now=FIXED_NOW) == 0
        assert store.prune(now=datetime(2026, 4, 2, tzinfo=timezone.utc)) == 1
        assert await store.get(key) == 0


class TestSqlUsageStore:
    """Conditional UPDATE on the usage_counters table."""

    @pytest.mark.asyncio
    async def test_increment_and_reject(self, db_manager: DatabaseManager) -> None:
        store = SqlUsageStore(db_manager)
        key = monthly_key()
        expires = current_window(PeriodType.MONTHLY, FIXED_NOW).end

        assert await store.get(key) == 0
        first = await store.increment_if_within(key, 2, 3, expires)
        second = await store.increment_if_within(key, 2, 3, expires)

        assert (first.applied, first.count) == (True, 2)
        assert (second.applied, second.count) == (False, 2)
        assert await store.get(key) == 2

    @pytest.mark.asyncio
    async def test_rejection_does_not_create_row(self, db_manager: DatabaseManager) -> None:
        store = SqlUsageStore(db_manager)
        key = monthly_key()
        expires = current_window(PeriodType.MONTHLY, FIXED_NOW).end

        outcome = await store.increment_if_within(key, 1, 0, expires)

        assert (outcome.applied, outcome.count) == (False, 0)
        with db_manager.get_session() as session:
            rows = session.execute(select(func.count()).select_from(UsageCounter)).scalar_one()
        assert rows == 0

    @pytest.mark.asyncio
    async def test_concurrent_callers_one_slot_left(self, db_manager: DatabaseManager) -> None:
        store = SqlUsageStore(db_manager)
        key = monthly_key()
        expires = current_window(PeriodType.MONTHLY, FIXED_NOW).end
        for _ in range(4):
            await store.increment_if_within(key, 1, 5, expires)

        outcomes = await asyncio.gather(
            *(store.increment_if_within(key, 1, 5, expires) for _ in range(10))
        )

        assert sum(o.applied for o in outcomes) == 1
        assert await store.get(key) == 5

    @pytest.mark.asyncio
    async def test_counters_are_per_user(self, db_manager: DatabaseManager) -> None:
        store = SqlUsageStore(db_manager)
        expires = current_window(PeriodType.MONTHLY, FIXED_NOW).end

        await store.increment_if_within(monthly_key("a"), 1, 1, expires)
        outcome = await store.increment_if_within(monthly_key("b"), 1, 1, expires)

        assert outcome.applied is True

    @pytest.mark.asyncio
    async def test_health_check(self, db_manager: DatabaseManager) -> None:
        health = await SqlUsageStore(db_manager).health_check()
        assert health == {"backend": "sql", "connected": True}


class TestRedisUsageStore:
    """Lua-script increments against a stand-in client."""

    @pytest.mark.asyncio
    async def test_increment_and_reject(self) -> None:
        client = FakeRedis()
        store = RedisUsageStore(prefix="test:", client=client, expiry_grace_seconds=60)
        key = monthly_key()
        window = current_window(PeriodType.MONTHLY, FIXED_NOW)

        first = await store.increment_if_within(key, 1, 1, window.end)
        second = await store.increment_if_within(key, 1, 1, window.end)

        redis_key = f"test:{key.as_string()}"
        assert first.applied is True
        assert second.applied is False
        assert client.values[redis_key] == 1
        assert client.expiry[redis_key] == int(window.end.timestamp()) + 60
        assert await store.get(key) == 1

    @pytest.mark.asyncio
    async def test_failures_raise_store_error(self) -> None:
        store = RedisUsageStore(client=FakeRedis(fail=True))

        with pytest.raises(QuotaStoreError):
            await store.increment_if_within(monthly_key(), 1, 3, FIXED_NOW)
        with pytest.raises(QuotaStoreError):
            await store.get(monthly_key())

    @pytest.mark.asyncio
    async def test_close(self) -> None:
        client = FakeRedis()
        store = RedisUsageStore(client=client)

        await store.close()

        assert client.closed is True


class TestQuotaGate:
    """Check-and-increment decisions."""

    @pytest.mark.asyncio
    async def test_free_tier_allows_three_itineraries(self) -> None:
        gate = QuotaGate(InMemoryUsageStore(), StaticTierResolver(), clock=fixed_clock)

        decisions = [
            await gate.check_and_increment("user-1", UsageType.ITINERARIES_CREATED)
            for _ in range(4)
        ]

        assert [d.allowed for d in decisions] == [True, True, True, False]
        refused = decisions[-1]
        assert refused.reason == "limit_reached"
        assert refused.tier == Tier.FREE
        assert refused.usage.current_usage == 3
        assert refused.usage.limit == 3
        assert refused.usage.remaining == 0
        assert refused.usage.period_resets_at == datetime(2026, 4, 1, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_concurrent_requests_at_limit(self) -> None:
        """Free user at 2/3 with ten concurrent requests: exactly one proceeds."""
        gate = QuotaGate(InMemoryUsageStore(), StaticTierResolver(), clock=fixed_clock)
        for _ in range(2):
            await gate.check_and_increment("user-1", UsageType.ITINERARIES_CREATED)

        decisions = await asyncio.gather(
            *(gate.check_and_increment("user-1", UsageType.ITINERARIES_CREATED) for _ in range(10))
        )

        assert sum(d.allowed for d in decisions) == 1
        status = await gate.status("user-1", UsageType.ITINERARIES_CREATED)
        assert status.usage.current_usage == 3

    @pytest.mark.asyncio
    async def test_paid_tier_limits(self) -> None:
        resolver = StaticTierResolver({"pro-user": "pro"})
        gate = QuotaGate(InMemoryUsageStore(), resolver, clock=fixed_clock)

        decision = await gate.check_and_increment("pro-user", UsageType.ITINERARIES_CREATED)

        assert decision.allowed is True
        assert decision.tier == Tier.PRO
        assert decision.usage.limit == 999

    @pytest.mark.asyncio
    async def test_zero_limit_refuses(self) -> None:
        gate = QuotaGate(InMemoryUsageStore(), StaticTierResolver(), clock=fixed_clock)

        decision = await gate.check_and_increment("user-1", UsageType.AI_IMAGES_GENERATED)

        assert decision.allowed is False
        assert decision.reason == "limit_reached"

    @pytest.mark.asyncio
    async def test_store_failure_fails_closed(self) -> None:
        gate = QuotaGate(FailingStore(), StaticTierResolver(), clock=fixed_clock)

        decision = await gate.check_and_increment("user-1", UsageType.ITINERARIES_CREATED)

        assert decision.allowed is False
        assert decision.reason == "store_unavailable"
        assert decision.usage.current_usage == decision.usage.limit == 3

    @pytest.mark.asyncio
    async def test_store_timeout_fails_closed(self) -> None:
        gate = QuotaGate(SlowStore(delay=1.0), StaticTierResolver(), timeout_seconds=0.05)

        decision = await gate.check_and_increment("user-1", UsageType.ITINERARIES_CREATED)

        assert decision.allowed is False
        assert decision.reason == "store_unavailable"

    @pytest.mark.asyncio
    async def test_tier_resolution_failure_fails_closed(self) -> None:
        class BrokenResolver:
            async def resolve_tier(self, user_id: str) -> Tier:
                raise RuntimeError("subscription service down")

        gate = QuotaGate(InMemoryUsageStore(), BrokenResolver())

        decision = await gate.check_and_increment("user-1", UsageType.ITINERARIES_CREATED)

        assert decision.allowed is False
        assert decision.tier is None
        assert decision.reason == "tier_unavailable"

        status = await gate.status("user-1", UsageType.ITINERARIES_CREATED)
        assert status.allowed is False
        assert status.reason == "tier_unavailable"

    @pytest.mark.asyncio
    async def test_invalid_amount(self) -> None:
        gate = QuotaGate(InMemoryUsageStore(), StaticTierResolver())

        with pytest.raises(ValueError):
            await gate.check_and_increment("user-1", UsageType.ITINERARIES_CREATED, amount=0)

    @pytest.mark.asyncio
    async def test_status_never_charges(self) -> None:
        gate = QuotaGate(InMemoryUsageStore(), StaticTierResolver(), clock=fixed_clock)

        for _ in range(3):
            status = await gate.status("user-1", UsageType.ITINERARIES_CREATED)

        assert status.allowed is True
        assert status.usage.current_usage == 0
        assert status.to_dict()["usage"]["period_type"] == "monthly"

    @pytest.mark.asyncio
    async def test_status_with_failing_store(self) -> None:
        gate = QuotaGate(FailingStore(), StaticTierResolver())

        status = await gate.status("user-1", UsageType.ITINERARIES_CREATED)

        assert status.allowed is False
        assert status.reason == "store_unavailable"
