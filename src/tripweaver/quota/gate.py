"""
Atomic usage quota gate.

Checks and charges per-user, per-period usage in a single store
operation before any expensive work is allowed to start. The gate
fails closed: if the store cannot answer in time, the request is
refused.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

from tripweaver.models import PeriodType, Tier, UsageType
from tripweaver.quota.periods import PeriodWindow, current_window
from tripweaver.quota.store import UsageKey, UsageStore

logger = logging.getLogger(__name__)


DEFAULT_TIER_LIMITS: dict[Tier, dict[UsageType, int]] = {
    Tier.FREE: {
        UsageType.ITINERARIES_CREATED: 3,
        UsageType.CHAT_MESSAGES: 10,
        UsageType.STORIES_CREATED: 1,
        UsageType.AI_IMAGES_GENERATED: 0,
        UsageType.SPOTS_SAVED: 10,
    },
    Tier.PRO: {
        UsageType.ITINERARIES_CREATED: 999,
        UsageType.CHAT_MESSAGES: 100,
        UsageType.STORIES_CREATED: 999,
        UsageType.AI_IMAGES_GENERATED: 50,
        UsageType.SPOTS_SAVED: 100,
    },
    Tier.PREMIUM: {
        UsageType.ITINERARIES_CREATED: 999,
        UsageType.CHAT_MESSAGES: 999,
        UsageType.STORIES_CREATED: 999,
        UsageType.AI_IMAGES_GENERATED: 200,
        UsageType.SPOTS_SAVED: 999,
    },
}


@dataclass
class UsageSnapshot:
    """Caller-visible usage for one counter."""

    current_usage: int
    limit: int
    period_type: PeriodType
    period_resets_at: datetime

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.current_usage)

    def to_dict(self) -> dict[str, Any]:
        return {
            "current_usage": self.current_usage,
            "limit": self.limit,
            "remaining": self.remaining,
            "period_type": self.period_type.value,
            "period_resets_at": self.period_resets_at.isoformat(),
        }


@dataclass
class QuotaDecision:
    """Outcome of a quota check."""

    allowed: bool
    """Whether the usage was charged and the work may proceed."""

    usage: UsageSnapshot
    """Counter state after the decision."""

    tier: Tier | None = None
    """Tier the limit was taken from (None if it could not be resolved)."""

    reason: str | None = None
    """Why the request was refused: 'limit_reached', 'store_unavailable' or 'tier_unavailable'."""

    def to_dict(self) -> dict[str, Any]:
        return {
            "allowed": self.allowed,
            "usage": self.usage.to_dict(),
            "tier": self.tier.value if self.tier else None,
            "reason": self.reason,
        }


class QuotaGate:
    """
    Per-user consumption limiter.

    Distinct from the burst rate limiter: this is the billing-relevant
    control. The only mutation path is the store's atomic
    increment; rejected checks never change a counter.
    """

    def __init__(
        self,
        store: UsageStore,
        tier_resolver: Any,
        limits: dict[Tier, dict[UsageType, int]] | None = None,
        timeout_seconds: float = 5.0,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """
        Initialize the quota gate.

        Args:
            store: Usage counter store
            tier_resolver: Object with ``async resolve_tier(user_id) -> Tier``
            limits: Per-tier limits (defaults to DEFAULT_TIER_LIMITS)
            timeout_seconds: Deadline for each store operation
            clock: Source of the current UTC time (tests)
        """
        self._store = store
        self._tier_resolver = tier_resolver
        self._limits = limits or DEFAULT_TIER_LIMITS
        self._timeout = timeout_seconds
        self._clock = clock

    @property
    def store(self) -> UsageStore:
        return self._store

    def limit_for(self, tier: Tier, usage_type: UsageType) -> int:
        return self._limits.get(tier, {}).get(usage_type, 0)

    def _window(self, usage_type: UsageType) -> PeriodWindow:
        now = self._clock() if self._clock else None
        return current_window(usage_type.period_type, now)

    def _closed(
        self,
        window: PeriodWindow,
        limit: int,
        tier: Tier | None,
        reason: str = "store_unavailable",
    ) -> QuotaDecision:
        return QuotaDecision(
            allowed=False,
            usage=UsageSnapshot(
                current_usage=limit,
                limit=limit,
                period_type=window.period_type,
                period_resets_at=window.end,
            ),
            tier=tier,
            reason=reason,
        )

    async def check_and_increment(
        self,
        user_id: str,
        usage_type: UsageType,
        amount: int = 1,
        timeout: float | None = None,
    ) -> QuotaDecision:
        """
        Charge ``amount`` units of usage if the user is within limit.

        Args:
            user_id: Caller identity
            usage_type: Metered action
            amount: Units to charge
            timeout: Store deadline override in seconds

        Returns:
            QuotaDecision; ``allowed`` is False when the limit would be
            exceeded or the store is unreachable
        """
        if amount < 1:
            raise ValueError("amount must be at least 1")

        window = self._window(usage_type)
        timeout = timeout if timeout is not None else self._timeout

        try:
            tier = await asyncio.wait_for(
                self._tier_resolver.resolve_tier(user_id), timeout
            )
        except Exception as e:
            logger.error(f"Tier resolution failed for {user_id}, refusing usage: {e}")
            return self._closed(window, 0, None, "tier_unavailable")

        limit = self.limit_for(tier, usage_type)
        key = UsageKey.for_window(user_id, usage_type, window)

        try:
            outcome = await asyncio.wait_for(
                self._store.increment_if_within(key, amount, limit, window.end),
                timeout,
            )
        except asyncio.TimeoutError:
            logger.error(
                f"Usage store timed out after {timeout}s for {key.as_string()}, refusing usage"
            )
            return self._closed(window, limit, tier)
        except Exception as e:
            logger.error(f"Usage store failed for {key.as_string()}, refusing usage: {e}")
            return self._closed(window, limit, tier)

        usage = UsageSnapshot(
            current_usage=outcome.count,
            limit=limit,
            period_type=window.period_type,
            period_resets_at=window.end,
        )

        if not outcome.applied:
            logger.info(
                f"Usage limit reached for {user_id}: {usage_type.value} "
                f"{outcome.count}/{limit} ({tier.value})"
            )
            return QuotaDecision(allowed=False, usage=usage, tier=tier, reason="limit_reached")

        logger.debug(f"Usage charged for {user_id}: {usage_type.value} {outcome.count}/{limit}")
        return QuotaDecision(allowed=True, usage=usage, tier=tier)

    async def status(self, user_id: str, usage_type: UsageType) -> QuotaDecision:
        """
        Read-only check of a user's current usage.

        ``allowed`` reports whether one more unit would be accepted.
        """
        window = self._window(usage_type)

        try:
            tier = await asyncio.wait_for(
                self._tier_resolver.resolve_tier(user_id), self._timeout
            )
        except Exception as e:
            logger.error(f"Tier resolution failed for {user_id}: {e}")
            return self._closed(window, 0, None, "tier_unavailable")

        limit = self.limit_for(tier, usage_type)
        key = UsageKey.for_window(user_id, usage_type, window)
        try:
            current = await asyncio.wait_for(self._store.get(key), self._timeout)
        except Exception as e:
            logger.error(f"Usage status unavailable for {user_id}: {e}")
            return self._closed(window, limit, tier)

        usage = UsageSnapshot(
            current_usage=current,
            limit=limit,
            period_type=window.period_type,
            period_resets_at=window.end,
        )
        allowed = current < limit
        return QuotaDecision(
            allowed=allowed,
            usage=usage,
            tier=tier,
            reason=None if allowed else "limit_reached",
        )
