"""
Caller identity and tier resolution.

Identity and subscription management live outside this service;
these are the narrow contracts it consumes, with defaults suitable
for running behind a trusted gateway.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from fastapi import Request

from tripweaver.models import Tier

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CallerIdentity:
    """An authenticated caller."""

    user_id: str
    source: str = "header"


class IdentityResolver(ABC):
    """Resolves the caller of an HTTP request."""

    @abstractmethod
    async def resolve(self, request: Request) -> CallerIdentity | None:
        """
        Identify the caller.

        Returns:
            CallerIdentity, or None for an unauthenticated request
        """
        ...


class HeaderIdentityResolver(IdentityResolver):
    """
    Trusts a user id header set by an upstream gateway.

    Only safe when the service is not reachable directly, or when
    ``ApiKeyMiddleware`` restricts access to the gateway.
    """

    def __init__(self, header: str = "X-User-Id", max_length: int = 128) -> None:
        self._header = header
        self._max_length = max_length

    async def resolve(self, request: Request) -> CallerIdentity | None:
        user_id = (request.headers.get(self._header) or "").strip()
        if not user_id:
            return None
        if len(user_id) > self._max_length:
            logger.warning(f"Rejected oversized {self._header} header ({len(user_id)} chars)")
            return None
        return CallerIdentity(user_id=user_id)


class TierResolver(ABC):
    """Resolves a user's subscription tier."""

    @abstractmethod
    async def resolve_tier(self, user_id: str) -> Tier:
        ...


class StaticTierResolver(TierResolver):
    """Tier lookup from a fixed mapping; unknown users are free."""

    def __init__(self, tiers: dict[str, Any] | None = None, default: Tier = Tier.FREE) -> None:
        self._tiers: dict[str, Tier] = {}
        self._default = default
        for user_id, tier in (tiers or {}).items():
            try:
                self._tiers[user_id] = Tier(str(tier).lower())
            except ValueError:
                logger.warning(f"Ignoring unknown tier {tier!r} for user {user_id}")

    async def resolve_tier(self, user_id: str) -> Tier:
        return self._tiers.get(user_id, self._default)

    def set_tier(self, user_id: str, tier: Tier) -> None:
        self._tiers[user_id] = tier
