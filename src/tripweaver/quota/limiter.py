"""
Burst rate limiting.

Short-window request throttles, independent of tier and of the
usage quota gate:
- Fixed Window: counter reset at the end of each window
- Sliding Window: request timestamps counted over a moving window
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any
import asyncio
import logging
import math
import time

logger = logging.getLogger(__name__)


@dataclass
class RateLimitResult:
    """Result of a rate limit admission."""

    allowed: bool
    """Whether the request is admitted."""

    remaining: int
    """Remaining requests in the current window."""

    limit: int
    """Maximum requests allowed in the window."""

    reset_at: datetime
    """When the rate limit window resets."""

    retry_after: float | None = None
    """Seconds to wait before retrying (if rejected)."""

    def to_dict(self) -> dict[str, Any]:
        return {
            "allowed": self.allowed,
            "remaining": self.remaining,
            "limit": self.limit,
            "reset_at": self.reset_at.isoformat(),
            "retry_after": self.retry_after,
        }

    def headers(self) -> dict[str, str]:
        """Standard rate limit response headers."""
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": self.reset_at.isoformat(),
        }
        if self.retry_after is not None:
            headers["Retry-After"] = str(max(1, math.ceil(self.retry_after)))
        return headers


def _utc(timestamp: float) -> datetime:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


class RateLimiter(ABC):
    """Abstract base class for burst rate limiters."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Limiter algorithm name."""
        ...

    @abstractmethod
    async def admit(
        self,
        identity: str,
        window_ms: int,
        max_requests: int,
    ) -> RateLimitResult:
        """
        Admit or reject one request.

        Rejection is immediate and consumes nothing.

        Args:
            identity: Caller bucket (user id or client address plus path)
            window_ms: Window length in milliseconds
            max_requests: Requests allowed per window

        Returns:
            RateLimitResult
        """
        ...

    @abstractmethod
    async def reset(self, identity: str) -> bool:
        """
        Reset the limit for an identity.

        Returns:
            True if reset successful
        """
        ...


class FixedWindowLimiter(RateLimiter):
    """
    Fixed window rate limiter.

    The first request opens a window; up to ``max_requests`` are
    admitted until it ends. Expired windows are pruned lazily.
    """

    def __init__(self, prune_every: int = 1000) -> None:
        """
        Initialize fixed window limiter.

        Args:
            prune_every: Admissions between sweeps of expired windows
        """
        self._windows: dict[str, tuple[int, float]] = {}  # identity -> (count, reset_time)
        self._lock = asyncio.Lock()
        self._prune_every = prune_every
        self._admissions = 0

    @property
    def name(self) -> str:
        return "fixed_window"

    def _prune(self, now: float) -> None:
        expired = [k for k, (_, reset_time) in self._windows.items() if now > reset_time]
        for key in expired:
            del self._windows[key]
        if expired:
            logger.debug(f"Pruned {len(expired)} expired rate limit windows")

    async def admit(
        self,
        identity: str,
        window_ms: int,
        max_requests: int,
    ) -> RateLimitResult:
        async with self._lock:
            now = time.time()
            self._admissions += 1
            if self._admissions % self._prune_every == 0:
                self._prune(now)

            record = self._windows.get(identity)
            if record is None or now > record[1]:
                reset_time = now + window_ms / 1000
                if max_requests < 1:
                    return RateLimitResult(
                        allowed=False,
                        remaining=0,
                        limit=max_requests,
                        reset_at=_utc(reset_time),
                        retry_after=window_ms / 1000,
                    )
                self._windows[identity] = (1, reset_time)
                return RateLimitResult(
                    allowed=True,
                    remaining=max_requests - 1,
                    limit=max_requests,
                    reset_at=_utc(reset_time),
                )

            count, reset_time = record
            if count >= max_requests:
                return RateLimitResult(
                    allowed=False,
                    remaining=0,
                    limit=max_requests,
                    reset_at=_utc(reset_time),
                    retry_after=max(0.0, reset_time - now),
                )

            self._windows[identity] = (count + 1, reset_time)
            return RateLimitResult(
                allowed=True,
                remaining=max_requests - count - 1,
                limit=max_requests,
                reset_at=_utc(reset_time),
            )

    async def reset(self, identity: str) -> bool:
        async with self._lock:
            self._windows.pop(identity, None)
        return True


class SlidingWindowLimiter(RateLimiter):
    """
    Sliding window rate limiter.

    Counts request timestamps inside a moving window, which avoids
    the double burst a fixed window allows at its boundary.
    """

    def __init__(self) -> None:
        self._timestamps: dict[str, list[float]] = {}
        self._lock = asyncio.Lock()

    @property
    def name(self) -> str:
        return "sliding_window"

    async def admit(
        self,
        identity: str,
        window_ms: int,
        max_requests: int,
    ) -> RateLimitResult:
        window_seconds = window_ms / 1000

        async with self._lock:
            now = time.time()
            cutoff = now - window_seconds
            timestamps = [ts for ts in self._timestamps.get(identity, []) if ts > cutoff]

            if len(timestamps) < max_requests:
                timestamps.append(now)
                self._timestamps[identity] = timestamps
                return RateLimitResult(
                    allowed=True,
                    remaining=max_requests - len(timestamps),
                    limit=max_requests,
                    reset_at=_utc(min(timestamps) + window_seconds),
                )

            if timestamps:
                self._timestamps[identity] = timestamps
            else:
                self._timestamps.pop(identity, None)
            oldest = min(timestamps) if timestamps else now
            retry_after = (oldest + window_seconds) - now
            return RateLimitResult(
                allowed=False,
                remaining=0,
                limit=max_requests,
                reset_at=_utc(oldest + window_seconds),
                retry_after=max(0.0, retry_after),
            )

    async def reset(self, identity: str) -> bool:
        async with self._lock:
            self._timestamps.pop(identity, None)
        return True


def create_rate_limiter(algorithm: str) -> RateLimiter:
    """
    Create a rate limiter by algorithm name.

    Raises:
        ValueError: If the algorithm is unknown
    """
    if algorithm == "fixed_window":
        return FixedWindowLimiter()
    if algorithm == "sliding_window":
        return SlidingWindowLimiter()
    raise ValueError(f"Unknown rate limit algorithm: {algorithm}")
