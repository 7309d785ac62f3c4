"""
Generation metrics collector.
Records outcomes of orchestrated generations for the metrics endpoint.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from tripweaver.models import GenerationResult, Tier

logger = logging.getLogger(__name__)


@dataclass
class GenerationEvent:
    """One recorded generation."""

    timestamp: datetime
    tier: Tier
    success: bool
    latency_ms: float
    fallback_used: bool
    cache_hits: int
    retry_count: int
    providers_used: list[str] = field(default_factory=list)
    quality_score: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "tier": self.tier.value,
            "success": self.success,
            "latency_ms": self.latency_ms,
            "fallback_used": self.fallback_used,
            "cache_hits": self.cache_hits,
            "retry_count": self.retry_count,
            "providers_used": self.providers_used,
            "quality_score": self.quality_score,
        }


def _percentile(sorted_values: list[float], pct: float) -> float:
    if not sorted_values:
        return 0.0
    index = min(len(sorted_values) - 1, int(round(pct / 100 * (len(sorted_values) - 1))))
    return sorted_values[index]


class MetricsCollector:
    """
    Collects generation outcomes over a bounded recent window.

    Totals are kept for the process lifetime; averages and
    percentiles cover only the most recent ``window_size`` events.
    """

    def __init__(self, window_size: int = 1000) -> None:
        self._events: deque[GenerationEvent] = deque(maxlen=window_size)
        self._lock = threading.Lock()
        self._totals = {
            "total": 0,
            "successes": 0,
            "failures": 0,
            "fallbacks": 0,
            "cache_hits": 0,
            "retries": 0,
        }

    def record(self, result: GenerationResult, tier: Tier) -> None:
        """Record a terminal generation result."""
        event = GenerationEvent(
            timestamp=datetime.utcnow(),
            tier=tier,
            success=result.success,
            latency_ms=result.metrics.total_latency_ms,
            fallback_used=result.fallback_used,
            cache_hits=result.metrics.cache_hits,
            retry_count=result.metrics.retry_count,
            providers_used=[r.value for r in result.metrics.providers_used],
            quality_score=result.quality_score,
        )

        with self._lock:
            self._events.append(event)
            self._totals["total"] += 1
            self._totals["successes" if result.success else "failures"] += 1
            self._totals["fallbacks"] += int(result.fallback_used)
            self._totals["cache_hits"] += result.metrics.cache_hits
            self._totals["retries"] += result.metrics.retry_count

    def summary(self) -> dict[str, Any]:
        """Aggregate view for the metrics endpoint."""
        with self._lock:
            events = list(self._events)
            totals = dict(self._totals)

        latencies = sorted(e.latency_ms for e in events)
        scores = [e.quality_score for e in events if e.quality_score is not None]

        by_tier: dict[str, dict[str, int]] = {}
        by_role: dict[str, int] = {}
        for event in events:
            tier_stats = by_tier.setdefault(event.tier.value, {"total": 0, "successes": 0, "fallbacks": 0})
            tier_stats["total"] += 1
            tier_stats["successes"] += int(event.success)
            tier_stats["fallbacks"] += int(event.fallback_used)
            for role in event.providers_used:
                by_role[role] = by_role.get(role, 0) + 1

        total = totals["total"]
        return {
            **totals,
            "success_rate": round(totals["successes"] / total, 4) if total else 0.0,
            "fallback_rate": round(totals["fallbacks"] / total, 4) if total else 0.0,
            "window_size": len(events),
            "avg_latency_ms": round(sum(latencies) / len(latencies), 2) if latencies else 0.0,
            "p95_latency_ms": round(_percentile(latencies, 95), 2),
            "avg_quality_score": round(sum(scores) / len(scores), 2) if scores else None,
            "by_tier": by_tier,
            "by_role": by_role,
        }

    def recent(self, limit: int = 20) -> list[dict[str, Any]]:
        with self._lock:
            events = list(self._events)[-limit:]
        return [e.to_dict() for e in events]

    def reset(self) -> None:
        with self._lock:
            self._events.clear()
            for key in self._totals:
                self._totals[key] = 0
