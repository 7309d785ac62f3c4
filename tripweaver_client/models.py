"""
Dataclasses for Tripweaver API responses.
"""

from dataclasses import dataclass, field
from typing import Optional


@dataclass
class ItineraryResult:
    """A generation result."""

    request_id: str
    success: bool
    itinerary: Optional[dict]
    quality_score: Optional[float]
    fallback_used: bool
    validation_report: Optional[dict]
    metrics: dict = field(default_factory=dict)

    @property
    def providers_used(self) -> list[str]:
        return self.metrics.get("providers_used", [])

    @classmethod
    def from_dict(cls, data: dict) -> "ItineraryResult":
        return cls(
            request_id=data.get("request_id", ""),
            success=data.get("success", False),
            itinerary=data.get("data"),
            quality_score=data.get("quality_score"),
            fallback_used=data.get("fallback_used", False),
            validation_report=data.get("validation_report"),
            metrics=data.get("metrics", {}),
        )

    @classmethod
    def from_complete_event(cls, data: dict) -> "ItineraryResult":
        """Build from the payload of a stream ``complete`` event."""
        meta = data.get("meta", {})
        return cls(
            request_id=data.get("request_id", ""),
            success=data.get("success", True),
            itinerary=data.get("itinerary"),
            quality_score=meta.get("quality_score"),
            fallback_used=meta.get("fallback_used", False),
            validation_report=meta.get("validation_report"),
            metrics=meta.get("metrics", {}),
        )


@dataclass
class UsageStatus:
    """Quota usage for one usage type."""

    usage_type: str
    allowed: bool
    current_usage: int
    limit: int
    remaining: int
    period_resets_at: str
    tier: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "UsageStatus":
        usage = data.get("usage", {})
        return cls(
            usage_type=data.get("usage_type", ""),
            allowed=data.get("allowed", False),
            current_usage=usage.get("current_usage", 0),
            limit=usage.get("limit", 0),
            remaining=usage.get("remaining", 0),
            period_resets_at=usage.get("period_resets_at", ""),
            tier=data.get("tier"),
        )


@dataclass
class ProgressEvent:
    """One event from the progress stream."""

    type: str
    data: dict
    timestamp: str = ""

    @property
    def is_terminal(self) -> bool:
        return self.type in ("complete", "error")

    @property
    def progress(self) -> Optional[int]:
        return self.data.get("progress")

    @property
    def message(self) -> str:
        return self.data.get("message", "")

    @classmethod
    def from_dict(cls, data: dict) -> "ProgressEvent":
        return cls(
            type=data.get("type", ""),
            data=data.get("data", {}),
            timestamp=data.get("timestamp", ""),
        )
