"""
Core data model for itinerary generation.

Value types shared by the quota gate, the provider adapters,
the orchestrator and the progress stream.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, StringConstraints


class Tier(str, Enum):
    """Subscription tier, ordered free < pro < premium."""

    FREE = "free"
    PRO = "pro"
    PREMIUM = "premium"

    @property
    def rank(self) -> int:
        return list(Tier).index(self)

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Tier):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, Tier):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, Tier):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, Tier):
            return NotImplemented
        return self.rank >= other.rank


class ProviderRole(str, Enum):
    """Role a provider adapter plays in the orchestration."""

    CREATIVE = "creative"
    VALIDATOR = "validator"
    SUPERVISOR = "supervisor"


class FailureReason(str, Enum):
    """Normalized reasons a provider call can fail."""

    TIMEOUT = "timeout"
    INVALID_RESPONSE = "invalid_response"
    TRANSPORT_ERROR = "transport_error"
    REJECTED = "rejected"


class PeriodType(str, Enum):
    """Quota accounting windows."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class UsageType(str, Enum):
    """Metered actions and the window each one is counted in."""

    ITINERARIES_CREATED = "itineraries_created"
    CHAT_MESSAGES = "chat_messages"
    STORIES_CREATED = "stories_created"
    AI_IMAGES_GENERATED = "ai_images_generated"
    SPOTS_SAVED = "spots_saved"

    @property
    def period_type(self) -> PeriodType:
        return _USAGE_PERIODS[self]


_USAGE_PERIODS = {
    UsageType.ITINERARIES_CREATED: PeriodType.MONTHLY,
    UsageType.CHAT_MESSAGES: PeriodType.DAILY,
    UsageType.STORIES_CREATED: PeriodType.WEEKLY,
    UsageType.AI_IMAGES_GENERATED: PeriodType.MONTHLY,
    UsageType.SPOTS_SAVED: PeriodType.MONTHLY,
}


# --- Request parameters ---

Interest = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=50)]


class ItineraryParams(BaseModel):
    """Generation parameters supplied by the caller."""

    model_config = ConfigDict(
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="ignore",
    )

    city: str = Field(..., min_length=1, max_length=100)
    days: int = Field(..., ge=1, le=14)
    interests: list[Interest] = Field(default_factory=list, max_length=10)
    budget: Literal["budget", "cheap", "moderate", "luxury", "splurge"] | None = None
    localness_level: int | None = Field(default=None, ge=1, le=5, alias="localnessLevel")
    pace: Literal["relaxed", "moderate", "active", "packed"] | None = None
    group_type: Literal["solo", "couple", "family", "friends", "business"] | None = Field(
        default=None, alias="groupType"
    )
    template_prompt: str | None = Field(default=None, max_length=2000, alias="templatePrompt")

    def to_payload(self) -> dict[str, Any]:
        """Plain dict sent to providers (unset fields omitted)."""
        return self.model_dump(exclude_none=True)


@dataclass(frozen=True)
class GenerationRequest:
    """
    One generation attempt.

    Immutable once created; the deadline is a monotonic timestamp
    derived from the maximum request duration.
    """

    request_id: str
    user_id: str
    tier: Tier
    params: ItineraryParams
    started_at: float
    deadline: float

    @classmethod
    def create(
        cls,
        user_id: str,
        tier: Tier,
        params: ItineraryParams,
        max_duration_seconds: float,
        request_id: str | None = None,
    ) -> GenerationRequest:
        now = time.monotonic()
        return cls(
            request_id=request_id or uuid.uuid4().hex,
            user_id=user_id,
            tier=tier,
            params=params,
            started_at=now,
            deadline=now + max_duration_seconds,
        )

    def remaining(self) -> float:
        """Seconds left before the deadline (never negative)."""
        return max(0.0, self.deadline - time.monotonic())

    def elapsed_ms(self) -> float:
        """Wall-clock milliseconds since the request started."""
        return (time.monotonic() - self.started_at) * 1000


# --- Provider results ---


@dataclass
class ProviderResult:
    """Tagged outcome of a single provider adapter call."""

    role: ProviderRole
    """Role of the adapter that produced this result."""

    provider: str
    """Adapter name (e.g., 'openai')."""

    succeeded: bool
    """Whether a usable payload was returned."""

    latency_ms: float
    """Time spent in the call, recorded on failure too."""

    payload: dict[str, Any] | None = None
    """Structured response on success."""

    failure_reason: FailureReason | None = None
    """Normalized failure on error."""

    error: str | None = None
    """Human-readable failure detail."""

    cached: bool = False
    """Served from the generation cache."""

    @classmethod
    def ok(
        cls,
        role: ProviderRole,
        provider: str,
        payload: dict[str, Any],
        latency_ms: float,
        cached: bool = False,
    ) -> ProviderResult:
        return cls(
            role=role,
            provider=provider,
            succeeded=True,
            latency_ms=latency_ms,
            payload=payload,
            cached=cached,
        )

    @classmethod
    def failure(
        cls,
        role: ProviderRole,
        provider: str,
        reason: FailureReason,
        latency_ms: float,
        error: str | None = None,
    ) -> ProviderResult:
        return cls(
            role=role,
            provider=provider,
            succeeded=False,
            latency_ms=latency_ms,
            failure_reason=reason,
            error=error,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "role": self.role.value,
            "provider": self.provider,
            "succeeded": self.succeeded,
            "latency_ms": round(self.latency_ms, 2),
            "failure_reason": self.failure_reason.value if self.failure_reason else None,
            "error": self.error,
            "cached": self.cached,
        }


# --- Validation ---


@dataclass
class ValidationIssue:
    """A single problem flagged by the validator or supervisor."""

    type: str
    severity: Literal["error", "warning", "info"]
    message: str
    day_index: int | None = None
    activity_index: int | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ValidationIssue:
        severity = data.get("severity", "warning")
        if severity not in ("error", "warning", "info"):
            severity = "warning"
        return cls(
            type=str(data.get("type", "quality")),
            severity=severity,
            message=str(data.get("message", "")),
            day_index=data.get("day_index"),
            activity_index=data.get("activity_index"),
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "type": self.type,
            "severity": self.severity,
            "message": self.message,
        }
        if self.day_index is not None:
            data["day_index"] = self.day_index
        if self.activity_index is not None:
            data["activity_index"] = self.activity_index
        return data


@dataclass
class ValidationReport:
    """
    Structured validation output.

    Phase 1's validator yields a preliminary report; a Phase 2
    supervisor report supersedes it.
    """

    source: ProviderRole
    issues: list[ValidationIssue] = field(default_factory=list)
    quality_score: int | None = None
    approved: bool | None = None
    suggestions: list[dict[str, Any]] = field(default_factory=list)
    revision_cycles: int = 0

    @property
    def error_count(self) -> int:
        return sum(1 for i in self.issues if i.severity == "error")

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source.value,
            "issues": [i.to_dict() for i in self.issues],
            "quality_score": self.quality_score,
            "approved": self.approved,
            "suggestions": self.suggestions,
            "revision_cycles": self.revision_cycles,
        }


# --- Results ---


@dataclass
class GenerationMetrics:
    """Caller-visible accounting for one generation."""

    total_latency_ms: float = 0.0
    providers_used: list[ProviderRole] = field(default_factory=list)
    cache_hits: int = 0
    phase1_latency_ms: float | None = None
    phase2_latency_ms: float | None = None
    retry_count: int = 0
    provider_latencies_ms: dict[str, float] = field(default_factory=dict)

    def mark_used(self, role: ProviderRole) -> None:
        """Add a role to providers_used, keeping order and uniqueness."""
        if role not in self.providers_used:
            self.providers_used.append(role)
            self.providers_used.sort(key=lambda r: list(ProviderRole).index(r))

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_latency_ms": round(self.total_latency_ms, 2),
            "providers_used": [r.value for r in self.providers_used],
            "cache_hits": self.cache_hits,
            "phase1_latency_ms": _round(self.phase1_latency_ms),
            "phase2_latency_ms": _round(self.phase2_latency_ms),
            "retry_count": self.retry_count,
            "provider_latencies_ms": {
                k: round(v, 2) for k, v in self.provider_latencies_ms.items()
            },
        }


@dataclass
class GenerationResult:
    """Terminal value of one orchestrated generation."""

    success: bool
    data: dict[str, Any] | None = None
    quality_score: int | None = None
    validation_report: ValidationReport | None = None
    fallback_used: bool = False
    metrics: GenerationMetrics = field(default_factory=GenerationMetrics)
    error: str | None = None
    failure_reason: FailureReason | None = None
    request_id: str | None = None

    def __post_init__(self) -> None:
        if not self.success and self.data is not None:
            raise ValueError("A failed generation cannot carry data")

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "request_id": self.request_id,
            "success": self.success,
            "data": self.data,
            "validation_report": (
                self.validation_report.to_dict() if self.validation_report else None
            ),
            "fallback_used": self.fallback_used,
            "metrics": self.metrics.to_dict(),
        }
        # Omitted rather than defaulted when nothing validated the result
        if self.quality_score is not None:
            data["quality_score"] = self.quality_score
        if self.error:
            data["error"] = self.error
        if self.failure_reason:
            data["failure_reason"] = self.failure_reason.value
        return data


def _round(value: float | None) -> float | None:
    return round(value, 2) if value is not None else None
