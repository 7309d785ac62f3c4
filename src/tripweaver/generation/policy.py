"""Per-tier orchestration policy and feature flags."""

from dataclasses import dataclass
from enum import Enum
from typing import Any

from tripweaver.config import Settings
from tripweaver.models import Tier


class SupervisionLevel(str, Enum):
    """How much work the supervisor is asked to do."""

    NONE = "none"
    BASIC = "basic"  # review only
    FULL = "full"  # review and revise


@dataclass(frozen=True)
class TierPolicy:
    """Orchestration allowances for one tier."""

    max_attempts: int
    """Creative generator attempts (first call included)."""

    supervision_level: SupervisionLevel
    """Level passed to the supervisor when Phase 2 runs."""

    max_revision_cycles: int = 0
    """Extra supervisor reviews of a revised itinerary."""

    def to_dict(self) -> dict[str, Any]:
        return {
            "max_attempts": self.max_attempts,
            "supervision_level": self.supervision_level.value,
            "max_revision_cycles": self.max_revision_cycles,
        }


DEFAULT_TIER_POLICIES: dict[Tier, TierPolicy] = {
    Tier.FREE: TierPolicy(max_attempts=1, supervision_level=SupervisionLevel.NONE),
    Tier.PRO: TierPolicy(max_attempts=2, supervision_level=SupervisionLevel.BASIC),
    Tier.PREMIUM: TierPolicy(
        max_attempts=3, supervision_level=SupervisionLevel.FULL, max_revision_cycles=1
    ),
}


def policy_for(tier: Tier) -> TierPolicy:
    return DEFAULT_TIER_POLICIES[tier]


class FeatureFlags:
    """
    Rollout switches for supervisory QA.

    A master switch gates everything; each tier then has its own
    switch. The free tier is never eligible regardless of flags.
    """

    def __init__(
        self,
        enable_multi_llm: bool = False,
        tier_flags: dict[Tier, bool] | None = None,
    ) -> None:
        self._enabled = enable_multi_llm
        self._tier_flags = tier_flags or {}

    @classmethod
    def from_settings(cls, settings: Settings) -> "FeatureFlags":
        return cls(
            enable_multi_llm=settings.enable_multi_llm,
            tier_flags={
                Tier.FREE: settings.multi_llm_free_tier,
                Tier.PRO: settings.multi_llm_pro_tier,
                Tier.PREMIUM: settings.multi_llm_premium_tier,
            },
        )

    def is_phase2_enabled_for_tier(self, tier: Tier) -> bool:
        if tier == Tier.FREE or not self._enabled:
            return False
        if policy_for(tier).supervision_level == SupervisionLevel.NONE:
            return False
        return self._tier_flags.get(tier, False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "enable_multi_llm": self._enabled,
            "phase2_tiers": [t.value for t in Tier if self.is_phase2_enabled_for_tier(t)],
        }
