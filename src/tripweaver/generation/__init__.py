"""Itinerary generation: orchestration, policy, scoring and metrics."""

from tripweaver.generation.background import BackgroundTaskQueue
from tripweaver.generation.circuit import CircuitBreaker, CircuitBreakerRegistry, CircuitState
from tripweaver.generation.metrics import MetricsCollector
from tripweaver.generation.orchestrator import (
    GenerationOrchestrator,
    OrchestrationState,
    OrchestratorConfig,
    ProgressCallback,
)
from tripweaver.generation.policy import (
    DEFAULT_TIER_POLICIES,
    FeatureFlags,
    SupervisionLevel,
    TierPolicy,
    policy_for,
)
from tripweaver.generation.scoring import quality_score

__all__ = [
    "BackgroundTaskQueue",
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "CircuitState",
    "MetricsCollector",
    "GenerationOrchestrator",
    "OrchestrationState",
    "OrchestratorConfig",
    "ProgressCallback",
    "DEFAULT_TIER_POLICIES",
    "FeatureFlags",
    "SupervisionLevel",
    "TierPolicy",
    "policy_for",
    "quality_score",
]
