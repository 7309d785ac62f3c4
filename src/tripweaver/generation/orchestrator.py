"""
Tiered multi-provider orchestrator.

Runs at most two phases per generation:

- Phase 1: creative generator and location validator in parallel.
  The creative result is required; the validator only contributes a
  preliminary report if it answers in time.
- Phase 2: supervisor review of the Phase 1 itinerary, for tiers with
  supervisory QA enabled. Failure here falls back to Phase 1 output.

Provider calls run as detached tasks. The orchestrator stops waiting
on them at its deadlines but never cancels them; late results are
discarded.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable

from tripweaver.cache.base import GenerationCache
from tripweaver.config import Settings
from tripweaver.generation.circuit import CircuitBreakerRegistry
from tripweaver.generation.metrics import MetricsCollector
from tripweaver.generation.policy import FeatureFlags, SupervisionLevel, TierPolicy, policy_for
from tripweaver.generation.scoring import (
    quality_score,
    report_from_supervisor,
    report_from_validator,
)
from tripweaver.models import (
    FailureReason,
    GenerationMetrics,
    GenerationRequest,
    GenerationResult,
    ProviderResult,
    ProviderRole,
    ValidationReport,
)
from tripweaver.providers.base import ProviderAdapter

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, dict[str, Any]], Awaitable[None]]

RETRYABLE_FAILURES = {FailureReason.TRANSPORT_ERROR, FailureReason.INVALID_RESPONSE}
CACHEABLE_ROLES = {ProviderRole.CREATIVE, ProviderRole.VALIDATOR}

# Extra wait beyond an adapter's own deadline before giving up on it
WAIT_SLACK_SECONDS = 0.5


class OrchestrationState(str, Enum):
    """Lifecycle of one generation."""

    IDLE = "idle"
    PHASE1_RUNNING = "phase1_running"
    PHASE1_DONE = "phase1_done"
    PHASE2_RUNNING = "phase2_running"
    PHASE2_DONE = "phase2_done"
    ASSEMBLING = "assembling"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


_TRANSITIONS: dict[OrchestrationState, set[OrchestrationState]] = {
    OrchestrationState.IDLE: {OrchestrationState.PHASE1_RUNNING},
    OrchestrationState.PHASE1_RUNNING: {OrchestrationState.PHASE1_DONE, OrchestrationState.FAILED},
    OrchestrationState.PHASE1_DONE: {OrchestrationState.PHASE2_RUNNING, OrchestrationState.ASSEMBLING},
    OrchestrationState.PHASE2_RUNNING: {OrchestrationState.PHASE2_DONE},
    OrchestrationState.PHASE2_DONE: {OrchestrationState.ASSEMBLING},
    OrchestrationState.ASSEMBLING: {OrchestrationState.SUCCEEDED},
    OrchestrationState.SUCCEEDED: set(),
    OrchestrationState.FAILED: set(),
}


@dataclass
class OrchestratorConfig:
    """Timing and retry settings for the orchestrator."""

    phase1_timeout: float = 45.0
    """Budget for Phase 1 in seconds."""

    phase2_timeout: float = 30.0
    """Budget for Phase 2 in seconds."""

    validator_grace: float = 2.0
    """How long to wait for the validator after the creative result."""

    retry_base_delay: float = 1.0
    """First creative retry delay; doubles per attempt."""

    retry_max_delay: float = 30.0
    """Upper bound on a single retry delay."""

    @classmethod
    def from_settings(cls, settings: Settings) -> OrchestratorConfig:
        return cls(
            phase1_timeout=settings.phase1_timeout_seconds,
            phase2_timeout=settings.phase2_timeout_seconds,
            validator_grace=settings.validator_grace_seconds,
            retry_base_delay=settings.retry_base_delay_seconds,
            retry_max_delay=settings.retry_max_delay_seconds,
        )


class GenerationRun:
    """Mutable bookkeeping for a single generation."""

    def __init__(self, request: GenerationRequest) -> None:
        self.request = request
        self.state = OrchestrationState.IDLE
        self.metrics = GenerationMetrics()
        self.report: ValidationReport | None = None
        self.data: dict[str, Any] | None = None
        self.fallback_used = False

    def transition(self, new_state: OrchestrationState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal transition {self.state.value} -> {new_state.value}")
        logger.debug(f"[{self.request.request_id}] {self.state.value} -> {new_state.value}")
        self.state = new_state

    def incorporate(self, result: ProviderResult) -> None:
        """Count a provider result that contributed to the output."""
        self.metrics.mark_used(result.role)
        if result.cached:
            self.metrics.cache_hits += 1

    def observe(self, result: ProviderResult) -> None:
        self.metrics.provider_latencies_ms[result.role.value] = result.latency_ms


class GenerationOrchestrator:
    """
    Coordinates the provider adapters for one generation at a time.

    Safe to share across concurrent requests: all per-request state
    lives in a ``GenerationRun``.
    """

    def __init__(
        self,
        adapters: dict[ProviderRole, ProviderAdapter],
        flags: FeatureFlags,
        config: OrchestratorConfig | None = None,
        cache: GenerationCache | None = None,
        circuits: CircuitBreakerRegistry | None = None,
        metrics: MetricsCollector | None = None,
        policies: dict[Any, TierPolicy] | None = None,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            adapters: Adapter per role (creative and validator required)
            flags: Feature flags deciding Phase 2 eligibility
            config: Timeouts and retry settings
            cache: Optional generation cache for creative and validator payloads
            circuits: Circuit breakers per role
            metrics: Collector receiving every terminal result
            policies: Per-tier overrides of the default policies
        """
        for role in (ProviderRole.CREATIVE, ProviderRole.VALIDATOR):
            if role not in adapters:
                raise ValueError(f"Missing adapter for role {role.value}")

        self._adapters = adapters
        self._flags = flags
        self._config = config or OrchestratorConfig()
        self._cache = cache
        self._circuits = circuits or CircuitBreakerRegistry()
        self._metrics = metrics or MetricsCollector()
        self._policies = policies or {}
        self._inflight: set[asyncio.Task] = set()

    @property
    def config(self) -> OrchestratorConfig:
        return self._config

    @property
    def circuits(self) -> CircuitBreakerRegistry:
        return self._circuits

    @property
    def metrics(self) -> MetricsCollector:
        return self._metrics

    @property
    def flags(self) -> FeatureFlags:
        return self._flags

    @property
    def inflight(self) -> int:
        """Provider calls still running, including abandoned ones."""
        return len(self._inflight)

    def policy(self, request: GenerationRequest) -> TierPolicy:
        return self._policies.get(request.tier) or policy_for(request.tier)

    def planned_roles(self, request: GenerationRequest) -> list[ProviderRole]:
        """Roles this request is entitled to use."""
        roles = [ProviderRole.CREATIVE, ProviderRole.VALIDATOR]
        if self._phase2_enabled(request):
            roles.append(ProviderRole.SUPERVISOR)
        return roles

    def _phase2_enabled(self, request: GenerationRequest) -> bool:
        return (
            ProviderRole.SUPERVISOR in self._adapters
            and self._flags.is_phase2_enabled_for_tier(request.tier)
            and self.policy(request).supervision_level != SupervisionLevel.NONE
        )

    # --- Entry point ---

    async def generate(
        self,
        request: GenerationRequest,
        progress: ProgressCallback | None = None,
    ) -> GenerationResult:
        """
        Run one generation to a terminal result.

        Never raises for provider failures; a failed creative call
        yields ``success=False`` with no data.

        Args:
            request: Immutable request with its deadline
            progress: Optional async callback for lifecycle notifications

        Returns:
            GenerationResult
        """
        run = GenerationRun(request)
        logger.info(
            f"[{request.request_id}] Generating {request.params.days}-day itinerary "
            f"for {request.params.city} (tier={request.tier.value})"
        )

        creative = await self._run_phase1(run, progress)

        if creative is None or not creative.succeeded:
            run.transition(OrchestrationState.FAILED)
            return self._finish_failure(run, creative)

        run.transition(OrchestrationState.PHASE1_DONE)
        run.metrics.phase1_latency_ms = request.elapsed_ms()

        if self._phase2_enabled(request):
            run.transition(OrchestrationState.PHASE2_RUNNING)
            phase2_start = time.monotonic()
            await self._notify(progress, "phase2", {"status": "started"})
            await self._run_phase2(run)
            run.metrics.phase2_latency_ms = (time.monotonic() - phase2_start) * 1000
            run.transition(OrchestrationState.PHASE2_DONE)
            await self._notify(
                progress,
                "phase2",
                {
                    "status": "completed",
                    "quality_score": quality_score(run.report),
                    "fallback_used": run.fallback_used,
                },
            )

        run.transition(OrchestrationState.ASSEMBLING)
        return self._finish_success(run)

    # --- Phase 1 ---

    async def _run_phase1(
        self,
        run: GenerationRun,
        progress: ProgressCallback | None,
    ) -> ProviderResult | None:
        request = run.request
        run.transition(OrchestrationState.PHASE1_RUNNING)

        budget = min(self._config.phase1_timeout, request.remaining())
        deadline = time.monotonic() + budget
        payload = {"params": request.params.to_payload()}

        validator_task = self._spawn(
            self._call_role(ProviderRole.VALIDATOR, request, payload, budget)
        )
        await self._notify(
            progress,
            "phase1",
            {"providers": [r.value for r in self.planned_roles(request)]},
        )

        creative = await self._run_creative(run, payload, deadline)
        if creative is None or not creative.succeeded:
            return creative

        run.data = creative.payload
        run.incorporate(creative)

        validator = await self._wait(validator_task, self._config.validator_grace)
        if validator is None:
            logger.info(
                f"[{request.request_id}] Validator still running after "
                f"{self._config.validator_grace}s grace, continuing without a preliminary report"
            )
        else:
            run.observe(validator)
            if validator.succeeded and validator.payload is not None:
                run.report = report_from_validator(validator.payload)
                run.incorporate(validator)

        return creative

    async def _run_creative(
        self,
        run: GenerationRun,
        payload: dict[str, Any],
        deadline: float,
    ) -> ProviderResult | None:
        """Creative calls with the tier's retry allowance inside the Phase 1 budget."""
        request = run.request
        max_attempts = max(1, self.policy(request).max_attempts)
        result: ProviderResult | None = None

        for attempt in range(max_attempts):
            if attempt > 0:
                delay = min(
                    self._config.retry_base_delay * (2 ** (attempt - 1)),
                    self._config.retry_max_delay,
                )
                if time.monotonic() + delay >= deadline:
                    logger.info(f"[{request.request_id}] No Phase 1 budget left for a retry")
                    break
                logger.info(
                    f"[{request.request_id}] Retrying creative generation "
                    f"(attempt {attempt + 1}/{max_attempts}) in {delay:.1f}s"
                )
                await asyncio.sleep(delay)
                run.metrics.retry_count += 1

            remaining = deadline - time.monotonic()
            task = self._spawn(
                self._call_role(ProviderRole.CREATIVE, request, payload, remaining)
            )
            result = await self._wait(task, remaining + WAIT_SLACK_SECONDS)
            if result is None:
                result = ProviderResult.failure(
                    ProviderRole.CREATIVE,
                    self._adapters[ProviderRole.CREATIVE].name,
                    FailureReason.TIMEOUT,
                    remaining * 1000,
                    "Phase 1 deadline exceeded",
                )
            run.observe(result)

            if result.succeeded or result.failure_reason not in RETRYABLE_FAILURES:
                break

        return result

    # --- Phase 2 ---

    async def _run_phase2(self, run: GenerationRun) -> None:
        request = run.request
        policy = self.policy(request)
        assert run.data is not None

        review = await self._review(run, run.data, policy.supervision_level)
        if review is None or not review.succeeded or review.payload is None:
            run.fallback_used = True
            reason = review.failure_reason.value if review and review.failure_reason else "timeout"
            logger.warning(
                f"[{request.request_id}] Supervisor unavailable ({reason}), "
                f"using Phase 1 result"
            )
            return

        run.incorporate(review)
        self._apply_review(run, review.payload, revision_cycles=0)

        revised = review.payload.get("revised_itinerary")
        if (
            policy.max_revision_cycles > 0
            and revised
            and not review.payload.get("approved", False)
        ):
            # One follow-up review of the revised itinerary; its failure keeps the first review
            second = await self._review(run, run.data, policy.supervision_level)
            if second is not None and second.succeeded and second.payload is not None:
                self._apply_review(run, second.payload, revision_cycles=1)
            else:
                logger.info(f"[{request.request_id}] Re-review failed, keeping first review")

    async def _review(
        self,
        run: GenerationRun,
        itinerary: dict[str, Any],
        supervision_level: SupervisionLevel,
    ) -> ProviderResult | None:
        request = run.request
        budget = min(self._config.phase2_timeout, request.remaining())
        if budget <= 0:
            logger.warning(f"[{request.request_id}] Request deadline exhausted before Phase 2")
            return None

        payload = {
            "params": request.params.to_payload(),
            "itinerary": itinerary,
            "preliminary_report": run.report.to_dict() if run.report else None,
            "supervision_level": supervision_level.value,
        }
        task = self._spawn(self._call_role(ProviderRole.SUPERVISOR, request, payload, budget))
        result = await self._wait(task, budget + WAIT_SLACK_SECONDS)
        if result is not None:
            run.observe(result)
        return result

    def _apply_review(self, run: GenerationRun, payload: dict[str, Any], revision_cycles: int) -> None:
        run.report = report_from_supervisor(payload, revision_cycles=revision_cycles)
        revised = payload.get("revised_itinerary")
        if isinstance(revised, dict) and revised:
            run.data = revised

    # --- Provider calls ---

    async def _call_role(
        self,
        role: ProviderRole,
        request: GenerationRequest,
        payload: dict[str, Any],
        timeout: float,
    ) -> ProviderResult:
        adapter = self._adapters[role]
        cacheable = self._cache is not None and role in CACHEABLE_ROLES

        if cacheable:
            hit = await self._cache.lookup(role, request.params, request.tier)
            if hit is not None:
                logger.debug(
                    f"[{request.request_id}] Cache hit for {role.value} ({hit.lookup_ms:.1f}ms)"
                )
                return ProviderResult.ok(
                    role, hit.entry.provider, hit.entry.payload, hit.lookup_ms, cached=True
                )

        breaker = self._circuits.get(role)
        if not breaker.allow_request():
            logger.warning(f"[{request.request_id}] Circuit open for {role.value}, not dispatching")
            return ProviderResult.failure(
                role, adapter.name, FailureReason.REJECTED, 0.0, "Circuit breaker open"
            )

        result = await adapter.invoke(payload, timeout)

        if result.succeeded:
            breaker.record_success()
            if cacheable and result.payload is not None:
                await self._cache.store(
                    role, request.params, request.tier, result.provider, result.payload
                )
        else:
            breaker.record_failure()

        return result

    def _spawn(self, coro: Awaitable[ProviderResult]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    @staticmethod
    async def _wait(task: asyncio.Task, timeout: float) -> ProviderResult | None:
        """Wait for a detached call without cancelling it on timeout."""
        done, _ = await asyncio.wait({task}, timeout=max(0.0, timeout))
        if not done:
            return None
        return task.result()

    async def _notify(
        self,
        progress: ProgressCallback | None,
        event: str,
        data: dict[str, Any],
    ) -> None:
        if progress is None:
            return
        try:
            await progress(event, data)
        except Exception as e:
            logger.warning(f"Progress callback failed for {event}: {e}")

    # --- Assembly ---

    def _finish_success(self, run: GenerationRun) -> GenerationResult:
        request = run.request
        run.metrics.total_latency_ms = request.elapsed_ms()

        if run.fallback_used and ProviderRole.SUPERVISOR in run.metrics.providers_used:
            raise RuntimeError("Fallback reported although the supervisor result was used")

        result = GenerationResult(
            success=True,
            data=run.data,
            quality_score=quality_score(run.report),
            validation_report=run.report,
            fallback_used=run.fallback_used,
            metrics=run.metrics,
            request_id=request.request_id,
        )
        run.transition(OrchestrationState.SUCCEEDED)
        self._metrics.record(result, request.tier)

        logger.info(
            f"[{request.request_id}] Generation succeeded in {run.metrics.total_latency_ms:.0f}ms "
            f"(providers={[r.value for r in run.metrics.providers_used]}, "
            f"fallback={run.fallback_used}, score={result.quality_score})"
        )
        return result

    def _finish_failure(
        self,
        run: GenerationRun,
        creative: ProviderResult | None,
    ) -> GenerationResult:
        request = run.request
        run.metrics.total_latency_ms = request.elapsed_ms()
        reason = creative.failure_reason if creative else FailureReason.TIMEOUT
        detail = creative.error if creative and creative.error else None

        result = GenerationResult(
            success=False,
            metrics=run.metrics,
            error=f"Creative generation failed ({reason.value})" + (f": {detail}" if detail else ""),
            failure_reason=reason,
            request_id=request.request_id,
        )
        self._metrics.record(result, request.tier)

        logger.error(
            f"[{request.request_id}] Generation failed after "
            f"{run.metrics.total_latency_ms:.0f}ms: {result.error}"
        )
        return result

    # --- Introspection ---

    def health(self) -> dict[str, Any]:
        return {
            "circuits": self._circuits.states(),
            "inflight_calls": self.inflight,
            "feature_flags": self._flags.to_dict(),
            "adapters": {role.value: adapter.name for role, adapter in self._adapters.items()},
        }

    async def aclose(self) -> None:
        """Close adapters; abandoned calls are left to finish on their own deadlines."""
        for adapter in self._adapters.values():
            await adapter.close()
