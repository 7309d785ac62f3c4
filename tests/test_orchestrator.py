"""Tests for the tiered generation orchestrator."""

import asyncio
import time
from typing import Any

import pytest

from fakes import (
    SAMPLE_ITINERARY,
    SAMPLE_REVIEW,
    SAMPLE_VALIDATION,
    FakeAdapter,
    all_tiers_flags,
    fast_config,
    make_adapters,
    make_request,
)
from tripweaver.cache.memory import InMemoryGenerationCache
from tripweaver.generation import (
    CircuitBreakerRegistry,
    CircuitState,
    FeatureFlags,
    GenerationOrchestrator,
)
from tripweaver.models import FailureReason, ProviderRole, Tier
from tripweaver.providers.base import ProviderRejectedError, ProviderTransportError

REVISED_ITINERARY = {
    "title": "Three Better Days in Seoul",
    "city": "Seoul",
    "days": [{"day": 1, "activities": [{"name": "Changdeokgung Secret Garden"}]}],
}


class TestTierGating:
    """Phase 2 eligibility by tier and flags."""

    @pytest.mark.asyncio
    async def test_free_tier_never_uses_supervisor(self) -> None:
        """Free tier skips Phase 2 even with every flag on."""
        supervisor = FakeAdapter(ProviderRole.SUPERVISOR, SAMPLE_REVIEW)
        orchestrator = GenerationOrchestrator(
            adapters=make_adapters(supervisor=supervisor),
            flags=all_tiers_flags(),
            config=fast_config(),
        )

        for _ in range(100):
            result = await orchestrator.generate(make_request(tier=Tier.FREE))
            assert result.success is True
            assert ProviderRole.SUPERVISOR not in result.metrics.providers_used
            assert result.fallback_used is False

        assert supervisor.calls == 0

    @pytest.mark.asyncio
    async def test_flags_off_skips_phase2_for_paid_tiers(self) -> None:
        supervisor = FakeAdapter(ProviderRole.SUPERVISOR, SAMPLE_REVIEW)
        orchestrator = GenerationOrchestrator(
            adapters=make_adapters(supervisor=supervisor),
            flags=FeatureFlags(enable_multi_llm=False, tier_flags={Tier.PRO: True}),
            config=fast_config(),
        )

        result = await orchestrator.generate(make_request(tier=Tier.PRO))

        assert result.success is True
        assert supervisor.calls == 0
        assert result.metrics.providers_used == [ProviderRole.CREATIVE, ProviderRole.VALIDATOR]

    @pytest.mark.asyncio
    async def test_missing_supervisor_adapter_skips_phase2(self) -> None:
        adapters = make_adapters()
        del adapters[ProviderRole.SUPERVISOR]
        orchestrator = GenerationOrchestrator(adapters, all_tiers_flags(), fast_config())

        result = await orchestrator.generate(make_request(tier=Tier.PREMIUM))

        assert result.success is True
        assert result.fallback_used is False
        assert ProviderRole.SUPERVISOR not in result.metrics.providers_used

    def test_missing_required_adapter(self) -> None:
        adapters = make_adapters()
        del adapters[ProviderRole.VALIDATOR]
        with pytest.raises(ValueError):
            GenerationOrchestrator(adapters, all_tiers_flags())

    def test_planned_roles(self, orchestrator: GenerationOrchestrator) -> None:
        assert orchestrator.planned_roles(make_request(tier=Tier.FREE)) == [
            ProviderRole.CREATIVE,
            ProviderRole.VALIDATOR,
        ]
        assert ProviderRole.SUPERVISOR in orchestrator.planned_roles(make_request(tier=Tier.PRO))


class TestPhase1:
    """Parallel creative and validator calls."""

    @pytest.mark.asyncio
    async def test_pro_seoul_runs_phase1_in_parallel(self) -> None:
        """Creative and validator overlap; supervisor reviews afterwards."""
        creative = FakeAdapter(ProviderRole.CREATIVE, SAMPLE_ITINERARY, delay=0.3)
        validator = FakeAdapter(ProviderRole.VALIDATOR, SAMPLE_VALIDATION, delay=0.3)
        supervisor = FakeAdapter(ProviderRole.SUPERVISOR, SAMPLE_REVIEW)
        orchestrator = GenerationOrchestrator(
            make_adapters(creative, validator, supervisor), all_tiers_flags(), fast_config()
        )

        start = time.perf_counter()
        result = await orchestrator.generate(make_request(tier=Tier.PRO, city="Seoul", days=3))
        elapsed = time.perf_counter() - start

        assert result.success is True
        assert elapsed < 0.55
        assert result.metrics.providers_used == [
            ProviderRole.CREATIVE,
            ProviderRole.VALIDATOR,
            ProviderRole.SUPERVISOR,
        ]
        assert result.data == SAMPLE_ITINERARY
        assert result.quality_score == 88
        assert result.validation_report is not None
        assert result.validation_report.source == ProviderRole.SUPERVISOR
        assert result.metrics.phase1_latency_ms is not None
        assert result.metrics.phase2_latency_ms is not None

    @pytest.mark.asyncio
    async def test_supervisor_receives_preliminary_report(self) -> None:
        supervisor = FakeAdapter(ProviderRole.SUPERVISOR, SAMPLE_REVIEW)
        orchestrator = GenerationOrchestrator(
            make_adapters(supervisor=supervisor), all_tiers_flags(), fast_config()
        )

        await orchestrator.generate(make_request(tier=Tier.PRO))

        payload = supervisor.payloads[0]
        assert payload["itinerary"] == SAMPLE_ITINERARY
        assert payload["supervision_level"] == "basic"
        assert payload["preliminary_report"]["source"] == "validator"
        assert payload["params"]["city"] == "Seoul"

    @pytest.mark.asyncio
    async def test_slow_validator_is_left_behind(self) -> None:
        """A validator slower than the grace period contributes nothing."""
        validator = FakeAdapter(ProviderRole.VALIDATOR, SAMPLE_VALIDATION, delay=1.0)
        orchestrator = GenerationOrchestrator(
            make_adapters(validator=validator),
            all_tiers_flags(),
            fast_config(validator_grace=0.1),
        )

        start = time.perf_counter()
        result = await orchestrator.generate(make_request(tier=Tier.FREE))
        elapsed = time.perf_counter() - start

        assert result.success is True
        assert elapsed < 0.8
        assert result.metrics.providers_used == [ProviderRole.CREATIVE]
        assert result.validation_report is None
        assert result.quality_score is None
        assert "quality_score" not in result.to_dict()

    @pytest.mark.asyncio
    async def test_validator_failure_does_not_fail_generation(self) -> None:
        validator = FakeAdapter(
            ProviderRole.VALIDATOR, error=ProviderTransportError("connection reset")
        )
        orchestrator = GenerationOrchestrator(
            make_adapters(validator=validator), all_tiers_flags(), fast_config()
        )

        result = await orchestrator.generate(make_request(tier=Tier.FREE))

        assert result.success is True
        assert result.data == SAMPLE_ITINERARY
        assert result.validation_report is None

    @pytest.mark.asyncio
    async def test_validator_report_scores_free_tier(self) -> None:
        orchestrator = GenerationOrchestrator(make_adapters(), all_tiers_flags(), fast_config())

        result = await orchestrator.generate(make_request(tier=Tier.FREE))

        # One warning costs ten points
        assert result.quality_score == 90
        assert result.validation_report is not None
        assert result.validation_report.source == ProviderRole.VALIDATOR


class TestCreativeFailure:
    """The creative result is required."""

    @pytest.mark.asyncio
    async def test_rejected_creative_fails_without_data(self) -> None:
        creative = FakeAdapter(ProviderRole.CREATIVE, error=ProviderRejectedError("HTTP 401"))
        supervisor = FakeAdapter(ProviderRole.SUPERVISOR, SAMPLE_REVIEW)
        orchestrator = GenerationOrchestrator(
            make_adapters(creative=creative, supervisor=supervisor),
            all_tiers_flags(),
            fast_config(),
        )

        result = await orchestrator.generate(make_request(tier=Tier.PREMIUM))

        assert result.success is False
        assert result.data is None
        assert result.failure_reason == FailureReason.REJECTED
        assert "rejected" in (result.error or "")
        assert creative.calls == 1  # rejections are not retried
        assert supervisor.calls == 0

    @pytest.mark.asyncio
    async def test_creative_timeout(self) -> None:
        creative = FakeAdapter(ProviderRole.CREATIVE, SAMPLE_ITINERARY, delay=5.0)
        orchestrator = GenerationOrchestrator(
            make_adapters(creative=creative),
            all_tiers_flags(),
            fast_config(phase1_timeout=0.3),
        )

        start = time.perf_counter()
        result = await orchestrator.generate(make_request(tier=Tier.FREE))
        elapsed = time.perf_counter() - start

        assert result.success is False
        assert result.failure_reason == FailureReason.TIMEOUT
        assert elapsed < 1.5

    @pytest.mark.asyncio
    async def test_request_deadline_bounds_phase1(self) -> None:
        creative = FakeAdapter(ProviderRole.CREATIVE, SAMPLE_ITINERARY, delay=5.0)
        orchestrator = GenerationOrchestrator(
            make_adapters(creative=creative), all_tiers_flags(), fast_config(phase1_timeout=30.0)
        )

        start = time.perf_counter()
        result = await orchestrator.generate(make_request(tier=Tier.FREE, max_duration=0.3))

        assert result.success is False
        assert time.perf_counter() - start < 1.5


class TestRetries:
    """Creative retries per tier."""

    @pytest.mark.asyncio
    async def test_pro_retries_transport_error(self) -> None:
        creative = FakeAdapter(
            ProviderRole.CREATIVE,
            responses=[ProviderTransportError("HTTP 503"), SAMPLE_ITINERARY],
        )
        orchestrator = GenerationOrchestrator(
            make_adapters(creative=creative), all_tiers_flags(), fast_config()
        )

        result = await orchestrator.generate(make_request(tier=Tier.PRO))

        assert result.success is True
        assert creative.calls == 2
        assert result.metrics.retry_count == 1

    @pytest.mark.asyncio
    async def test_free_tier_gets_one_attempt(self) -> None:
        creative = FakeAdapter(
            ProviderRole.CREATIVE,
            responses=[ProviderTransportError("HTTP 503"), SAMPLE_ITINERARY],
        )
        orchestrator = GenerationOrchestrator(
            make_adapters(creative=creative), all_tiers_flags(), fast_config()
        )

        result = await orchestrator.generate(make_request(tier=Tier.FREE))

        assert result.success is False
        assert result.failure_reason == FailureReason.TRANSPORT_ERROR
        assert creative.calls == 1

    @pytest.mark.asyncio
    async def test_retry_skipped_when_budget_exhausted(self) -> None:
        creative = FakeAdapter(ProviderRole.CREATIVE, error=ProviderTransportError("HTTP 502"))
        orchestrator = GenerationOrchestrator(
            make_adapters(creative=creative),
            all_tiers_flags(),
            fast_config(phase1_timeout=0.5, retry_base_delay=1.0, retry_max_delay=1.0),
        )

        result = await orchestrator.generate(make_request(tier=Tier.PREMIUM))

        assert result.success is False
        assert creative.calls == 1
        assert result.metrics.retry_count == 0


class TestPhase2:
    """Supervisor review, fallback and revision."""

    @pytest.mark.asyncio
    async def test_slow_supervisor_falls_back_to_phase1(self) -> None:
        """A supervisor past the Phase 2 budget leaves the Phase 1 itinerary intact."""
        supervisor = FakeAdapter(ProviderRole.SUPERVISOR, SAMPLE_REVIEW, delay=5.0)
        orchestrator = GenerationOrchestrator(
            make_adapters(supervisor=supervisor),
            all_tiers_flags(),
            fast_config(phase2_timeout=1.0),
        )

        start = time.perf_counter()
        result = await orchestrator.generate(make_request(tier=Tier.PRO))
        elapsed = time.perf_counter() - start

        assert result.success is True
        assert elapsed <= 3.0
        assert result.fallback_used is True
        assert result.data == SAMPLE_ITINERARY
        assert ProviderRole.SUPERVISOR not in result.metrics.providers_used
        # Preliminary validator report survives the fallback
        assert result.quality_score == 90

    @pytest.mark.asyncio
    async def test_supervisor_error_falls_back(self) -> None:
        supervisor = FakeAdapter(
            ProviderRole.SUPERVISOR, error=ProviderTransportError("HTTP 529")
        )
        orchestrator = GenerationOrchestrator(
            make_adapters(supervisor=supervisor), all_tiers_flags(), fast_config()
        )

        result = await orchestrator.generate(make_request(tier=Tier.PRO))

        assert result.success is True
        assert result.fallback_used is True
        assert supervisor.calls == 1  # no Phase 2 retries

    @pytest.mark.asyncio
    async def test_premium_revision_cycle(self) -> None:
        supervisor = FakeAdapter(
            ProviderRole.SUPERVISOR,
            responses=[
                {
                    "approved": False,
                    "quality_score": 60,
                    "issues": [{"type": "pacing", "severity": "warning", "message": "Too rushed"}],
                    "revised_itinerary": REVISED_ITINERARY,
                },
                {"approved": True, "quality_score": 92, "issues": []},
            ],
        )
        orchestrator = GenerationOrchestrator(
            make_adapters(supervisor=supervisor), all_tiers_flags(), fast_config()
        )

        result = await orchestrator.generate(make_request(tier=Tier.PREMIUM))

        assert result.success is True
        assert supervisor.calls == 2
        assert supervisor.payloads[0]["supervision_level"] == "full"
        assert supervisor.payloads[1]["itinerary"] == REVISED_ITINERARY
        assert result.data == REVISED_ITINERARY
        assert result.quality_score == 92
        assert result.validation_report is not None
        assert result.validation_report.revision_cycles == 1
        assert result.fallback_used is False

    @pytest.mark.asyncio
    async def test_failed_rereview_keeps_first_review(self) -> None:
        supervisor = FakeAdapter(
            ProviderRole.SUPERVISOR,
            responses=[
                {"approved": False, "quality_score": 70, "revised_itinerary": REVISED_ITINERARY},
                ProviderTransportError("HTTP 500"),
            ],
        )
        orchestrator = GenerationOrchestrator(
            make_adapters(supervisor=supervisor), all_tiers_flags(), fast_config()
        )

        result = await orchestrator.generate(make_request(tier=Tier.PREMIUM))

        assert result.success is True
        assert result.data == REVISED_ITINERARY
        assert result.quality_score == 70
        assert result.fallback_used is False

    @pytest.mark.asyncio
    async def test_pro_tier_never_rereviews(self) -> None:
        supervisor = FakeAdapter(
            ProviderRole.SUPERVISOR,
            {"approved": False, "quality_score": 65, "revised_itinerary": REVISED_ITINERARY},
        )
        orchestrator = GenerationOrchestrator(
            make_adapters(supervisor=supervisor), all_tiers_flags(), fast_config()
        )

        result = await orchestrator.generate(make_request(tier=Tier.PRO))

        assert supervisor.calls == 1
        assert result.quality_score == 65


class TestProgressCallback:
    """Lifecycle notifications."""

    @pytest.mark.asyncio
    async def test_event_order(self, orchestrator: GenerationOrchestrator) -> None:
        events: list[tuple[str, dict[str, Any]]] = []

        async def progress(event: str, data: dict[str, Any]) -> None:
            events.append((event, data))

        await orchestrator.generate(make_request(tier=Tier.PRO), progress)

        assert [e[0] for e in events] == ["phase1", "phase2", "phase2"]
        assert events[0][1]["providers"] == ["creative", "validator", "supervisor"]
        assert events[1][1] == {"status": "started"}
        assert events[2][1]["status"] == "completed"
        assert events[2][1]["quality_score"] == 88
        assert events[2][1]["fallback_used"] is False

    @pytest.mark.asyncio
    async def test_callback_errors_are_ignored(self, orchestrator: GenerationOrchestrator) -> None:
        async def progress(event: str, data: dict[str, Any]) -> None:
            raise RuntimeError("client went away")

        result = await orchestrator.generate(make_request(tier=Tier.PRO), progress)

        assert result.success is True


class TestCacheAndCircuits:
    """Result caching and circuit breakers."""

    @pytest.mark.asyncio
    async def test_repeat_request_served_from_cache(self) -> None:
        creative = FakeAdapter(ProviderRole.CREATIVE, SAMPLE_ITINERARY)
        validator = FakeAdapter(ProviderRole.VALIDATOR, SAMPLE_VALIDATION)
        orchestrator = GenerationOrchestrator(
            make_adapters(creative, validator),
            all_tiers_flags(),
            fast_config(),
            cache=InMemoryGenerationCache(),
        )

        first = await orchestrator.generate(make_request(tier=Tier.FREE, city="Seoul"))
        second = await orchestrator.generate(make_request(tier=Tier.FREE, city="  seoul "))

        assert first.metrics.cache_hits == 0
        assert second.metrics.cache_hits == 2
        assert second.data == first.data
        assert creative.calls == 1
        assert validator.calls == 1

    @pytest.mark.asyncio
    async def test_cache_hit_reports_lookup_latency(self) -> None:
        class SlowCache(InMemoryGenerationCache):
            async def _read(self, key: str) -> str | None:
                await asyncio.sleep(0.02)
                return await super()._read(key)

        creative = FakeAdapter(ProviderRole.CREATIVE, SAMPLE_ITINERARY)
        orchestrator = GenerationOrchestrator(
            make_adapters(creative),
            FeatureFlags(),
            fast_config(),
            cache=SlowCache(),
        )

        await orchestrator.generate(make_request(tier=Tier.FREE))
        second = await orchestrator.generate(make_request(tier=Tier.FREE))

        assert second.metrics.cache_hits >= 1
        assert creative.calls == 1
        assert second.metrics.provider_latencies_ms["creative"] >= 15.0

    @pytest.mark.asyncio
    async def test_tiers_do_not_share_cache_entries(self) -> None:
        creative = FakeAdapter(ProviderRole.CREATIVE, SAMPLE_ITINERARY)
        orchestrator = GenerationOrchestrator(
            make_adapters(creative),
            FeatureFlags(),
            fast_config(),
            cache=InMemoryGenerationCache(),
        )

        await orchestrator.generate(make_request(tier=Tier.FREE))
        await orchestrator.generate(make_request(tier=Tier.PRO))

        assert creative.calls == 2

    @pytest.mark.asyncio
    async def test_open_circuit_short_circuits_calls(self) -> None:
        creative = FakeAdapter(ProviderRole.CREATIVE, error=ProviderRejectedError("HTTP 403"))
        orchestrator = GenerationOrchestrator(
            make_adapters(creative),
            all_tiers_flags(),
            fast_config(),
            circuits=CircuitBreakerRegistry(failure_threshold=1, reset_timeout=60.0),
        )

        await orchestrator.generate(make_request(tier=Tier.FREE))
        assert orchestrator.circuits.get(ProviderRole.CREATIVE).state == CircuitState.OPEN

        result = await orchestrator.generate(make_request(tier=Tier.FREE))

        assert result.success is False
        assert result.failure_reason == FailureReason.REJECTED
        assert "Circuit breaker open" in (result.error or "")
        assert creative.calls == 1

    @pytest.mark.asyncio
    async def test_metrics_recorded(self, orchestrator: GenerationOrchestrator) -> None:
        await orchestrator.generate(make_request(tier=Tier.FREE))
        await orchestrator.generate(make_request(tier=Tier.PRO))

        summary = orchestrator.metrics.summary()

        assert summary["total"] == 2
        assert summary["successes"] == 2
        assert summary["by_tier"]["pro"]["total"] == 1

    @pytest.mark.asyncio
    async def test_health_and_close(self, orchestrator: GenerationOrchestrator) -> None:
        health = orchestrator.health()

        assert health["circuits"]["creative"]["state"] == "closed"
        assert health["adapters"]["supervisor"] == "fake-supervisor"

        await orchestrator.aclose()
