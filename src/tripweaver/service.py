"""
Generation service.

Ties the pieces together for both entry points. Each request goes
through identity, parameter validation and the quota gate before the
orchestrator runs; successful results are persisted in the
background.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError

from tripweaver.errors import ErrorCode, GenerationError
from tripweaver.generation.background import BackgroundTaskQueue
from tripweaver.generation.orchestrator import GenerationOrchestrator
from tripweaver.identity import CallerIdentity, TierResolver
from tripweaver.models import (
    FailureReason,
    GenerationRequest,
    GenerationResult,
    ItineraryParams,
    UsageType,
)
from tripweaver.persistence import ResultStore, RewardNotifier
from tripweaver.quota.gate import QuotaDecision, QuotaGate
from tripweaver.streaming.events import EventType, StreamEvent
from tripweaver.streaming.progress import ProgressStream

logger = logging.getLogger(__name__)


def _validation_details(error: ValidationError) -> dict[str, Any]:
    return {
        "errors": [
            {
                "field": ".".join(str(part) for part in err["loc"]),
                "message": err["msg"],
            }
            for err in error.errors()
        ]
    }


class GenerationService:
    """Entry point logic shared by the blocking and streaming routes."""

    def __init__(
        self,
        orchestrator: GenerationOrchestrator,
        quota_gate: QuotaGate,
        tier_resolver: TierResolver,
        background: BackgroundTaskQueue | None = None,
        result_store: ResultStore | None = None,
        reward_notifier: RewardNotifier | None = None,
        max_request_duration: float = 120.0,
        stream_timeout: float = 300.0,
        heartbeat_interval: float = 30.0,
    ) -> None:
        """
        Initialize the service.

        Args:
            orchestrator: Shared generation orchestrator
            quota_gate: Usage quota gate
            tier_resolver: Tier lookup for callers
            background: Queue for post-generation work
            result_store: Where successful generations are saved
            reward_notifier: Optional rewards webhook
            max_request_duration: Overall budget for one generation in seconds
            stream_timeout: Hard limit on a progress stream in seconds
            heartbeat_interval: Seconds between stream heartbeats

        Raises:
            ValueError: If the stream timeout does not cover both phases
        """
        config = orchestrator.config
        if stream_timeout <= config.phase1_timeout + config.phase2_timeout:
            raise ValueError(
                f"stream_timeout ({stream_timeout}s) must exceed phase1 + phase2 timeouts "
                f"({config.phase1_timeout + config.phase2_timeout}s)"
            )

        self._orchestrator = orchestrator
        self._quota = quota_gate
        self._tiers = tier_resolver
        self._background = background or BackgroundTaskQueue()
        self._result_store = result_store
        self._reward_notifier = reward_notifier
        self._max_request_duration = max_request_duration
        self._stream_timeout = stream_timeout
        self._heartbeat_interval = heartbeat_interval
        self._active_streams = 0

    @property
    def orchestrator(self) -> GenerationOrchestrator:
        return self._orchestrator

    @property
    def quota(self) -> QuotaGate:
        return self._quota

    @property
    def background(self) -> BackgroundTaskQueue:
        return self._background

    @property
    def active_streams(self) -> int:
        return self._active_streams

    # --- Request steps ---

    @staticmethod
    def require_identity(identity: CallerIdentity | None) -> CallerIdentity:
        if identity is None:
            raise GenerationError(ErrorCode.UNAUTHORIZED, "Authentication required")
        return identity

    @staticmethod
    def parse_params(body: Any) -> ItineraryParams:
        if not isinstance(body, dict):
            raise GenerationError(ErrorCode.VALIDATION_ERROR, "Request body must be a JSON object")
        try:
            return ItineraryParams.model_validate(body)
        except ValidationError as e:
            raise GenerationError(
                ErrorCode.VALIDATION_ERROR, "Invalid request", _validation_details(e)
            ) from e

    async def charge(self, user_id: str) -> QuotaDecision:
        """
        Charge one itinerary against the caller's quota.

        Raises:
            GenerationError: ``limit_exceeded`` if the quota refuses
        """
        decision = await self._quota.check_and_increment(user_id, UsageType.ITINERARIES_CREATED)
        if not decision.allowed:
            usage = decision.usage
            message = (
                "Usage could not be verified. Please try again shortly."
                if decision.reason in ("store_unavailable", "tier_unavailable")
                else "You have reached your itinerary limit for this period."
            )
            raise GenerationError(
                ErrorCode.LIMIT_EXCEEDED,
                message,
                {
                    "current_usage": usage.current_usage,
                    "limit": usage.limit,
                    "period_resets_at": usage.period_resets_at.isoformat(),
                },
            )
        return decision

    async def _build_request(self, identity: CallerIdentity, params: ItineraryParams) -> GenerationRequest:
        decision = await self.charge(identity.user_id)
        tier = decision.tier or await self._tiers.resolve_tier(identity.user_id)
        return GenerationRequest.create(
            user_id=identity.user_id,
            tier=tier,
            params=params,
            max_duration_seconds=self._max_request_duration,
        )

    @staticmethod
    def failure_error(result: GenerationResult) -> GenerationError:
        details = {"request_id": result.request_id}
        if result.failure_reason == FailureReason.TIMEOUT:
            return GenerationError(
                ErrorCode.TIMEOUT, "Itinerary generation timed out. Please try again.", details
            )
        return GenerationError(
            ErrorCode.GENERATION_FAILED,
            result.error or "Itinerary generation failed",
            details,
        )

    def _schedule_post_processing(self, request: GenerationRequest, result: GenerationResult) -> None:
        store = self._result_store
        if store is not None:
            self._background.submit(
                f"persist:{request.request_id}", lambda: store.persist(result, request)
            )
        notifier = self._reward_notifier
        if notifier is not None:
            self._background.submit(
                f"reward:{request.request_id}", lambda: notifier.notify(request, result)
            )

    # --- Blocking entry point ---

    async def generate(self, identity: CallerIdentity | None, body: Any) -> GenerationResult:
        """
        Run one generation and return its result.

        Raises:
            GenerationError: On any refusal or a failed generation
        """
        caller = self.require_identity(identity)
        params = self.parse_params(body)
        request = await self._build_request(caller, params)

        result = await self._orchestrator.generate(request)
        if not result.success:
            raise self.failure_error(result)

        self._schedule_post_processing(request, result)
        return result

    # --- Streaming entry point ---

    def open_stream(self, identity: CallerIdentity | None, body: Any) -> ProgressStream:
        """
        Create the progress stream for one generation.

        Nothing runs until the stream is consumed; every refusal is
        reported as a terminal ``error`` event.
        """

        async def pipeline(stream: ProgressStream) -> None:
            caller = self.require_identity(identity)

            stream.emit(StreamEvent.progress("Validating request...", 10))
            params = self.parse_params(body)
            request = await self._build_request(caller, params)

            async def on_progress(event: str, data: dict[str, Any]) -> None:
                if event == "phase1":
                    stream.emit(
                        StreamEvent(
                            EventType.PHASE1,
                            {
                                "message": "Generating your itinerary...",
                                "progress": 20,
                                "providers": data.get("providers", []),
                            },
                        )
                    )
                elif event == "phase2" and data.get("status") == "started":
                    stream.emit(
                        StreamEvent(
                            EventType.PHASE2,
                            {"message": "Running quality assurance...", "progress": 50},
                        )
                    )
                elif event == "phase2":
                    phase2: dict[str, Any] = {
                        "message": "Quality assurance complete",
                        "progress": 80,
                        "fallback_used": data.get("fallback_used", False),
                    }
                    if data.get("quality_score") is not None:
                        phase2["quality_score"] = data["quality_score"]
                    stream.emit(StreamEvent(EventType.PHASE2, phase2))

            result = await self._orchestrator.generate(request, on_progress)
            if not result.success:
                raise self.failure_error(result)

            stream.emit(StreamEvent.progress("Saving itinerary...", 90))
            self._schedule_post_processing(request, result)

            meta: dict[str, Any] = {
                "validation_report": (
                    result.validation_report.to_dict() if result.validation_report else None
                ),
                "fallback_used": result.fallback_used,
                "metrics": result.metrics.to_dict(),
            }
            if result.quality_score is not None:
                meta["quality_score"] = result.quality_score
            stream.emit(
                StreamEvent.complete(
                    {
                        "success": True,
                        "request_id": result.request_id,
                        "itinerary": result.data,
                        "meta": meta,
                    }
                )
            )

        opened = False

        def on_open() -> None:
            nonlocal opened
            opened = True
            self._active_streams += 1

        def on_close(reason: str) -> None:
            if opened:
                self._active_streams -= 1
            logger.info(f"[stream {stream.stream_id}] closed: {reason}")

        stream = ProgressStream(
            pipeline,
            heartbeat_interval=self._heartbeat_interval,
            timeout=self._stream_timeout,
            on_close=on_close,
            on_open=on_open,
        )
        return stream

    # --- Usage check ---

    async def usage(self, identity: CallerIdentity | None, usage_type: str) -> QuotaDecision:
        caller = self.require_identity(identity)
        try:
            kind = UsageType(usage_type)
        except ValueError as e:
            raise GenerationError(
                ErrorCode.VALIDATION_ERROR,
                f"Unknown usage type: {usage_type}",
                {"allowed": [t.value for t in UsageType]},
            ) from e
        return await self._quota.status(caller.user_id, kind)

    async def shutdown(self, drain_timeout: float = 10.0) -> None:
        await self._background.drain(drain_timeout)
        await self._orchestrator.aclose()
