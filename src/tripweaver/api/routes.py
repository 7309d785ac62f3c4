"""API routes for itinerary generation, usage and orchestrator status."""

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, Query

from tripweaver.api.components import AppComponents
from tripweaver.api.dependencies import (
    enforce_rate_limit,
    get_components,
    get_identity,
    get_service,
)
from tripweaver.identity import CallerIdentity
from tripweaver.service import GenerationService

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/itineraries/generate", dependencies=[Depends(enforce_rate_limit)])
async def generate_itinerary(
    body: Any = Body(default=None),
    identity: CallerIdentity | None = Depends(get_identity),
    service: GenerationService = Depends(get_service),
) -> dict[str, Any]:
    """
    Generate an itinerary and wait for the result.

    Body fields: ``city``, ``days`` (1-14) and optionally ``interests``,
    ``budget``, ``localnessLevel``, ``pace``, ``groupType`` and
    ``templatePrompt``.
    """
    result = await service.generate(identity, body)
    return result.to_dict()


@router.get("/usage/{usage_type}")
async def get_usage(
    usage_type: str,
    identity: CallerIdentity | None = Depends(get_identity),
    service: GenerationService = Depends(get_service),
) -> dict[str, Any]:
    """Current usage for the caller; never changes a counter."""
    decision = await service.usage(identity, usage_type)
    return {"usage_type": usage_type, **decision.to_dict()}


@router.get("/orchestrator/health")
async def orchestrator_health(
    components: AppComponents = Depends(get_components),
) -> dict[str, Any]:
    """Circuit breaker states plus cache, store and database health."""
    return await components.health()


@router.get("/orchestrator/metrics")
async def orchestrator_metrics(
    recent: int = Query(default=0, ge=0, le=100, description="Include the N most recent generations"),
    service: GenerationService = Depends(get_service),
) -> dict[str, Any]:
    """Aggregated generation metrics."""
    metrics = service.orchestrator.metrics
    summary = metrics.summary()
    if recent:
        summary["recent"] = metrics.recent(recent)
    return summary
