"""Persistence of finished generations."""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx

from tripweaver.db.manager import DatabaseManager
from tripweaver.db.models import GenerationRecord
from tripweaver.models import GenerationRequest, GenerationResult

logger = logging.getLogger(__name__)


class ResultStore(ABC):
    """Stores successful generations."""

    @abstractmethod
    async def persist(self, result: GenerationResult, request: GenerationRequest) -> str:
        """
        Persist a successful result.

        Args:
            result: Successful generation result
            request: The request it answers

        Returns:
            Record identifier
        """
        ...


class SqlResultStore(ResultStore):
    """Writes ``generation_records`` rows through SQLAlchemy."""

    def __init__(self, db_manager: DatabaseManager) -> None:
        self._db = db_manager

    async def persist(self, result: GenerationResult, request: GenerationRequest) -> str:
        if not result.success:
            raise ValueError("Only successful generations are persisted")
        return await asyncio.to_thread(self._insert, result, request)

    def _insert(self, result: GenerationResult, request: GenerationRequest) -> str:
        with self._db.get_session() as session:
            record = GenerationRecord(
                request_id=request.request_id,
                user_id=request.user_id,
                tier=request.tier.value,
                city=request.params.city,
                days=request.params.days,
                success=result.success,
                quality_score=result.quality_score,
                fallback_used=result.fallback_used,
                providers_used=",".join(r.value for r in result.metrics.providers_used),
                total_latency_ms=result.metrics.total_latency_ms,
                params_json=json.dumps(request.params.to_payload()),
                itinerary_json=json.dumps(result.data),
                report_json=(
                    json.dumps(result.validation_report.to_dict())
                    if result.validation_report
                    else None
                ),
            )
            session.add(record)
            session.flush()
            logger.info(f"Persisted generation {request.request_id} as record {record.id}")
            return str(record.id)

    def get(self, request_id: str) -> dict[str, Any] | None:
        """Look up a stored generation by request id."""
        with self._db.get_session() as session:
            record = (
                session.query(GenerationRecord)
                .filter(GenerationRecord.request_id == request_id)
                .first()
            )
            if record is None:
                return None
            return {
                "id": record.id,
                "request_id": record.request_id,
                "user_id": record.user_id,
                "tier": record.tier,
                "city": record.city,
                "days": record.days,
                "quality_score": record.quality_score,
                "fallback_used": record.fallback_used,
                "providers_used": record.providers_used.split(",") if record.providers_used else [],
                "itinerary": json.loads(record.itinerary_json) if record.itinerary_json else None,
            }


class RewardNotifier:
    """
    Posts a generation-completed event to the rewards service.

    Gamification scoring lives elsewhere; this is only its trigger.
    """

    def __init__(
        self,
        url: str,
        client: httpx.AsyncClient | None = None,
        timeout: float = 5.0,
    ) -> None:
        self._url = url
        self._client = client
        self._timeout = timeout

    async def notify(self, request: GenerationRequest, result: GenerationResult) -> None:
        body = {
            "event": "itinerary_created",
            "user_id": request.user_id,
            "request_id": request.request_id,
            "city": request.params.city,
            "days": request.params.days,
        }
        if self._client is not None:
            response = await self._client.post(self._url, json=body, timeout=self._timeout)
        else:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(self._url, json=body)
        response.raise_for_status()
        logger.debug(f"Reward event sent for {request.request_id}")
