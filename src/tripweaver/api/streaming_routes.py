"""
Streaming routes.

``POST /itineraries/generate/stream`` answers with Server-Sent Events:
one ``start`` event, progress and phase events, periodic heartbeats,
and exactly one terminal ``complete`` or ``error`` event.
"""

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends
from fastapi.responses import StreamingResponse

from tripweaver.api.dependencies import enforce_rate_limit, get_identity, get_service
from tripweaver.identity import CallerIdentity
from tripweaver.service import GenerationService
from tripweaver.streaming.sse import create_sse_response

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/itineraries/generate/stream", dependencies=[Depends(enforce_rate_limit)])
async def stream_itinerary(
    body: Any = Body(default=None),
    identity: CallerIdentity | None = Depends(get_identity),
    service: GenerationService = Depends(get_service),
) -> StreamingResponse:
    """
    Generate an itinerary with live progress.

    Authentication, validation and quota refusals arrive as the
    stream's terminal ``error`` event, not as HTTP errors. A client
    disconnect closes the stream; the generation itself is not
    cancelled mid-call.
    """
    stream = service.open_stream(identity, body)
    logger.info(f"Opened progress stream {stream.stream_id}")
    return create_sse_response(stream.sse())
