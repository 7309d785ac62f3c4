"""
Server-Sent Events (SSE) formatting and responses.

Each progress event is sent as a single ``data:`` line holding the
JSON-encoded event.
"""

from __future__ import annotations

import json
from typing import Any, AsyncIterator

from fastapi.responses import StreamingResponse

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",  # Disable nginx buffering
}


def format_sse_event(
    data: Any,
    event: str | None = None,
    id: str | None = None,
    retry: int | None = None,
) -> str:
    """
    Format a Server-Sent Event.

    Args:
        data: Event data (will be JSON encoded if not a string)
        event: Optional event type
        id: Optional event ID
        retry: Optional retry time in milliseconds

    Returns:
        Formatted SSE string
    """
    lines = []

    if id is not None:
        lines.append(f"id: {id}")

    if event is not None:
        lines.append(f"event: {event}")

    if retry is not None:
        lines.append(f"retry: {retry}")

    data_str = data if isinstance(data, str) else json.dumps(data, default=str)

    # Split multi-line data
    for line in data_str.split("\n"):
        lines.append(f"data: {line}")

    return "\n".join(lines) + "\n\n"


def parse_sse_line(line: str) -> dict[str, Any] | None:
    """Decode one ``data:`` line back into an event dict."""
    if not line.startswith("data:"):
        return None
    payload = line[len("data:"):].strip()
    if not payload:
        return None
    return json.loads(payload)


def create_sse_response(stream: AsyncIterator[str]) -> StreamingResponse:
    """
    Create a FastAPI StreamingResponse for SSE.

    Args:
        stream: Async iterator yielding formatted SSE messages

    Returns:
        FastAPI StreamingResponse
    """
    return StreamingResponse(
        stream,
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
