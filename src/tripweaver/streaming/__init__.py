"""
Streaming module for real-time generation progress.

Provides the progress stream and its Server-Sent Events (SSE)
encoding.
"""

from tripweaver.streaming.events import EventType, StreamEvent, TERMINAL_EVENTS
from tripweaver.streaming.progress import ProgressStream, StreamState
from tripweaver.streaming.sse import (
    SSE_HEADERS,
    create_sse_response,
    format_sse_event,
    parse_sse_line,
)

__all__ = [
    "EventType",
    "StreamEvent",
    "TERMINAL_EVENTS",
    "ProgressStream",
    "StreamState",
    "SSE_HEADERS",
    "create_sse_response",
    "format_sse_event",
    "parse_sse_line",
]
