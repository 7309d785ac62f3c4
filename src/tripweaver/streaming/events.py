"""Progress stream event types."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from tripweaver.errors import ErrorCode, GenerationError


class EventType(str, Enum):
    """Kinds of progress stream events."""

    START = "start"
    PROGRESS = "progress"
    PHASE1 = "phase1"
    PHASE2 = "phase2"
    COMPLETE = "complete"
    ERROR = "error"
    HEARTBEAT = "heartbeat"


TERMINAL_EVENTS = {EventType.COMPLETE, EventType.ERROR}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class StreamEvent:
    """One message on the progress stream."""

    type: EventType
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=_now)

    @property
    def is_terminal(self) -> bool:
        return self.type in TERMINAL_EVENTS

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "data": self.data,
            "timestamp": self.timestamp,
        }

    @classmethod
    def start(cls, message: str = "Starting itinerary generation...") -> StreamEvent:
        return cls(EventType.START, {"message": message})

    @classmethod
    def progress(cls, message: str, progress: int) -> StreamEvent:
        return cls(EventType.PROGRESS, {"message": message, "progress": progress})

    @classmethod
    def heartbeat(cls) -> StreamEvent:
        return cls(EventType.HEARTBEAT, {})

    @classmethod
    def complete(cls, data: dict[str, Any]) -> StreamEvent:
        return cls(EventType.COMPLETE, data)

    @classmethod
    def error(cls, error: GenerationError) -> StreamEvent:
        return cls(EventType.ERROR, error.to_event_data())

    @classmethod
    def error_code(cls, code: ErrorCode, message: str, **details: Any) -> StreamEvent:
        return cls.error(GenerationError(code, message, details))
