"""Error taxonomy shared by the blocking and streaming entry points."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Stable, machine-readable error codes."""

    UNAUTHORIZED = "unauthorized"
    VALIDATION_ERROR = "validation_error"
    LIMIT_EXCEEDED = "limit_exceeded"
    RATE_LIMITED = "rate_limited"
    GENERATION_FAILED = "generation_failed"
    TIMEOUT = "timeout"
    INTERNAL_ERROR = "internal_error"


HTTP_STATUS = {
    ErrorCode.UNAUTHORIZED: 401,
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.LIMIT_EXCEEDED: 429,
    ErrorCode.RATE_LIMITED: 429,
    ErrorCode.GENERATION_FAILED: 502,
    ErrorCode.TIMEOUT: 504,
    ErrorCode.INTERNAL_ERROR: 500,
}


class GenerationError(Exception):
    """A failure surfaced to the caller with a stable code."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.code = code
        self.message = message
        self.details = details or {}
        self.headers = headers or {}
        super().__init__(f"{code.value}: {message}")

    @property
    def status_code(self) -> int:
        return HTTP_STATUS[self.code]

    def to_dict(self) -> dict[str, Any]:
        """Body of an HTTP error response."""
        error: dict[str, Any] = {"code": self.code.value, "message": self.message}
        if self.details:
            error["details"] = self.details
        return {"error": error}

    def to_event_data(self) -> dict[str, Any]:
        """Payload of a stream error event."""
        return {
            "error": self.code.value,
            "message": self.message,
            **self.details,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }


class QuotaStoreError(Exception):
    """Raised when the usage counter store cannot be reached."""

    pass
