"""API key middleware guarding the public endpoints."""

import hmac
import logging
from typing import Callable

from fastapi import Request, status
from fastapi.responses import JSONResponse, Response
from starlette.middleware.base import BaseHTTPMiddleware

from tripweaver.errors import ErrorCode, GenerationError

logger = logging.getLogger(__name__)


def _unauthorized(message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_401_UNAUTHORIZED,
        content=GenerationError(ErrorCode.UNAUTHORIZED, message).to_dict(),
        headers={"WWW-Authenticate": "Bearer"},
    )


class ApiKeyMiddleware(BaseHTTPMiddleware):
    """
    FastAPI middleware for API key authentication.

    Validates the Bearer token in the Authorization header against the
    configured key. The caller's user identity is resolved separately;
    this only keeps anonymous traffic off the service.
    """

    # Paths that bypass authentication
    BYPASS_PATHS = {
        "/health",
        "/",
        "/docs",
        "/redoc",
        "/openapi.json",
    }

    def __init__(
        self,
        app,
        api_key: str,
        bypass_paths: set[str] | None = None,
    ) -> None:
        """
        Initialize API key middleware.

        Args:
            app: FastAPI application
            api_key: Expected API key value
            bypass_paths: Paths that don't require authentication
        """
        super().__init__(app)
        self._api_key = api_key
        self._bypass_paths = bypass_paths or self.BYPASS_PATHS

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Process request and validate API key."""
        if request.url.path in self._bypass_paths or request.method == "OPTIONS":
            return await call_next(request)

        auth_header = request.headers.get("Authorization")
        if not auth_header:
            return _unauthorized("Missing Authorization header")

        if not auth_header.startswith("Bearer "):
            return _unauthorized("Invalid Authorization header format. Use: Bearer <token>")

        token = auth_header[7:]  # Strip "Bearer "
        if not hmac.compare_digest(token.encode(), self._api_key.encode()):
            client_host = request.client.host if request.client else "unknown"
            logger.warning(f"Invalid API key attempt from {client_host}")
            return _unauthorized("Invalid API key")

        return await call_next(request)
