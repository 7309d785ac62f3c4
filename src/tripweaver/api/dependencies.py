"""FastAPI dependencies shared by the route modules."""

import logging

from fastapi import Request

from tripweaver.api.components import AppComponents
from tripweaver.errors import ErrorCode, GenerationError
from tripweaver.identity import CallerIdentity
from tripweaver.quota.limiter import RateLimitResult
from tripweaver.service import GenerationService

logger = logging.getLogger(__name__)


def get_components(request: Request) -> AppComponents:
    return request.app.state.components


def get_service(request: Request) -> GenerationService:
    return get_components(request).service


async def get_identity(request: Request) -> CallerIdentity | None:
    """Resolve the caller; ``None`` means unauthenticated."""
    return await get_components(request).identity_resolver.resolve(request)


async def enforce_rate_limit(request: Request) -> RateLimitResult:
    """
    Throttle request bursts per caller and path.

    Unauthenticated callers are bucketed by client address.

    Raises:
        GenerationError: ``rate_limited`` with standard rate limit headers
    """
    components = get_components(request)
    settings = components.settings

    identity = await components.identity_resolver.resolve(request)
    if identity is not None:
        bucket = f"user:{identity.user_id}:{request.url.path}"
    else:
        host = request.client.host if request.client else "unknown"
        bucket = f"ip:{host}:{request.url.path}"

    result = await components.rate_limiter.admit(
        bucket,
        window_ms=settings.rate_limit_window_ms,
        max_requests=settings.rate_limit_max_requests,
    )
    if not result.allowed:
        logger.info(f"Rate limited {bucket}")
        raise GenerationError(
            ErrorCode.RATE_LIMITED,
            "Too many requests. Please slow down.",
            {"retry_after": result.retry_after, "limit": result.limit},
            headers=result.headers(),
        )
    return result
