"""Construction of the long-lived application components."""

import logging
from dataclasses import dataclass
from typing import Any

from tripweaver.cache import GenerationCache, open_generation_cache
from tripweaver.config import Settings
from tripweaver.db.manager import DatabaseManager
from tripweaver.generation import (
    BackgroundTaskQueue,
    CircuitBreakerRegistry,
    FeatureFlags,
    GenerationOrchestrator,
    OrchestratorConfig,
)
from tripweaver.identity import HeaderIdentityResolver, IdentityResolver, StaticTierResolver
from tripweaver.persistence import RewardNotifier, SqlResultStore
from tripweaver.providers import create_adapters
from tripweaver.quota import (
    InMemoryUsageStore,
    QuotaGate,
    RateLimiter,
    RedisUsageStore,
    SqlUsageStore,
    UsageStore,
    create_rate_limiter,
)
from tripweaver.service import GenerationService

logger = logging.getLogger(__name__)


@dataclass
class AppComponents:
    """Everything the routes need, shared across requests."""

    settings: Settings
    service: GenerationService
    identity_resolver: IdentityResolver
    rate_limiter: RateLimiter
    usage_store: UsageStore
    cache: GenerationCache | None = None
    db_manager: DatabaseManager | None = None

    async def health(self) -> dict[str, Any]:
        report: dict[str, Any] = {
            "orchestrator": self.service.orchestrator.health(),
            "usage_store": await self.usage_store.health_check(),
            "background": self.service.background.stats(),
            "active_streams": self.service.active_streams,
        }
        if self.cache is not None:
            report["cache"] = await self.cache.health_check()
        if self.db_manager is not None:
            report["database"] = {"healthy": self.db_manager.health_check()}
        return report

    async def aclose(self) -> None:
        await self.service.shutdown()
        await self.usage_store.close()
        if self.cache is not None:
            await self.cache.close()
        if self.db_manager is not None:
            self.db_manager.close()


def create_usage_store(settings: Settings, db_manager: DatabaseManager) -> UsageStore:
    """
    Select the usage counter store.

    Raises:
        ValueError: If the backend is unknown or Redis is not configured
    """
    backend = settings.quota_backend
    if backend == "memory":
        logger.warning("Using in-memory usage store; quotas are per-process")
        return InMemoryUsageStore()
    if backend == "redis":
        if not settings.redis_url:
            raise ValueError("QUOTA_BACKEND=redis requires REDIS_URL")
        return RedisUsageStore(url=settings.redis_url, prefix=settings.redis_prefix)
    if backend == "sql":
        return SqlUsageStore(db_manager)
    raise ValueError(f"Unknown quota backend: {backend}")


async def build_components(settings: Settings) -> AppComponents:
    """Wire the database, cache, providers and service from configuration."""
    if settings.database_url.startswith("sqlite:///"):
        settings.data_dir.mkdir(parents=True, exist_ok=True)

    db_manager = DatabaseManager(settings.database_url)
    db_manager.init_db()

    cache = await open_generation_cache(settings)
    logger.info(f"Generation cache: {cache.name}")

    tier_resolver = StaticTierResolver(settings.user_tiers)
    usage_store = create_usage_store(settings, db_manager)
    quota_gate = QuotaGate(
        usage_store,
        tier_resolver,
        timeout_seconds=settings.quota_timeout_seconds,
    )

    orchestrator = GenerationOrchestrator(
        adapters=create_adapters(settings),
        flags=FeatureFlags.from_settings(settings),
        config=OrchestratorConfig.from_settings(settings),
        cache=cache,
        circuits=CircuitBreakerRegistry(
            failure_threshold=settings.circuit_failure_threshold,
            reset_timeout=settings.circuit_reset_seconds,
            half_open_max_calls=settings.circuit_half_open_requests,
        ),
    )

    reward_notifier = (
        RewardNotifier(settings.reward_webhook_url) if settings.reward_webhook_url else None
    )

    service = GenerationService(
        orchestrator=orchestrator,
        quota_gate=quota_gate,
        tier_resolver=tier_resolver,
        background=BackgroundTaskQueue(),
        result_store=SqlResultStore(db_manager),
        reward_notifier=reward_notifier,
        max_request_duration=settings.max_request_duration_seconds,
        stream_timeout=settings.stream_timeout_seconds,
        heartbeat_interval=settings.stream_heartbeat_seconds,
    )

    return AppComponents(
        settings=settings,
        service=service,
        identity_resolver=HeaderIdentityResolver(settings.user_id_header),
        rate_limiter=create_rate_limiter(settings.rate_limit_algorithm),
        usage_store=usage_store,
        cache=cache,
        db_manager=db_manager,
    )
