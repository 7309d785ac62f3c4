"""
Provider adapters.

One adapter per orchestration role, each turning a provider call
into a typed ``ProviderResult``.
"""

from tripweaver.config import Settings
from tripweaver.models import ProviderRole
from tripweaver.providers.base import (
    InvalidProviderResponseError,
    ProviderAdapter,
    ProviderRejectedError,
    ProviderTransportError,
)
from tripweaver.providers.http import (
    ChatCompletionAdapter,
    CreativeGeneratorAdapter,
    LocationValidatorAdapter,
    SupervisorAdapter,
)


def create_adapters(settings: Settings) -> dict[ProviderRole, ProviderAdapter]:
    """Build the three HTTP adapters from configuration."""
    return {
        ProviderRole.CREATIVE: CreativeGeneratorAdapter(
            base_url=settings.creative_base_url,
            model=settings.creative_model,
            api_key=settings.creative_api_key,
            connect_timeout=settings.http_timeout_connect,
        ),
        ProviderRole.VALIDATOR: LocationValidatorAdapter(
            base_url=settings.validator_base_url,
            model=settings.validator_model,
            api_key=settings.validator_api_key,
            connect_timeout=settings.http_timeout_connect,
        ),
        ProviderRole.SUPERVISOR: SupervisorAdapter(
            base_url=settings.supervisor_base_url,
            model=settings.supervisor_model,
            api_key=settings.supervisor_api_key,
            connect_timeout=settings.http_timeout_connect,
        ),
    }


__all__ = [
    "ProviderAdapter",
    "ProviderRejectedError",
    "ProviderTransportError",
    "InvalidProviderResponseError",
    "ChatCompletionAdapter",
    "CreativeGeneratorAdapter",
    "LocationValidatorAdapter",
    "SupervisorAdapter",
    "create_adapters",
]
