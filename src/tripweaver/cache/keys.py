"""Cache keys for provider results."""

import hashlib
import json
from typing import Any

from tripweaver.models import ItineraryParams, ProviderRole, Tier


def normalize_params(params: ItineraryParams) -> dict[str, Any]:
    """
    Reduce request parameters to the fields that change the output.

    City and interests are case-folded and interests are
    de-duplicated and sorted, so trivially different requests share
    an entry.
    """
    return {
        "city": params.city.strip().lower(),
        "days": params.days,
        "interests": sorted({i.strip().lower() for i in params.interests}),
        "budget": params.budget,
        "pace": params.pace,
        "group_type": params.group_type,
        "localness_level": params.localness_level,
        "template_prompt": params.template_prompt,
    }


def generation_cache_key(
    role: ProviderRole,
    params: ItineraryParams,
    tier: Tier,
) -> str:
    """
    Build the cache key for one provider role.

    Args:
        role: Provider role whose result is cached
        params: Request parameters
        tier: Caller tier (tiers never share entries)

    Returns:
        Key of the form ``gen:<role>:<tier>:<digest>``
    """
    canonical = json.dumps(normalize_params(params), sort_keys=True, separators=(",", ":"))
    digest = hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:32]
    return f"gen:{role.value}:{tier.value}:{digest}"
