"""HTTP provider adapters for OpenAI-compatible chat completion APIs."""

import json
import logging
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field

from tripweaver.models import ProviderRole
from tripweaver.providers.base import (
    InvalidProviderResponseError,
    ProviderAdapter,
    ProviderRejectedError,
    ProviderTransportError,
)
from tripweaver.providers.prompts import (
    CREATIVE_SYSTEM_PROMPT,
    SUPERVISOR_SYSTEM_PROMPT,
    VALIDATOR_SYSTEM_PROMPT,
    creative_user_prompt,
    supervisor_user_prompt,
    validator_user_prompt,
)

logger = logging.getLogger(__name__)

REJECTED_STATUSES = {400, 401, 403, 404, 422}


# Pydantic models for response validation
class ChatMessage(BaseModel):
    role: str = "assistant"
    content: str | None = None


class ChatChoice(BaseModel):
    message: ChatMessage
    finish_reason: str | None = None


class ChatCompletion(BaseModel):
    """Response from a /chat/completions endpoint."""

    choices: list[ChatChoice] = Field(..., min_length=1)


class Activity(BaseModel):
    """A single stop in a day plan."""

    model_config = ConfigDict(extra="allow")

    name: str = Field(..., min_length=1)
    time: str | None = None
    description: str | None = None
    category: str | None = None
    address: str | None = None
    cost: str | None = None


class DayPlan(BaseModel):
    model_config = ConfigDict(extra="allow")

    day: int = Field(..., ge=1)
    title: str | None = None
    activities: list[Activity] = Field(..., min_length=1)


class GeneratedItinerary(BaseModel):
    """Itinerary produced by the creative generator."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    title: str
    subtitle: str | None = None
    city: str
    local_score: float | None = Field(default=None, alias="localScore")
    estimated_cost: str | None = Field(default=None, alias="estimatedCost")
    highlights: list[str] = Field(default_factory=list)
    days: list[DayPlan] = Field(..., min_length=1)


class Issue(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: str = "quality"
    severity: str = "warning"
    message: str
    day_index: int | None = Field(default=None, alias="dayIndex")
    activity_index: int | None = Field(default=None, alias="activityIndex")


class LocationValidation(BaseModel):
    """Validator response."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    city_verified: bool = Field(default=True, alias="cityVerified")
    verified_locations: list[dict[str, Any]] = Field(default_factory=list, alias="verifiedLocations")
    issues: list[Issue] = Field(default_factory=list)


class SupervisorReview(BaseModel):
    """Supervisor response."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    approved: bool
    quality_score: float | None = Field(default=None, alias="qualityScore")
    issues: list[Issue] = Field(default_factory=list)
    suggestions: list[dict[str, Any]] = Field(default_factory=list)
    revised_itinerary: GeneratedItinerary | None = Field(default=None, alias="revisedItinerary")


def _strip_fences(content: str) -> str:
    """Remove a Markdown code fence some models wrap JSON in."""
    text = content.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else ""
        if text.rstrip().endswith("```"):
            text = text.rstrip()[:-3]
    return text.strip()


class ChatCompletionAdapter(ProviderAdapter):
    """
    Base adapter for OpenAI-compatible ``/chat/completions`` endpoints.

    Sends a system and a user prompt, asks for a JSON object and
    returns the parsed content. HTTP status codes are mapped to the
    adapter failure taxonomy: explicit refusals are ``rejected``, 429
    and 5xx are transport errors.
    """

    def __init__(
        self,
        base_url: str,
        model: str,
        api_key: str | None = None,
        provider_name: str | None = None,
        client: httpx.AsyncClient | None = None,
        connect_timeout: float = 10.0,
        temperature: float = 0.7,
    ) -> None:
        """
        Initialize the adapter.

        Args:
            base_url: API base URL (``/chat/completions`` is appended)
            model: Model identifier sent with each request
            api_key: Bearer token (requests are sent unauthenticated if None)
            provider_name: Name reported in results
            client: Preconfigured client (tests inject a mock transport)
            connect_timeout: TCP connect timeout in seconds
            temperature: Sampling temperature
        """
        self._base_url = base_url.rstrip("/")
        self._model = model
        self._api_key = api_key
        self._provider_name = provider_name
        self._client = client
        self._owns_client = client is None
        self._connect_timeout = connect_timeout
        self._temperature = temperature

        if not api_key:
            logger.warning(f"No API key configured for {self.name} - requests will likely be rejected")

    @property
    def name(self) -> str:
        return self._provider_name or self.default_name

    @property
    def default_name(self) -> str:
        return "openai"

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            headers = {"Content-Type": "application/json"}
            if self._api_key:
                headers["Authorization"] = f"Bearer {self._api_key}"
            # The overall deadline is enforced by invoke(); only bound the connect here
            self._client = httpx.AsyncClient(
                headers=headers,
                timeout=httpx.Timeout(None, connect=self._connect_timeout),
            )
            self._owns_client = True
        return self._client

    async def _complete(self, system_prompt: str, user_prompt: str) -> dict[str, Any]:
        """Send one chat completion and parse the JSON content."""
        body = {
            "model": self._model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "response_format": {"type": "json_object"},
            "temperature": self._temperature,
        }

        response = await self._get_client().post(f"{self._base_url}/chat/completions", json=body)

        if response.status_code in REJECTED_STATUSES:
            raise ProviderRejectedError(f"HTTP {response.status_code}: {response.text[:200]}")
        if response.status_code == 429 or response.status_code >= 500:
            raise ProviderTransportError(f"HTTP {response.status_code}")
        if response.status_code >= 300:
            raise InvalidProviderResponseError(f"Unexpected HTTP {response.status_code}")

        completion = ChatCompletion.model_validate(response.json())
        choice = completion.choices[0]
        if choice.finish_reason == "content_filter":
            raise ProviderRejectedError("Response blocked by content filter")
        if not choice.message.content:
            raise InvalidProviderResponseError("Empty completion content")

        content = json.loads(_strip_fences(choice.message.content))
        if not isinstance(content, dict):
            raise InvalidProviderResponseError("Completion content is not a JSON object")
        return content

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


class CreativeGeneratorAdapter(ChatCompletionAdapter):
    """
    Creative generator: drafts the full itinerary.

    Payload: ``{"params": {...}}``
    """

    @property
    def role(self) -> ProviderRole:
        return ProviderRole.CREATIVE

    @property
    def default_name(self) -> str:
        return "openai"

    async def _call(self, payload: dict[str, Any]) -> dict[str, Any]:
        content = await self._complete(
            CREATIVE_SYSTEM_PROMPT, creative_user_prompt(payload["params"])
        )
        itinerary = GeneratedItinerary.model_validate(content)
        return itinerary.model_dump(exclude_none=True)


class LocationValidatorAdapter(ChatCompletionAdapter):
    """
    Location validator: checks and enriches the requested destination.

    Payload: ``{"params": {...}}``
    """

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        kwargs.setdefault("temperature", 0.2)
        super().__init__(*args, **kwargs)

    @property
    def role(self) -> ProviderRole:
        return ProviderRole.VALIDATOR

    @property
    def default_name(self) -> str:
        return "gemini"

    async def _call(self, payload: dict[str, Any]) -> dict[str, Any]:
        content = await self._complete(
            VALIDATOR_SYSTEM_PROMPT, validator_user_prompt(payload["params"])
        )
        validation = LocationValidation.model_validate(content)
        return validation.model_dump(exclude_none=True)


class SupervisorAdapter(ChatCompletionAdapter):
    """
    Supervisor: reviews the Phase 1 itinerary and may revise it.

    Payload: ``{"params", "itinerary", "preliminary_report", "supervision_level"}``
    """

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        kwargs.setdefault("temperature", 0.2)
        super().__init__(*args, **kwargs)

    @property
    def role(self) -> ProviderRole:
        return ProviderRole.SUPERVISOR

    @property
    def default_name(self) -> str:
        return "anthropic"

    async def _call(self, payload: dict[str, Any]) -> dict[str, Any]:
        content = await self._complete(
            SUPERVISOR_SYSTEM_PROMPT,
            supervisor_user_prompt(
                payload["params"],
                payload["itinerary"],
                payload.get("preliminary_report"),
                payload.get("supervision_level", "basic"),
            ),
        )
        review = SupervisorReview.model_validate(content)
        return review.model_dump(exclude_none=True)
