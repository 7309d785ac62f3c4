"""
Tripweaver API Client
HTTP client with sync and async support.
"""

from __future__ import annotations

import json
import os
from typing import AsyncGenerator, Generator, Optional

import httpx

from .models import ItineraryResult, ProgressEvent, UsageStatus


class TripweaverAPIError(Exception):
    """Structured error returned by the API."""

    def __init__(self, status_code: int, code: str, message: str, details: Optional[dict] = None):
        self.status_code = status_code
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(f"{code}: {message}")

    @classmethod
    def from_response(cls, response: httpx.Response) -> "TripweaverAPIError":
        try:
            error = response.json().get("error", {})
        except ValueError:
            error = {}
        return cls(
            status_code=response.status_code,
            code=error.get("code", "http_error"),
            message=error.get("message", response.text or response.reason_phrase),
            details=error.get("details"),
        )


def _parse_event_line(line: str) -> Optional[ProgressEvent]:
    if not line.startswith("data:"):
        return None
    payload = line[len("data:"):].strip()
    if not payload:
        return None
    return ProgressEvent.from_dict(json.loads(payload))


def _trip_body(
    city: str,
    days: int,
    interests: Optional[list[str]],
    extra: dict,
) -> dict:
    body = {"city": city, "days": days, **{k: v for k, v in extra.items() if v is not None}}
    if interests:
        body["interests"] = interests
    return body


class TripweaverClient:
    """
    Python client for the Tripweaver API.

    Example:
        ```python
        client = TripweaverClient(user_id="user-123")

        result = client.generate("Seoul", days=3, interests=["food", "markets"])
        print(result.itinerary["title"])

        for event in client.generate_stream("Lisbon", days=2):
            print(event.type, event.message)
        ```
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        api_key: Optional[str] = None,
        user_id: Optional[str] = None,
        timeout: float = 330.0,
    ):
        """
        Initialize the Tripweaver client.

        Args:
            base_url: API server URL (default: localhost:8000)
            api_key: Optional API key for authentication
            user_id: Caller identity sent as X-User-Id
            timeout: Request timeout in seconds
        """
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key or os.getenv("TRIPWEAVER_API_KEY")
        self.user_id = user_id or os.getenv("TRIPWEAVER_USER_ID")
        self.timeout = timeout

        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        if self.user_id:
            headers["X-User-Id"] = self.user_id

        self._client = httpx.Client(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout,
        )

    def __enter__(self) -> TripweaverClient:
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    @staticmethod
    def _check(response: httpx.Response) -> dict:
        if response.status_code >= 400:
            raise TripweaverAPIError.from_response(response)
        return response.json()

    # =========================================================================
    # Health & Info
    # =========================================================================

    def health(self) -> dict:
        """Check API health status."""
        return self._check(self._client.get("/health"))

    def is_healthy(self) -> bool:
        """Quick health check returning boolean."""
        try:
            return self.health().get("status") == "healthy"
        except (httpx.HTTPError, TripweaverAPIError):
            return False

    def orchestrator_health(self) -> dict:
        """Circuit breaker, cache and store status."""
        return self._check(self._client.get("/v1/orchestrator/health"))

    def metrics(self, recent: int = 0) -> dict:
        """Aggregated generation metrics."""
        return self._check(self._client.get("/v1/orchestrator/metrics", params={"recent": recent}))

    # =========================================================================
    # Generation
    # =========================================================================

    def generate(
        self,
        city: str,
        days: int,
        interests: Optional[list[str]] = None,
        **params,
    ) -> ItineraryResult:
        """
        Generate an itinerary and wait for it.

        Args:
            city: Destination city
            days: Trip length (1-14)
            interests: Optional interest keywords
            **params: budget, localnessLevel, pace, groupType, templatePrompt

        Raises:
            TripweaverAPIError: On refusal or failed generation
        """
        body = _trip_body(city, days, interests, params)
        response = self._client.post("/v1/itineraries/generate", json=body)
        return ItineraryResult.from_dict(self._check(response))

    def generate_stream(
        self,
        city: str,
        days: int,
        interests: Optional[list[str]] = None,
        **params,
    ) -> Generator[ProgressEvent, None, None]:
        """
        Generate an itinerary with live progress events.

        Yields events up to and including the terminal one.
        """
        body = _trip_body(city, days, interests, params)
        with self._client.stream("POST", "/v1/itineraries/generate/stream", json=body) as response:
            if response.status_code >= 400:
                response.read()
                raise TripweaverAPIError.from_response(response)
            for line in response.iter_lines():
                event = _parse_event_line(line)
                if event is None:
                    continue
                yield event
                if event.is_terminal:
                    break

    # =========================================================================
    # Usage
    # =========================================================================

    def usage(self, usage_type: str = "itineraries_created") -> UsageStatus:
        """Current quota usage; never consumes anything."""
        return UsageStatus.from_dict(self._check(self._client.get(f"/v1/usage/{usage_type}")))


class AsyncTripweaverClient:
    """Async version of TripweaverClient."""

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        api_key: Optional[str] = None,
        user_id: Optional[str] = None,
        timeout: float = 330.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key or os.getenv("TRIPWEAVER_API_KEY")
        self.user_id = user_id or os.getenv("TRIPWEAVER_USER_ID")

        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        if self.user_id:
            headers["X-User-Id"] = self.user_id

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout,
        )

    async def __aenter__(self) -> AsyncTripweaverClient:
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    async def health(self) -> dict:
        return TripweaverClient._check(await self._client.get("/health"))

    async def generate(
        self,
        city: str,
        days: int,
        interests: Optional[list[str]] = None,
        **params,
    ) -> ItineraryResult:
        body = _trip_body(city, days, interests, params)
        response = await self._client.post("/v1/itineraries/generate", json=body)
        return ItineraryResult.from_dict(TripweaverClient._check(response))

    async def generate_stream(
        self,
        city: str,
        days: int,
        interests: Optional[list[str]] = None,
        **params,
    ) -> AsyncGenerator[ProgressEvent, None]:
        body = _trip_body(city, days, interests, params)
        async with self._client.stream(
            "POST", "/v1/itineraries/generate/stream", json=body
        ) as response:
            if response.status_code >= 400:
                await response.aread()
                raise TripweaverAPIError.from_response(response)
            async for line in response.aiter_lines():
                event = _parse_event_line(line)
                if event is None:
                    continue
                yield event
                if event.is_terminal:
                    break

    async def usage(self, usage_type: str = "itineraries_created") -> UsageStatus:
        response = await self._client.get(f"/v1/usage/{usage_type}")
        return UsageStatus.from_dict(TripweaverClient._check(response))
