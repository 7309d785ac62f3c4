"""Abstract base class for generation provider adapters."""

import asyncio
import json
import logging
import time
from abc import ABC, abstractmethod
from typing import Any

import httpx
from pydantic import ValidationError

from tripweaver.models import FailureReason, ProviderResult, ProviderRole

logger = logging.getLogger(__name__)


class ProviderRejectedError(Exception):
    """The provider explicitly refused the request (auth, policy, bad input)."""

    pass


class ProviderTransportError(Exception):
    """The provider could not be reached or answered with a retryable status."""

    pass


class InvalidProviderResponseError(Exception):
    """The provider answered, but not with a usable payload."""

    pass


class ProviderAdapter(ABC):
    """
    Abstract base class for provider adapters.

    Subclasses implement ``_call``; ``invoke`` bounds it with a
    deadline and folds every failure into a ``ProviderResult`` so the
    orchestrator never sees an exception. Adapters never retry.
    """

    @property
    @abstractmethod
    def role(self) -> ProviderRole:
        """
        Role this adapter plays.

        Returns:
            ProviderRole
        """
        ...

    @property
    @abstractmethod
    def name(self) -> str:
        """
        Unique identifier for the backing provider.

        Returns:
            Provider name (e.g., 'openai', 'gemini')
        """
        ...

    @abstractmethod
    async def _call(self, payload: dict[str, Any]) -> dict[str, Any]:
        """
        Perform the provider call.

        Args:
            payload: Role-specific request payload

        Returns:
            Structured response payload

        Raises:
            ProviderRejectedError: On explicit refusal
            ProviderTransportError: On network failure or retryable status
            InvalidProviderResponseError: On malformed output
        """
        ...

    async def invoke(self, payload: dict[str, Any], timeout: float) -> ProviderResult:
        """
        Call the provider within ``timeout`` seconds.

        Only task cancellation propagates; every other failure is
        returned as a failed ``ProviderResult``.

        Args:
            payload: Role-specific request payload
            timeout: Deadline in seconds

        Returns:
            ProviderResult with latency recorded on success and failure
        """
        start = time.perf_counter()

        def elapsed() -> float:
            return (time.perf_counter() - start) * 1000

        if timeout <= 0:
            return ProviderResult.failure(
                self.role, self.name, FailureReason.TIMEOUT, 0.0, "No time budget left"
            )

        try:
            data = await asyncio.wait_for(self._call(payload), timeout)
        except asyncio.TimeoutError:
            logger.warning(f"{self.name} ({self.role.value}) timed out after {timeout:.1f}s")
            return ProviderResult.failure(
                self.role, self.name, FailureReason.TIMEOUT, elapsed(), f"Timed out after {timeout:.1f}s"
            )
        except ProviderRejectedError as e:
            logger.warning(f"{self.name} ({self.role.value}) rejected the request: {e}")
            return ProviderResult.failure(
                self.role, self.name, FailureReason.REJECTED, elapsed(), str(e)
            )
        except (InvalidProviderResponseError, ValidationError, json.JSONDecodeError) as e:
            logger.warning(f"{self.name} ({self.role.value}) returned an invalid response: {e}")
            return ProviderResult.failure(
                self.role, self.name, FailureReason.INVALID_RESPONSE, elapsed(), str(e)
            )
        except (ProviderTransportError, httpx.HTTPError) as e:
            logger.warning(f"{self.name} ({self.role.value}) transport error: {e}")
            return ProviderResult.failure(
                self.role, self.name, FailureReason.TRANSPORT_ERROR, elapsed(), str(e)
            )
        except Exception as e:
            logger.exception(f"Unexpected error from {self.name} ({self.role.value})")
            return ProviderResult.failure(
                self.role, self.name, FailureReason.TRANSPORT_ERROR, elapsed(), str(e)
            )

        return ProviderResult.ok(self.role, self.name, data, elapsed())

    async def close(self) -> None:
        """Release any connections held by the adapter."""
        pass
