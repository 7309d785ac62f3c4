"""Circuit breakers guarding each provider role."""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from tripweaver.models import ProviderRole

logger = logging.getLogger(__name__)


class CircuitState(Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, reject requests
    HALF_OPEN = "half_open"  # Testing if recovered


@dataclass
class CircuitBreaker:
    """
    Circuit breaker for a provider role.

    Opens after ``failure_threshold`` consecutive failures, lets a
    limited number of trial calls through after ``reset_timeout``,
    and closes again on the first trial success.
    """

    name: str = "provider"
    """Label used in logs and health output."""

    failure_threshold: int = 5
    """Consecutive failures before opening the circuit."""

    reset_timeout: float = 60.0
    """Seconds to wait before testing recovery."""

    half_open_max_calls: int = 1
    """Trial calls allowed while half-open."""

    # Internal state
    _failure_count: int = 0
    _state: CircuitState = CircuitState.CLOSED
    _opened_at: float | None = None
    _half_open_calls: int = 0
    _clock: Any = field(default=time.monotonic, repr=False)

    @property
    def state(self) -> CircuitState:
        """Current circuit state."""
        if self._state == CircuitState.OPEN and self._opened_at is not None:
            if self._clock() - self._opened_at >= self.reset_timeout:
                self._state = CircuitState.HALF_OPEN
                self._half_open_calls = 0
                logger.info(f"Circuit {self.name} half-open, allowing trial calls")
        return self._state

    def allow_request(self) -> bool:
        """
        Check whether a call may be dispatched.

        In the half-open state each admitted call uses up one trial slot.
        """
        state = self.state
        if state == CircuitState.CLOSED:
            return True
        if state == CircuitState.HALF_OPEN and self._half_open_calls < self.half_open_max_calls:
            self._half_open_calls += 1
            return True
        return False

    def record_success(self) -> None:
        """Record a successful request."""
        if self._state != CircuitState.CLOSED:
            logger.info(f"Circuit {self.name} closed after successful trial")
        self._failure_count = 0
        self._state = CircuitState.CLOSED
        self._opened_at = None

    def record_failure(self) -> None:
        """Record a failed request."""
        self._failure_count += 1

        if self._state == CircuitState.HALF_OPEN or self._failure_count >= self.failure_threshold:
            if self._state != CircuitState.OPEN:
                logger.warning(
                    f"Circuit {self.name} opened after {self._failure_count} failures"
                )
            self._state = CircuitState.OPEN
            self._opened_at = self._clock()

    def reset(self) -> None:
        """Reset the circuit breaker."""
        self._failure_count = 0
        self._state = CircuitState.CLOSED
        self._opened_at = None
        self._half_open_calls = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "failure_count": self._failure_count,
            "failure_threshold": self.failure_threshold,
        }


class CircuitBreakerRegistry:
    """One breaker per provider role."""

    def __init__(
        self,
        failure_threshold: int = 5,
        reset_timeout: float = 60.0,
        half_open_max_calls: int = 1,
    ) -> None:
        self._breakers = {
            role: CircuitBreaker(
                name=role.value,
                failure_threshold=failure_threshold,
                reset_timeout=reset_timeout,
                half_open_max_calls=half_open_max_calls,
            )
            for role in ProviderRole
        }

    def get(self, role: ProviderRole) -> CircuitBreaker:
        return self._breakers[role]

    def states(self) -> dict[str, dict[str, Any]]:
        return {role.value: breaker.to_dict() for role, breaker in self._breakers.items()}

    def reset_all(self) -> None:
        for breaker in self._breakers.values():
            breaker.reset()
