# =============================================================================
# Relay -- Realtime Relay Server
# =============================================================================

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from enum import Enum, auto
from typing import Any, TypeVar

from .config import CircuitBreakerConfig

logger = logging.getLogger("relay.circuit_breaker")

T = TypeVar("T")


class CircuitState(Enum):
    """Circuit breaker states."""

    CLOSED = auto()
    OPEN = auto()
    HALF_OPEN = auto()


class CircuitBreakerOpenError(Exception):
    """Raised when the circuit breaker is OPEN and rejects a call."""

    def __init__(self, message: str, retry_after: float | None = None):
        super().__init__(message)
        self.retry_after = retry_after


class CircuitBreaker:
    """Fail fast while the backend is down.

    State machine: CLOSED -> OPEN -> HALF_OPEN -> CLOSED.

    * **CLOSED** -- calls go through; consecutive failures are counted.
    * **OPEN** -- calls are rejected with :class:`CircuitBreakerOpenError`
      until *reset_timeout_seconds* has elapsed.
    * **HALF_OPEN** -- a limited number of trial calls go through; enough
      successes close the breaker, any failure re-opens it.

    State changes happen between awaits on a single event loop, so no lock
    is taken.
    """

    def __init__(self, config: CircuitBreakerConfig):
        self.name = config.name
        self.config = config

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._opened_at: float | None = None
        self._half_open_calls = 0

    @property
    def state(self) -> CircuitState:
        return self._state

    async def call(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Execute *func* with circuit breaker protection."""
        if not self._can_execute():
            raise CircuitBreakerOpenError(
                f"Circuit breaker {self.name} is OPEN", retry_after=self._retry_after()
            )

        try:
            result = await func(*args, **kwargs)
        except asyncio.CancelledError:
            # a cancelled call gives its half-open slot back
            if self._state == CircuitState.HALF_OPEN:
                self._half_open_calls = max(0, self._half_open_calls - 1)
            raise
        except Exception as e:
            if self._should_ignore_exception(e):
                logger.debug("Circuit breaker %s: ignoring %s", self.name, type(e).__name__)
                self._on_success()
            else:
                self._on_failure(str(e))
            raise

        self._on_success()
        return result

    def get_metrics(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "state": self._state.name,
            "failure_count": self._failure_count,
            "success_count": self._success_count,
        }

    # --------------------------------------------------------------------- #
    # Internal helpers
    # --------------------------------------------------------------------- #

    def _should_ignore_exception(self, exception: Exception) -> bool:
        ignored = self.config.ignored_exception_types
        return bool(ignored) and isinstance(exception, ignored)

    def _retry_after(self) -> float:
        if self._opened_at is None:
            return 0.0
        elapsed = time.monotonic() - self._opened_at
        return max(0.0, self.config.reset_timeout_seconds - elapsed)

    def _can_execute(self) -> bool:
        if self._state == CircuitState.CLOSED:
            return True

        if self._state == CircuitState.OPEN:
            if self._retry_after() > 0:
                return False
            self._state = CircuitState.HALF_OPEN
            self._half_open_calls = 0
            self._success_count = 0
            logger.info("circuit_breaker_half_open for %s", self.name)

        if self._half_open_calls < self.config.half_open_max_calls:
            self._half_open_calls += 1
            return True
        return False

    def _on_success(self) -> None:
        self._failure_count = 0
        if self._state == CircuitState.HALF_OPEN:
            self._success_count += 1
            self._half_open_calls = max(0, self._half_open_calls - 1)
            if self._success_count >= self.config.success_threshold:
                self._transition_to_closed()

    def _on_failure(self, error_details: str) -> None:
        self._failure_count += 1
        logger.debug("Circuit breaker %s failure: %s", self.name, error_details)

        if self._state == CircuitState.HALF_OPEN:
            self._transition_to_open()
        elif self._state == CircuitState.CLOSED and self._failure_count >= self.config.failure_threshold:
            self._transition_to_open()

    def _transition_to_closed(self) -> None:
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._half_open_calls = 0
        self._opened_at = None
        logger.info("circuit_breaker_closed for %s", self.name)

    def _transition_to_open(self) -> None:
        self._state = CircuitState.OPEN
        self._success_count = 0
        self._half_open_calls = 0
        self._opened_at = time.monotonic()
        logger.warning("circuit_breaker_opened for %s", self.name)
