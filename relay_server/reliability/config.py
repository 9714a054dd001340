# =============================================================================
# Relay -- Realtime Relay Server
# =============================================================================

from dataclasses import dataclass


@dataclass
class CircuitBreakerConfig:
    """Circuit breaker configuration for outbound backend calls.

    Attributes:
        name: Identifier used in log lines.
        failure_threshold: Consecutive failures before opening.
        success_threshold: Successful trial calls in HALF_OPEN required to close.
        reset_timeout_seconds: Seconds to stay OPEN before probing again.
        half_open_max_calls: Trial calls allowed while HALF_OPEN.
        ignored_exception_types: Exceptions that do not count as failures
            (an explicit "invalid token" answer means the backend is healthy).
    """

    name: str = "backend"
    failure_threshold: int = 5
    success_threshold: int = 2
    reset_timeout_seconds: float = 30.0
    half_open_max_calls: int = 1
    ignored_exception_types: tuple[type[BaseException], ...] | None = None
