"""Resilience patterns — circuit breaker and retry for outbound requests.

Per-host circuit breakers stop hammering upstreams that keep failing;
the retry policy rides out transient blips with exponential backoff.
"""

from resilient_fetch.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerRegistry,
    CircuitState,
    get_breaker_registry,
    reset_breaker_registry,
)
from resilient_fetch.resilience.retry import (
    DEFAULT_RETRY_ON,
    RetryDecision,
    RetryPolicy,
    is_transient,
)

__all__ = [
    "DEFAULT_RETRY_ON",
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "CircuitState",
    "RetryDecision",
    "RetryPolicy",
    "get_breaker_registry",
    "is_transient",
    "reset_breaker_registry",
]
