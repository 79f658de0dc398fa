"""Async circuit breaker — one per upstream host.

Implements the standard three-state circuit breaker:

    CLOSED    →  (failure_threshold reached)  →  OPEN
    OPEN      →  (reset_timeout elapsed)      →  HALF_OPEN
    HALF_OPEN →  (probe succeeds)             →  CLOSED
    HALF_OPEN →  (probe fails)                →  OPEN

``CircuitBreaker.execute`` wraps a whole attempt sequence (all retries of
one logical request), so a request that succeeds on its third attempt is
one success, not two failures and a success.

Each host gets its own breaker via ``CircuitBreakerRegistry``.  A dead
weather API therefore never blocks requests to the media server.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import TypeVar

from resilient_fetch.core.config import Settings
from resilient_fetch.core.errors import CircuitOpenError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Clock = Callable[[], float]


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Async-safe circuit breaker for a single target.

    Args:
        name:               Target key, usually the request host.
        failure_threshold:  Consecutive failures before opening the circuit.
        reset_timeout:      Seconds the circuit stays OPEN before probing.
        half_open_max:      Max concurrent probes in HALF_OPEN state.
        clock:              Monotonic time source, seconds.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        reset_timeout: float = 60.0,
        half_open_max: int = 1,
        clock: Clock = time.monotonic,
    ) -> None:
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.half_open_max = half_open_max
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: float = 0.0
        self._half_open_calls = 0
        self._lock = asyncio.Lock()

        # Metrics
        self.total_calls = 0
        self.total_failures = 0
        self.total_rejections = 0
        self.total_successes = 0

    # ── Public properties ────────────────────────────────────────────

    @property
    def state(self) -> CircuitState:
        """Return the current state, auto-transitioning OPEN → HALF_OPEN."""
        if self._state == CircuitState.OPEN and self._remaining_cooldown() < 0:
            return CircuitState.HALF_OPEN
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def last_failure_time(self) -> float:
        return self._last_failure_time

    def _remaining_cooldown(self) -> float:
        return self.reset_timeout - (self._clock() - self._last_failure_time)

    # ── Core call wrapper ────────────────────────────────────────────

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run *operation* under breaker protection.

        Raises ``CircuitOpenError`` without invoking *operation* while the
        circuit is open.  Any exception raised by *operation* is recorded
        as one failure and re-raised unchanged.
        """
        await self.pre_check()
        try:
            result = await operation()
        except asyncio.CancelledError:
            self._release_probe()
            raise
        except Exception:
            await self.on_failure()
            raise
        await self.on_success()
        return result

    async def pre_check(self) -> None:
        """Check whether a call is allowed; raise if circuit is open."""
        async with self._lock:
            current = self.state

            if current == CircuitState.OPEN:
                self.total_rejections += 1
                raise CircuitOpenError(self.name, self._remaining_cooldown())

            if current == CircuitState.HALF_OPEN:
                if self._state == CircuitState.OPEN:
                    self._state = CircuitState.HALF_OPEN
                    self._half_open_calls = 0
                    logger.info("Circuit for %s half-open, allowing probe", self.name)
                if self._half_open_calls >= self.half_open_max:
                    self.total_rejections += 1
                    raise CircuitOpenError(self.name, 1.0)
                self._half_open_calls += 1

            self.total_calls += 1

    async def on_success(self) -> None:
        """Record a successful call — close the circuit if probing."""
        async with self._lock:
            self.total_successes += 1
            if self._state != CircuitState.CLOSED:
                logger.info("Circuit for %s closed after successful probe", self.name)
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._half_open_calls = 0

    async def on_failure(self) -> None:
        """Record a failed call — potentially open the circuit."""
        async with self._lock:
            self._failure_count += 1
            self.total_failures += 1
            self._last_failure_time = self._clock()

            if self._state == CircuitState.HALF_OPEN:
                # Probe failed — reopen
                self._state = CircuitState.OPEN
                self._half_open_calls = 0
                logger.warning("Circuit for %s reopened, probe failed", self.name)
            elif self._state == CircuitState.CLOSED and self._failure_count >= self.failure_threshold:
                self._state = CircuitState.OPEN
                logger.warning(
                    "Circuit for %s opened after %d consecutive failures",
                    self.name,
                    self._failure_count,
                )

    def _release_probe(self) -> None:
        """Give back a HALF_OPEN slot held by a cancelled call."""
        if self._state == CircuitState.HALF_OPEN and self._half_open_calls > 0:
            self._half_open_calls -= 1

    async def reset(self) -> None:
        """Force-reset the circuit breaker to CLOSED state."""
        async with self._lock:
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._half_open_calls = 0

    def snapshot(self) -> dict:
        """Return a JSON-serializable snapshot for status/metrics."""
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self._failure_count,
            "total_calls": self.total_calls,
            "total_failures": self.total_failures,
            "total_rejections": self.total_rejections,
            "total_successes": self.total_successes,
        }


class CircuitBreakerRegistry:
    """Maps target keys to ``CircuitBreaker`` instances.

    Breakers are created on first use and never evicted, so the registry
    grows with the number of distinct hosts contacted.

    Usage::

        registry = CircuitBreakerRegistry(failure_threshold=5, reset_timeout=60.0)
        result = await registry.get("api.example.com").execute(call)
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        reset_timeout: float = 60.0,
        half_open_max: int = 1,
        clock: Clock = time.monotonic,
    ) -> None:
        self._threshold = failure_threshold
        self._reset_timeout = reset_timeout
        self._half_open_max = half_open_max
        self._clock = clock
        self._breakers: dict[str, CircuitBreaker] = {}

    @classmethod
    def from_settings(cls, settings: Settings) -> CircuitBreakerRegistry:
        return cls(
            failure_threshold=settings.CIRCUIT_BREAKER_THRESHOLD,
            reset_timeout=settings.CIRCUIT_BREAKER_RESET_SECONDS,
            half_open_max=settings.CIRCUIT_BREAKER_HALF_OPEN_MAX,
        )

    def get(self, key: str) -> CircuitBreaker:
        """Return (or create) the circuit breaker for *key*."""
        # No await between lookup and insert: concurrent first use is safe.
        breaker = self._breakers.get(key)
        if breaker is None:
            breaker = self._breakers.setdefault(
                key,
                CircuitBreaker(
                    name=key,
                    failure_threshold=self._threshold,
                    reset_timeout=self._reset_timeout,
                    half_open_max=self._half_open_max,
                    clock=self._clock,
                ),
            )
        return breaker

    def __contains__(self, key: object) -> bool:
        return key in self._breakers

    def __len__(self) -> int:
        return len(self._breakers)

    def all_snapshots(self) -> list[dict]:
        """Return snapshots for every registered breaker."""
        return [cb.snapshot() for cb in self._breakers.values()]

    async def reset_all(self) -> None:
        """Reset every circuit breaker to CLOSED."""
        for cb in self._breakers.values():
            await cb.reset()


_registry: CircuitBreakerRegistry | None = None


def get_breaker_registry() -> CircuitBreakerRegistry:
    """Return the process-wide registry, creating it from ``Settings``."""
    global _registry
    if _registry is None:
        _registry = CircuitBreakerRegistry.from_settings(Settings())
    return _registry


def reset_breaker_registry() -> None:
    """Drop the process-wide registry (tests only)."""
    global _registry
    _registry = None
