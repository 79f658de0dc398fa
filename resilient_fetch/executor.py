"""RequestExecutor — one logical request, end to end.

Runs the attempt sequence (per-attempt timeout, transport call, retry with
exponential backoff) and hands the whole sequence to the target host's
circuit breaker as a single unit of success or failure.

Outcomes:
    * completed exchange (any status) → returned as ``httpx.Response``
    * timeout / connection failure after the last retry → raised
      (``RequestTimeoutError`` / ``TransientNetworkError``)
    * open circuit → ``CircuitOpenError``, transport never called
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

import httpx

from resilient_fetch.core.errors import RequestTimeoutError, TransientNetworkError
from resilient_fetch.resilience.circuit_breaker import CircuitBreakerRegistry
from resilient_fetch.resilience.retry import RetryPolicy
from resilient_fetch.transport import Transport

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


@dataclass
class RequestSpec:
    """Everything needed to perform one logical request.

    Attributes:
        method:  HTTP method, upper-case.
        url:     Fully resolved target URL.
        headers: Outgoing headers, already merged.
        content: Encoded request body, or ``None``.
        timeout: Per-attempt timeout in seconds.
        policy:  Retry policy for this request.
    """

    method: str
    url: str
    headers: httpx.Headers = field(default_factory=httpx.Headers)
    content: bytes | None = None
    timeout: float = 10.0
    policy: RetryPolicy = field(default_factory=RetryPolicy)


def target_key(url: str) -> str | None:
    """Return the circuit key (host) for *url*, or ``None`` if it has none."""
    try:
        host = httpx.URL(url).host
    except httpx.InvalidURL:
        return None
    return host or None


class RequestExecutor:
    """Executes ``RequestSpec``s through a transport with retry and breakers.

    Args:
        transport: Round-trip primitive.
        registry:  Per-host circuit breakers.
        sleep:     Awaitable used between retries (patched in tests).
    """

    def __init__(
        self,
        transport: Transport,
        registry: CircuitBreakerRegistry,
        *,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._transport = transport
        self._registry = registry
        self._sleep = sleep

    async def execute(self, spec: RequestSpec) -> httpx.Response:
        """Perform *spec*, guarded by the circuit breaker for its host.

        Requests without a parseable host skip the breaker entirely rather
        than sharing one catch-all circuit.
        """
        key = target_key(spec.url)
        if key is None:
            logger.debug("No host in %r, bypassing circuit breaker", spec.url)
            return await self._attempt_sequence(spec)

        breaker = self._registry.get(key)
        return await breaker.execute(lambda: self._attempt_sequence(spec))

    async def _attempt_sequence(self, spec: RequestSpec) -> httpx.Response:
        """Call the transport until success, a final answer, or exhaustion."""
        policy = spec.policy
        attempt = 0
        while True:
            try:
                response = await self._send(spec)
            except Exception as exc:
                decision = policy.should_retry(exc, attempt)
                if not decision.retry:
                    raise
                reason = type(exc).__name__
            else:
                decision = policy.should_retry(response.status_code, attempt)
                if not decision.retry:
                    return response
                reason = f"Retryable status {response.status_code}"

            logger.warning(
                "%s for %s (attempt %d/%d), retrying in %.1fs",
                reason,
                spec.url,
                attempt + 1,
                policy.max_attempts,
                decision.delay,
            )
            await self._sleep(decision.delay)
            attempt += 1

    async def _send(self, spec: RequestSpec) -> httpx.Response:
        """Single transport call bounded by the per-attempt timeout."""
        try:
            async with asyncio.timeout(spec.timeout):
                return await self._transport(
                    spec.method,
                    spec.url,
                    headers=spec.headers,
                    content=spec.content,
                    timeout=spec.timeout,
                )
        except (TimeoutError, httpx.TimeoutException) as exc:
            raise RequestTimeoutError(spec.url, spec.timeout) from exc
        except (httpx.NetworkError, httpx.RemoteProtocolError, ConnectionError) as exc:
            raise TransientNetworkError(spec.url, str(exc) or type(exc).__name__) from exc
