"""Upstream reachability probe for the dashboard status widget.

Sends HEAD first (cheap), falls back to GET for servers that mishandle HEAD.
Any completed HTTP exchange counts as UP, since a 401 or 404 still proves
the service answers; only connection failures, timeouts and open circuits
are DOWN.

A host that refuses the connection, times out or has an open circuit is
not retried with GET, so each check of a dead host records one breaker
failure.
"""

from __future__ import annotations

import logging
import time

import httpx

from resilient_fetch.client import HttpClient
from resilient_fetch.core.errors import (
    CircuitOpenError,
    RequestTimeoutError,
    ResilientFetchError,
    TransientNetworkError,
)
from resilient_fetch.models.schemas import StatusReport

logger = logging.getLogger(__name__)

_PROBE_TIMEOUT_SECONDS = 5.0


def _host_unreachable(exc: Exception) -> bool:
    """True when a GET retry cannot change the outcome of a failed HEAD."""
    if isinstance(exc, (CircuitOpenError, RequestTimeoutError)):
        return True
    return isinstance(exc, TransientNetworkError) and isinstance(exc.__cause__, httpx.ConnectError)


async def probe_status(client: HttpClient, url: str, timeout: float = _PROBE_TIMEOUT_SECONDS) -> StatusReport:
    """Probe *url* with HEAD, then GET if needed; never raises for network failures."""
    start = time.monotonic()
    for method in ("HEAD", "GET"):
        try:
            response = await client.request(url, method=method, timeout=timeout, retries=0)
        except (ResilientFetchError, httpx.HTTPError) as exc:
            logger.debug("%s probe of %s failed: %s", method, url, exc)
            if _host_unreachable(exc):
                break
            continue
        return StatusReport(
            url=url,
            status="UP",
            status_code=response.status_code,
            latency_ms=_elapsed_ms(start),
        )

    return StatusReport(url=url, status="DOWN", latency_ms=_elapsed_ms(start), error="Unreachable")


def _elapsed_ms(start: float) -> float:
    return round((time.monotonic() - start) * 1000, 2)
