"""HttpClient — the facade widgets and API routes call.

Resolves relative paths against ``base_url``, merges headers, encodes JSON
bodies and delegates to ``RequestExecutor``.

Every completed HTTP exchange comes back as an ``httpx.Response``, error
statuses included; callers branch on ``response.status_code``.  Only
circuit-open rejections, exhausted timeout/network failures and malformed
calls raise.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any

import httpx
from pydantic import ValidationError

from resilient_fetch.core.config import Settings
from resilient_fetch.core.errors import InvalidRequestError
from resilient_fetch.executor import RequestExecutor, RequestSpec, Sleep
from resilient_fetch.models.schemas import ClientConfig, RequestOptions
from resilient_fetch.resilience.circuit_breaker import CircuitBreakerRegistry, get_breaker_registry
from resilient_fetch.resilience.retry import RetryPolicy
from resilient_fetch.transport import HttpxTransport, Transport

_METHODS = frozenset({"GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"})
_ABSOLUTE_PREFIXES = ("http://", "https://")
_JSON_CONTENT_TYPE = "application/json"


class HttpClient:
    """Resilient HTTP client.

    Args:
        config:    Base URL, default headers and retry/timeout defaults.
        transport: Round-trip primitive; defaults to a private ``HttpxTransport``.
        registry:  Circuit breakers; defaults to the process-wide registry so
                   every client shares one breaker per host.
        sleep:     Awaitable used between retries.
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        *,
        transport: Transport | None = None,
        registry: CircuitBreakerRegistry | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.config = config or ClientConfig()
        self._owns_transport = transport is None
        self._transport = transport if transport is not None else HttpxTransport()
        self._registry = registry if registry is not None else get_breaker_registry()
        self._executor = RequestExecutor(self._transport, self._registry, sleep=sleep)

    @property
    def circuit_breakers(self) -> CircuitBreakerRegistry:
        """Expose the breaker registry for status/metrics endpoints."""
        return self._registry

    # ── Request building ────────────────────────────────────────────

    def resolve_url(self, url: str) -> str:
        """Prefix *url* with ``base_url`` unless it is already absolute."""
        if url.startswith(_ABSOLUTE_PREFIXES) or not self.config.base_url:
            return url
        return f"{self.config.base_url}{url}"

    def merge_headers(self, headers: dict[str, str] | None = None, *, json_body: bool = False) -> httpx.Headers:
        """Defaults first, then per-call *headers* win (case-insensitive)."""
        merged = httpx.Headers(self.config.headers)
        if json_body:
            merged["Content-Type"] = _JSON_CONTENT_TYPE
        if headers:
            merged.update(headers)
        return merged

    def _build_options(self, options: RequestOptions | None, overrides: dict[str, Any]) -> RequestOptions:
        if options is not None and not overrides:
            return options
        data = options.model_dump(exclude_unset=True) if options is not None else {}
        data.update(overrides)
        try:
            return RequestOptions.model_validate(data)
        except ValidationError as exc:
            raise InvalidRequestError(str(exc)) from exc

    def _build_policy(self, opts: RequestOptions) -> RetryPolicy:
        cfg = self.config
        return RetryPolicy(
            max_retries=cfg.retries if opts.retries is None else opts.retries,
            retry_delay=cfg.retry_delay if opts.retry_delay is None else opts.retry_delay,
            retry_on=cfg.retry_on if opts.retry_on is None else opts.retry_on,
        )

    async def _dispatch(
        self,
        method: str,
        url: str,
        *,
        content: bytes | None,
        options: RequestOptions | None,
        overrides: dict[str, Any],
        json_body: bool = False,
    ) -> httpx.Response:
        method = method.upper()
        if method not in _METHODS:
            raise InvalidRequestError(f"unsupported method {method!r}")
        if not isinstance(url, str) or not url:
            raise InvalidRequestError("url must be a non-empty string")

        opts = self._build_options(options, overrides)
        spec = RequestSpec(
            method=method,
            url=self.resolve_url(url),
            headers=self.merge_headers(opts.headers, json_body=json_body),
            content=content,
            timeout=self.config.timeout if opts.timeout is None else opts.timeout,
            policy=self._build_policy(opts),
        )
        return await self._executor.execute(spec)

    # ── Public API ──────────────────────────────────────────────────

    async def request(
        self,
        url: str,
        *,
        method: str = "GET",
        content: bytes | None = None,
        options: RequestOptions | None = None,
        **overrides: Any,
    ) -> httpx.Response:
        """Send a request with a pre-encoded body.

        ``overrides`` accepts the ``RequestOptions`` fields (``timeout``,
        ``retries``, ``retry_delay``, ``retry_on``, ``headers``) and takes
        precedence over *options*.

        Raises:
            CircuitOpenError: The target host's circuit is open.
            RequestTimeoutError: Every attempt timed out.
            TransientNetworkError: Every attempt failed to connect.
            InvalidRequestError: Unknown method or invalid option values.
        """
        return await self._dispatch(method, url, content=content, options=options, overrides=overrides)

    async def get(self, url: str, options: RequestOptions | None = None, **overrides: Any) -> httpx.Response:
        return await self._dispatch("GET", url, content=None, options=options, overrides=overrides)

    async def post(
        self, url: str, body: Any = None, options: RequestOptions | None = None, **overrides: Any
    ) -> httpx.Response:
        return await self._send_json("POST", url, body, options, overrides)

    async def put(
        self, url: str, body: Any = None, options: RequestOptions | None = None, **overrides: Any
    ) -> httpx.Response:
        return await self._send_json("PUT", url, body, options, overrides)

    async def patch(
        self, url: str, body: Any = None, options: RequestOptions | None = None, **overrides: Any
    ) -> httpx.Response:
        return await self._send_json("PATCH", url, body, options, overrides)

    async def delete(self, url: str, options: RequestOptions | None = None, **overrides: Any) -> httpx.Response:
        return await self._dispatch("DELETE", url, content=None, options=options, overrides=overrides)

    async def _send_json(
        self,
        method: str,
        url: str,
        body: Any,
        options: RequestOptions | None,
        overrides: dict[str, Any],
    ) -> httpx.Response:
        content = None
        if body is not None:
            try:
                content = json.dumps(body).encode()
            except (TypeError, ValueError) as exc:
                raise InvalidRequestError(f"body is not JSON-serializable: {exc}") from exc
        return await self._dispatch(
            method,
            url,
            content=content,
            options=options,
            overrides=overrides,
            json_body=True,
        )

    # ── Lifecycle ───────────────────────────────────────────────────

    async def aclose(self) -> None:
        """Close the transport if this client created it."""
        if self._owns_transport and isinstance(self._transport, HttpxTransport):
            await self._transport.aclose()

    async def __aenter__(self) -> HttpClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()


_default_client: HttpClient | None = None


def get_default_client() -> HttpClient:
    """Return the process-wide client, configured from ``Settings``."""
    global _default_client
    if _default_client is None:
        _default_client = HttpClient(ClientConfig.from_settings(Settings()))
    return _default_client


async def close_default_client() -> None:
    global _default_client
    if _default_client is not None:
        await _default_client.aclose()
        _default_client = None
