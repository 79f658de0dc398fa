"""Transport — the single network round trip the executor retries.

Any async callable with the ``Transport`` signature can be injected; the
default wraps one shared ``httpx.AsyncClient`` so connections are pooled
across every widget's requests.
"""

from __future__ import annotations

from typing import Protocol

import httpx


class Transport(Protocol):
    async def __call__(
        self,
        method: str,
        url: str,
        *,
        headers: httpx.Headers,
        content: bytes | None,
        timeout: float,
    ) -> httpx.Response: ...


class HttpxTransport:
    """``Transport`` backed by ``httpx.AsyncClient``.

    Args:
        client: Client to send through.  When omitted a new one is created
                and closed by ``aclose()``.
    """

    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self._owns_client = client is None
        self._client = client if client is not None else httpx.AsyncClient()

    async def __call__(
        self,
        method: str,
        url: str,
        *,
        headers: httpx.Headers,
        content: bytes | None,
        timeout: float,
    ) -> httpx.Response:
        return await self._client.request(
            method,
            url,
            headers=headers,
            content=content,
            timeout=timeout,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
