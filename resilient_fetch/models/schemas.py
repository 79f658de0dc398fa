"""Pydantic models — client configuration, per-call options, status reports."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

from resilient_fetch.core.config import Settings
from resilient_fetch.resilience.retry import DEFAULT_RETRY_ON


class ClientConfig(BaseModel):
    """Defaults for every request an ``HttpClient`` makes."""

    base_url: str | None = None
    headers: dict[str, str] = Field(default_factory=dict)
    timeout: float = Field(default=10.0, gt=0)
    retries: int = Field(default=3, ge=0)
    retry_delay: float = Field(default=1.0, ge=0)
    retry_on: frozenset[int] = DEFAULT_RETRY_ON

    @classmethod
    def from_settings(cls, settings: Settings) -> ClientConfig:
        return cls(
            base_url=settings.HTTP_BASE_URL or None,
            timeout=settings.HTTP_TIMEOUT_SECONDS,
            retries=settings.HTTP_MAX_RETRIES,
            retry_delay=settings.HTTP_RETRY_DELAY_SECONDS,
            retry_on=frozenset(settings.HTTP_RETRY_ON),
        )


class RequestOptions(BaseModel):
    """Per-call overrides.  ``None`` means "use the client default"."""

    timeout: float | None = Field(default=None, gt=0)
    retries: int | None = Field(default=None, ge=0)
    retry_delay: float | None = Field(default=None, ge=0)
    retry_on: frozenset[int] | None = None
    headers: dict[str, str] = Field(default_factory=dict)

    model_config = {"extra": "forbid"}


class StatusReport(BaseModel):
    """Reachability of one upstream, as shown by the status widget."""

    url: str
    status: Literal["UP", "DOWN"]
    status_code: int | None = None
    latency_ms: float
    error: str | None = None
