"""Settings — process-wide defaults for outbound requests.

All settings are loaded from environment variables with the
RESILIENT_FETCH_ prefix.  Per-client values live in ``ClientConfig``
(see ``resilient_fetch.models.schemas``); these are only the defaults.
"""

from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Outbound request configuration.

    All fields can be overridden by environment variables prefixed with
    ``RESILIENT_FETCH_``.  For example, ``RESILIENT_FETCH_HTTP_MAX_RETRIES=1``
    lowers the default retry budget.
    """

    # ── Identity ────────────────────────────────────────────────────
    SERVICE_NAME: str = "resilient-fetch"
    SERVICE_VERSION: str = "0.1.0"

    # ── Request defaults ────────────────────────────────────────────
    HTTP_BASE_URL: str = ""  # Empty means no base; targets must be absolute
    HTTP_TIMEOUT_SECONDS: float = 10.0  # Per attempt
    HTTP_MAX_RETRIES: int = 3  # Retries after the first attempt
    HTTP_RETRY_DELAY_SECONDS: float = 1.0  # Base delay, doubled per retry
    HTTP_RETRY_ON: list[int] = [408, 429, 500, 502, 503, 504]

    # ── Circuit breakers ────────────────────────────────────────────
    CIRCUIT_BREAKER_THRESHOLD: int = 5  # Consecutive failures before OPEN
    CIRCUIT_BREAKER_RESET_SECONDS: float = 60.0  # Seconds before HALF_OPEN probe
    CIRCUIT_BREAKER_HALF_OPEN_MAX: int = 1  # Concurrent probes while HALF_OPEN

    model_config = {
        "env_prefix": "RESILIENT_FETCH_",
    }
