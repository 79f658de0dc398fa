"""Retry policy — which outcomes are retried, and how long to wait.

Pure decisions only; sleeping and bookkeeping belong to the executor.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import NamedTuple

import httpx

from resilient_fetch.core.errors import RequestTimeoutError, TransientNetworkError

DEFAULT_RETRY_ON: frozenset[int] = frozenset({408, 429, 500, 502, 503, 504})

# Transport failures worth another attempt.  Anything else (bad URL,
# unsupported scheme, decoding bugs) is raised on the first attempt.
_TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
    TimeoutError,
    httpx.TimeoutException,
    httpx.NetworkError,
    httpx.RemoteProtocolError,
    RequestTimeoutError,
    TransientNetworkError,
)


class RetryDecision(NamedTuple):
    retry: bool
    delay: float


def is_transient(exc: BaseException) -> bool:
    """True if *exc* is a timeout or connection-level failure."""
    return isinstance(exc, _TRANSIENT_ERRORS)


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential-backoff retry policy.

    Attributes:
        max_retries: Retries allowed after the first attempt.
        retry_delay: Delay before the first retry, seconds.  Doubles each retry.
        retry_on:    Response status codes that trigger a retry.
    """

    max_retries: int = 3
    retry_delay: float = 1.0
    retry_on: frozenset[int] = DEFAULT_RETRY_ON

    @property
    def max_attempts(self) -> int:
        return 1 + self.max_retries

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retry number *attempt* (0 for the first retry)."""
        return self.retry_delay * (2**attempt)

    def is_retryable_status(self, status_code: int) -> bool:
        return status_code in self.retry_on

    def should_retry(self, outcome: int | BaseException, attempt: int) -> RetryDecision:
        """Decide whether to retry after *attempt* (0-based) produced *outcome*.

        *outcome* is either a response status code or the exception the
        attempt raised.
        """
        if attempt >= self.max_retries:
            return RetryDecision(False, 0.0)
        if isinstance(outcome, BaseException):
            retryable = is_transient(outcome)
        else:
            retryable = self.is_retryable_status(outcome)
        if not retryable:
            return RetryDecision(False, 0.0)
        return RetryDecision(True, self.backoff_delay(attempt))
