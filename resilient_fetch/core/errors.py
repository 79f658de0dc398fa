"""Structured errors for outbound requests.

Everything the client raises derives from ``ResilientFetchError``.
Upstream HTTP error statuses are *not* exceptions: they come back as
ordinary responses and callers branch on the status code.
"""

from pydantic import BaseModel


class ResilientFetchError(Exception):
    """Base exception for all resilient-fetch errors."""


class CircuitOpenError(ResilientFetchError):
    """Raised when a call is rejected because the target's circuit is open.

    The network is never touched for a rejected call.

    Attributes:
        target: Circuit key (the request host).
        retry_after: Seconds until the circuit allows a probe.
    """

    def __init__(self, target: str, retry_after: float) -> None:
        self.target = target
        self.retry_after = max(0.0, retry_after)
        super().__init__(f"Circuit breaker is open for '{target}' (retry after {self.retry_after:.1f}s)")


class RequestTimeoutError(ResilientFetchError):
    """Raised when an attempt outlives its timeout and retries are exhausted."""

    def __init__(self, url: str, timeout_seconds: float) -> None:
        self.url = url
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Request to {url} timed out after {timeout_seconds}s")


class TransientNetworkError(ResilientFetchError):
    """Raised when the connection fails and retries are exhausted."""

    def __init__(self, url: str, detail: str = "") -> None:
        self.url = url
        self.detail = detail
        msg = f"Network error for {url}"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)


class InvalidRequestError(ResilientFetchError, ValueError):
    """Raised for a malformed invocation (unknown method, bad options)."""

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(f"Invalid request: {detail}")


class StructuredErrorResponse(BaseModel):
    """Error payload for API routes that surface fetch failures.

    Returns ``{"error": str, "code": str, "request_id": str}``, no stack traces.
    """

    error: str
    code: str
    request_id: str

    @classmethod
    def from_exception(cls, exc: Exception, request_id: str) -> "StructuredErrorResponse":
        """Create from an exception, mapping to machine-readable codes.

        Never leaks internal details for unhandled exceptions.
        """
        if isinstance(exc, CircuitOpenError):
            code = "CIRCUIT_OPEN"
        elif isinstance(exc, RequestTimeoutError):
            code = "TIMEOUT"
        elif isinstance(exc, TransientNetworkError):
            code = "UPSTREAM_UNAVAILABLE"
        elif isinstance(exc, InvalidRequestError):
            code = "BAD_REQUEST"
        elif isinstance(exc, ResilientFetchError):
            code = "FETCH_ERROR"
        else:
            # Unhandled — never expose internal details
            return cls(
                error="An internal error occurred",
                code="INTERNAL_ERROR",
                request_id=request_id,
            )
        return cls(error=str(exc), code=code, request_id=request_id)
