"""Tests for RequestExecutor — retry loop, timeouts, breaker integration."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from resilient_fetch.core.errors import CircuitOpenError, RequestTimeoutError, TransientNetworkError
from resilient_fetch.executor import RequestExecutor, RequestSpec, target_key
from resilient_fetch.resilience.circuit_breaker import CircuitBreakerRegistry, CircuitState
from resilient_fetch.resilience.retry import RetryPolicy
from tests.unit.conftest import FakeClock, ScriptedTransport, SleepRecorder


def _spec(url: str = "https://svc.test/api", **policy) -> RequestSpec:
    return RequestSpec(method="GET", url=url, timeout=5.0, policy=RetryPolicy(**policy))


def _executor(transport, sleeper, registry=None) -> RequestExecutor:
    return RequestExecutor(transport, registry if registry is not None else CircuitBreakerRegistry(), sleep=sleeper)


class TestTargetKey:
    def test_host_of_absolute_url(self):
        assert target_key("https://api.example.com:8443/widgets") == "api.example.com"

    def test_relative_url_has_no_key(self):
        assert target_key("invalid-url") is None
        assert target_key("/widgets") is None

    def test_empty_url_has_no_key(self):
        assert target_key("") is None


class TestRetryLoop:
    """Retry with exponential backoff on transient failures."""

    async def test_success_on_first_attempt(self, sleeper: SleepRecorder):
        transport = ScriptedTransport([200])
        response = await _executor(transport, sleeper).execute(_spec())
        assert response.status_code == 200
        assert transport.call_count == 1
        assert sleeper.delays == []

    async def test_retryable_status_then_success(self, sleeper: SleepRecorder):
        transport = ScriptedTransport([503, 500, 200])
        response = await _executor(transport, sleeper).execute(_spec(max_retries=3, retry_delay=1.0))
        assert response.status_code == 200
        assert transport.call_count == 3
        assert sleeper.delays == [1.0, 2.0]
        assert sleeper.delays[1] / sleeper.delays[0] == 2

    async def test_non_retryable_status_returned_immediately(self, sleeper: SleepRecorder):
        transport = ScriptedTransport([404])
        response = await _executor(transport, sleeper).execute(_spec())
        assert response.status_code == 404
        assert transport.call_count == 1
        assert sleeper.delays == []

    async def test_retryable_status_exhausted_is_returned(self, sleeper: SleepRecorder):
        transport = ScriptedTransport([503])
        response = await _executor(transport, sleeper).execute(_spec(max_retries=2, retry_delay=0.5))
        assert response.status_code == 503
        assert transport.call_count == 3
        assert sleeper.delays == [0.5, 1.0]

    async def test_connect_error_then_success(self, sleeper: SleepRecorder):
        transport = ScriptedTransport([httpx.ConnectError("refused"), 200])
        response = await _executor(transport, sleeper).execute(_spec())
        assert response.status_code == 200
        assert transport.call_count == 2

    async def test_network_error_exhausted_raises(self, sleeper: SleepRecorder):
        transport = ScriptedTransport([httpx.ConnectError("refused")])
        with pytest.raises(TransientNetworkError, match="refused") as exc_info:
            await _executor(transport, sleeper).execute(_spec(max_retries=1))
        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)
        assert transport.call_count == 2

    async def test_plain_connection_error_is_transient(self, sleeper: SleepRecorder):
        transport = ScriptedTransport([ConnectionResetError("reset"), 200])
        response = await _executor(transport, sleeper).execute(_spec())
        assert response.status_code == 200

    async def test_transport_timeout_exhausted_raises(self, sleeper: SleepRecorder):
        transport = ScriptedTransport([httpx.ReadTimeout("slow")])
        with pytest.raises(RequestTimeoutError) as exc_info:
            await _executor(transport, sleeper).execute(_spec(max_retries=2))
        assert exc_info.value.timeout_seconds == 5.0
        assert transport.call_count == 3

    async def test_non_transient_error_not_retried(self, sleeper: SleepRecorder):
        transport = ScriptedTransport([httpx.UnsupportedProtocol("ftp")])
        with pytest.raises(httpx.UnsupportedProtocol):
            await _executor(transport, sleeper).execute(_spec())
        assert transport.call_count == 1

    async def test_sends_method_headers_body_and_timeout(self, sleeper: SleepRecorder):
        transport = ScriptedTransport([201])
        spec = RequestSpec(
            method="POST",
            url="https://svc.test/items",
            headers=httpx.Headers({"X-Key": "abc"}),
            content=b'{"a": 1}',
            timeout=3.0,
        )
        await _executor(transport, sleeper).execute(spec)
        sent = transport.calls[0]
        assert sent.method == "POST"
        assert sent.url == "https://svc.test/items"
        assert sent.headers["x-key"] == "abc"
        assert sent.content == b'{"a": 1}'
        assert sent.timeout == 3.0


class TestAttemptTimeout:
    async def test_slow_transport_is_cancelled(self, sleeper: SleepRecorder):
        calls = 0

        async def slow_then_fast(method, url, *, headers, content, timeout):
            nonlocal calls
            calls += 1
            if calls == 1:
                await asyncio.sleep(10)
            return httpx.Response(200)

        spec = RequestSpec(method="GET", url="https://svc.test", timeout=0.01)
        response = await _executor(slow_then_fast, sleeper).execute(spec)
        assert response.status_code == 200
        assert calls == 2

    async def test_timeout_exhausted_raises(self, sleeper: SleepRecorder):
        async def never(method, url, *, headers, content, timeout):
            await asyncio.sleep(10)

        spec = RequestSpec(method="GET", url="https://svc.test", timeout=0.01, policy=RetryPolicy(max_retries=1))
        with pytest.raises(RequestTimeoutError, match="timed out after 0.01s"):
            await _executor(never, sleeper).execute(spec)
        assert len(sleeper.delays) == 1


class TestCircuitBreakerIntegration:
    """The whole attempt sequence counts once toward the breaker."""

    async def test_retries_count_as_single_failure(self, sleeper: SleepRecorder):
        registry = CircuitBreakerRegistry(failure_threshold=3)
        transport = ScriptedTransport([httpx.ConnectError("refused")])
        with pytest.raises(TransientNetworkError):
            await _executor(transport, sleeper, registry).execute(_spec(max_retries=3))
        assert transport.call_count == 4
        assert registry.get("svc.test").failure_count == 1
        assert registry.get("svc.test").state == CircuitState.CLOSED

    async def test_eventual_success_counts_as_success(self, sleeper: SleepRecorder):
        registry = CircuitBreakerRegistry()
        transport = ScriptedTransport([502, 502, 200])
        await _executor(transport, sleeper, registry).execute(_spec())
        cb = registry.get("svc.test")
        assert cb.total_successes == 1
        assert cb.total_failures == 0

    async def test_open_circuit_skips_transport(self, sleeper: SleepRecorder):
        registry = CircuitBreakerRegistry(failure_threshold=2)
        transport = ScriptedTransport([httpx.ConnectError("refused")])
        executor = _executor(transport, sleeper, registry)
        for _ in range(2):
            with pytest.raises(TransientNetworkError):
                await executor.execute(_spec(max_retries=0))
        assert transport.call_count == 2

        with pytest.raises(CircuitOpenError, match="svc.test"):
            await executor.execute(_spec(max_retries=0))
        assert transport.call_count == 2

    async def test_keyed_by_host(self, sleeper: SleepRecorder):
        registry = CircuitBreakerRegistry(failure_threshold=1)
        transport = ScriptedTransport([httpx.ConnectError("refused"), 200])
        executor = _executor(transport, sleeper, registry)
        with pytest.raises(TransientNetworkError):
            await executor.execute(_spec("https://a.test/x", max_retries=0))
        response = await executor.execute(_spec("https://b.test/x", max_retries=0))
        assert response.status_code == 200
        assert registry.get("a.test").state == CircuitState.OPEN
        assert registry.get("b.test").state == CircuitState.CLOSED

    async def test_unparseable_target_bypasses_breaker(self, sleeper: SleepRecorder):
        registry = CircuitBreakerRegistry(failure_threshold=1)
        transport = ScriptedTransport([httpx.ConnectError("refused")])
        executor = _executor(transport, sleeper, registry)
        for _ in range(3):
            with pytest.raises(TransientNetworkError):
                await executor.execute(_spec("invalid-url", max_retries=0))
        assert transport.call_count == 3
        assert len(registry) == 0

    async def test_half_open_probe_after_reset_timeout(self, sleeper: SleepRecorder, clock: FakeClock):
        registry = CircuitBreakerRegistry(failure_threshold=1, reset_timeout=60.0, clock=clock)
        transport = ScriptedTransport([httpx.ConnectError("refused"), 200])
        executor = _executor(transport, sleeper, registry)
        with pytest.raises(TransientNetworkError):
            await executor.execute(_spec(max_retries=0))
        with pytest.raises(CircuitOpenError):
            await executor.execute(_spec(max_retries=0))

        clock.advance(61)
        response = await executor.execute(_spec(max_retries=0))
        assert response.status_code == 200
        assert registry.get("svc.test").state == CircuitState.CLOSED

    async def test_concurrent_failures_on_one_host(self, sleeper: SleepRecorder):
        registry = CircuitBreakerRegistry(failure_threshold=6)

        async def refused(method, url, *, headers, content, timeout):
            await asyncio.sleep(0)
            raise httpx.ConnectError("refused")

        executor = _executor(refused, sleeper, registry)
        results = await asyncio.gather(
            *(executor.execute(_spec(max_retries=0)) for _ in range(6)),
            return_exceptions=True,
        )

        assert all(isinstance(r, TransientNetworkError) for r in results)
        assert registry.get("svc.test").failure_count == 6
        assert registry.get("svc.test").state == CircuitState.OPEN
        assert len(registry.all_snapshots()) == 1
