"""Shared unit-test doubles: a manual clock, a scripted transport, a sleep recorder."""

from __future__ import annotations

from dataclasses import dataclass, field

import httpx
import pytest

from resilient_fetch.resilience.circuit_breaker import reset_breaker_registry


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@dataclass
class SentRequest:
    method: str
    url: str
    headers: httpx.Headers
    content: bytes | None
    timeout: float


@dataclass
class ScriptedTransport:
    """Transport that replays a script of responses / exceptions.

    The last script entry repeats once the script runs out.
    """

    script: list = field(default_factory=list)
    calls: list[SentRequest] = field(default_factory=list)

    async def __call__(self, method, url, *, headers, content, timeout):
        self.calls.append(SentRequest(method, url, headers, content, timeout))
        index = min(len(self.calls), len(self.script)) - 1
        outcome = self.script[index] if self.script else httpx.Response(200)
        if isinstance(outcome, BaseException):
            raise outcome
        if isinstance(outcome, int):
            return httpx.Response(outcome)
        return outcome

    @property
    def call_count(self) -> int:
        return len(self.calls)


class SleepRecorder:
    """Replacement for ``asyncio.sleep`` that only records delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture(autouse=True)
def _fresh_default_registry():
    reset_breaker_registry()
    yield
    reset_breaker_registry()
