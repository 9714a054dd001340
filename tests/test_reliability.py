"""Tests for the backend circuit breaker."""

import asyncio
import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from relay_server.reliability.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerOpenError,
    CircuitState,
)
from relay_server.reliability.config import CircuitBreakerConfig


class Clock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.fixture()
def clock(monkeypatch):
    clock = Clock()
    monkeypatch.setattr("relay_server.reliability.circuit_breaker.time.monotonic", clock)
    return clock


async def _ok():
    return "ok"


async def _fail():
    raise ConnectionError("down")


class Rejected(Exception):
    pass


async def _reject():
    raise Rejected("no")


def _breaker(**overrides):
    settings = {"name": "test", "failure_threshold": 3, "success_threshold": 2, "reset_timeout_seconds": 10}
    settings.update(overrides)
    return CircuitBreaker(CircuitBreakerConfig(**settings))


async def _trip(breaker, times):
    for _ in range(times):
        with pytest.raises(ConnectionError):
            await breaker.call(_fail)


# =========================================================================
# CircuitBreakerConfig
# =========================================================================


class TestCircuitBreakerConfig:
    def test_default_values(self):
        config = CircuitBreakerConfig()
        assert config.name == "backend"
        assert config.failure_threshold == 5
        assert config.success_threshold == 2
        assert config.reset_timeout_seconds == 30.0
        assert config.half_open_max_calls == 1
        assert config.ignored_exception_types is None


# =========================================================================
# State machine
# =========================================================================


class TestCircuitBreaker:
    @pytest.mark.asyncio
    async def test_closed_passes_calls(self):
        breaker = _breaker()
        assert await breaker.call(_ok) == "ok"
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_opens_after_threshold(self, clock):
        breaker = _breaker()
        await _trip(breaker, 3)
        assert breaker.state == CircuitState.OPEN

        with pytest.raises(CircuitBreakerOpenError) as exc_info:
            await breaker.call(_ok)
        assert exc_info.value.retry_after == pytest.approx(10.0)

    @pytest.mark.asyncio
    async def test_success_resets_failure_count(self):
        breaker = _breaker()
        await _trip(breaker, 2)
        await breaker.call(_ok)
        await _trip(breaker, 2)
        assert breaker.state == CircuitState.CLOSED
        assert breaker.get_metrics()["failure_count"] == 2

    @pytest.mark.asyncio
    async def test_half_open_then_closed(self, clock):
        breaker = _breaker()
        await _trip(breaker, 3)
        clock.now += 11

        await breaker.call(_ok)
        assert breaker.state == CircuitState.HALF_OPEN
        await breaker.call(_ok)
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_half_open_failure_reopens(self, clock):
        breaker = _breaker()
        await _trip(breaker, 3)
        clock.now += 11
        await _trip(breaker, 1)
        assert breaker.state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_cancelled_half_open_call_frees_slot(self, clock):
        breaker = _breaker()
        await _trip(breaker, 3)
        clock.now += 11

        started = asyncio.Event()

        async def hang():
            started.set()
            await asyncio.sleep(3600)

        pending = asyncio.ensure_future(breaker.call(hang))
        await started.wait()
        pending.cancel()
        with pytest.raises(asyncio.CancelledError):
            await pending

        assert breaker.state == CircuitState.HALF_OPEN
        assert await breaker.call(_ok) == "ok"
        await breaker.call(_ok)
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_ignored_exceptions_do_not_trip(self):
        breaker = _breaker(ignored_exception_types=(Rejected,))
        for _ in range(5):
            with pytest.raises(Rejected):
                await breaker.call(_reject)
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_metrics(self):
        breaker = _breaker()
        await _trip(breaker, 1)
        assert breaker.get_metrics() == {
            "name": "test",
            "state": "CLOSED",
            "failure_count": 1,
            "success_count": 0,
        }
