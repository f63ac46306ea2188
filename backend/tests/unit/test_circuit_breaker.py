from __future__ import annotations

import asyncio

import pytest

from stockroom.infrastructure.circuit_breaker import CircuitBreaker, CircuitBreakerOpenError

pytestmark = pytest.mark.asyncio


class _Clock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


async def _fail() -> int:
    raise RuntimeError("boom")


async def _value(value: int) -> int:
    return value


async def test_circuit_breaker_opens_and_recovers() -> None:
    clock = _Clock()
    breaker = CircuitBreaker(failure_threshold=2, recovery_timeout_seconds=5, clock=clock)

    for _ in range(2):
        with pytest.raises(RuntimeError):
            await breaker.call(_fail)

    assert breaker.snapshot.state == "open"
    assert breaker.snapshot.last_error == "boom"
    assert breaker.allows_calls is False

    with pytest.raises(CircuitBreakerOpenError):
        await breaker.call(lambda: _value(1))

    clock.now += 5
    assert breaker.allows_calls is True
    assert await breaker.call(lambda: _value(7)) == 7
    assert breaker.snapshot.state == "closed"
    assert breaker.snapshot.failure_count == 0


async def test_half_open_failure_reopens_immediately() -> None:
    clock = _Clock()
    breaker = CircuitBreaker(failure_threshold=3, recovery_timeout_seconds=1, clock=clock)
    for _ in range(3):
        with pytest.raises(RuntimeError):
            await breaker.call(_fail)

    clock.now += 1
    with pytest.raises(RuntimeError):
        await breaker.call(_fail)
    assert breaker.snapshot.state == "open"

    with pytest.raises(CircuitBreakerOpenError):
        await breaker.call(lambda: _value(1))


async def test_success_resets_failure_count() -> None:
    breaker = CircuitBreaker(failure_threshold=2)
    with pytest.raises(RuntimeError):
        await breaker.call(_fail)
    assert await breaker.call(lambda: _value(3)) == 3
    with pytest.raises(RuntimeError):
        await breaker.call(_fail)
    assert breaker.snapshot.state == "closed"

    breaker.reset()
    assert breaker.snapshot.as_dict() == {"state": "closed", "failureCount": 0, "lastError": None}


async def test_half_open_admits_a_single_trial_call() -> None:
    clock = _Clock()
    breaker = CircuitBreaker(failure_threshold=1, recovery_timeout_seconds=1, clock=clock)
    with pytest.raises(RuntimeError):
        await breaker.call(_fail)
    clock.now += 1

    release = asyncio.Event()

    async def slow_trial() -> int:
        await release.wait()
        return 5

    trial = asyncio.create_task(breaker.call(slow_trial))
    await asyncio.sleep(0)
    assert breaker.snapshot.state == "half_open"

    with pytest.raises(CircuitBreakerOpenError):
        await breaker.call(lambda: _value(1))

    release.set()
    assert await trial == 5
    assert breaker.snapshot.state == "closed"
    assert await breaker.call(lambda: _value(2)) == 2
