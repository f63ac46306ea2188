from __future__ import annotations

from dataclasses import dataclass
from threading import RLock
from time import monotonic
from typing import Awaitable, Callable, TypeVar

T = TypeVar("T")


class CircuitBreakerOpenError(RuntimeError):
    """Raised when circuit breaker is open and call should fail fast."""


@dataclass(frozen=True)
class CircuitBreakerSnapshot:
    state: str
    failure_count: int
    opened_at_monotonic: float | None
    last_error: str | None = None

    def as_dict(self) -> dict[str, object]:
        return {
            "state": self.state,
            "failureCount": self.failure_count,
            "lastError": self.last_error,
        }


class CircuitBreaker:
    """Guards a flaky dependency (Redis) without process-wide state.

    Each owner creates and injects its own instance; after
    ``failure_threshold`` consecutive failures calls fail fast until
    ``recovery_timeout_seconds`` pass, then one trial call is let through
    while concurrent callers keep failing fast until it settles.
    """

    def __init__(
        self,
        *,
        failure_threshold: int = 5,
        recovery_timeout_seconds: float = 60.0,
        clock: Callable[[], float] = monotonic,
    ) -> None:
        self.failure_threshold = max(1, int(failure_threshold))
        self.recovery_timeout_seconds = max(0.01, float(recovery_timeout_seconds))
        self._clock = clock
        self._state = "closed"
        self._failure_count = 0
        self._opened_at_monotonic: float | None = None
        self._last_error: str | None = None
        self._trial_in_flight = False
        self._lock = RLock()

    @property
    def snapshot(self) -> CircuitBreakerSnapshot:
        with self._lock:
            return CircuitBreakerSnapshot(
                state=self._state,
                failure_count=self._failure_count,
                opened_at_monotonic=self._opened_at_monotonic,
                last_error=self._last_error,
            )

    @property
    def allows_calls(self) -> bool:
        with self._lock:
            if self._state != "open":
                return True
            return self._cooldown_elapsed()

    async def call(self, fn: Callable[[], Awaitable[T]]) -> T:
        with self._lock:
            self._pre_call_gate()
            is_trial = self._state == "half_open"

        try:
            value = await fn()
        except Exception as exc:
            with self._lock:
                self._on_failure(exc)
            raise
        finally:
            if is_trial:
                with self._lock:
                    self._trial_in_flight = False

        with self._lock:
            if is_trial:
                self._state = "closed"
            self._failure_count = 0
            self._opened_at_monotonic = None
        return value

    def reset(self) -> None:
        with self._lock:
            self._state = "closed"
            self._failure_count = 0
            self._opened_at_monotonic = None
            self._last_error = None
            self._trial_in_flight = False

    def _cooldown_elapsed(self) -> bool:
        if self._opened_at_monotonic is None:
            return True
        return self._clock() - self._opened_at_monotonic >= self.recovery_timeout_seconds

    def _pre_call_gate(self) -> None:
        if self._state == "closed":
            return
        if self._state == "open":
            if self._opened_at_monotonic is None:
                self._opened_at_monotonic = self._clock()
            if not self._cooldown_elapsed():
                raise CircuitBreakerOpenError("Circuit breaker is open")
            self._state = "half_open"
        if self._trial_in_flight:
            raise CircuitBreakerOpenError("Circuit breaker trial call in flight")
        self._trial_in_flight = True

    def _on_failure(self, exc: Exception) -> None:
        self._failure_count += 1
        self._last_error = str(exc) or exc.__class__.__name__
        if self._failure_count >= self.failure_threshold or self._state == "half_open":
            self._state = "open"
            self._opened_at_monotonic = self._clock()
