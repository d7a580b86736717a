"""
Circuit breakers for unreliable external dependencies.

A CircuitBreakerRegistry holds one breaker per dependency name. Breakers are
created lazily on first use and shared by every workflow run in the process.

State machine:
    CLOSED --(5 transient failures within 60s)--> OPEN
    OPEN --(30s elapsed, next call)--> HALF_OPEN (one trial call admitted)
    HALF_OPEN --(2 consecutive successes)--> CLOSED
    HALF_OPEN --(any transient failure)--> OPEN

Each breaker guards its state with its own asyncio.Lock, so unrelated
dependencies never serialize each other. The lock is never held while the
guarded operation runs.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import TypeVar

from grantflow.core.errors import CircuitOpenError, is_transient

logger = logging.getLogger(__name__)

T = TypeVar("T")

Clock = Callable[[], float]


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """Thresholds shared by every breaker in a registry."""

    failure_threshold: int = 5
    failure_window: float = 60.0
    open_timeout: float = 30.0
    success_threshold: int = 2


@dataclass(frozen=True)
class CircuitBreakerState:
    """
    Snapshot of one breaker, for operational visibility.

    ``last_transition_at`` is a reading of the registry clock
    (time.monotonic by default).
    """

    name: str
    state: CircuitState
    consecutive_failures: int = 0
    consecutive_successes: int = 0
    last_transition_at: float = 0.0


class CircuitBreaker:
    """Failure-rate gate for a single named dependency."""

    def __init__(self, name: str, config: CircuitBreakerConfig, clock: Clock):
        self.name = name
        self._config = config
        self._clock = clock
        self._lock = asyncio.Lock()

        self._state = CircuitState.CLOSED
        self._failure_times: deque[float] = deque()
        self._consecutive_successes = 0
        self._last_transition_at = clock()
        self._trial_in_flight = False

    def __repr__(self) -> str:
        return f"CircuitBreaker({self.name!r}, state={self._state})"

    def snapshot(self) -> CircuitBreakerState:
        return CircuitBreakerState(
            name=self.name,
            state=self._state,
            consecutive_failures=len(self._failure_times),
            consecutive_successes=self._consecutive_successes,
            last_transition_at=self._last_transition_at,
        )

    async def state(self) -> CircuitBreakerState:
        """Return a consistent snapshot of this breaker."""
        async with self._lock:
            return self.snapshot()

    async def call(self, operation: Callable[[], Awaitable[T]]) -> T:
        """
        Invoke ``operation`` if the breaker admits it.

        Raises:
            CircuitOpenError: The breaker is open (or a half-open trial is
                already in flight); ``operation`` was not invoked.
        """
        await self._admit()
        try:
            result = await operation()
        except asyncio.CancelledError:
            async with self._lock:
                self._trial_in_flight = False
            raise
        except Exception as e:
            async with self._lock:
                if is_transient(e):
                    self._record_failure()
                else:
                    # The dependency answered; only release a half-open trial.
                    self._trial_in_flight = False
            raise
        async with self._lock:
            self._record_success()
        return result

    async def reset(self) -> None:
        async with self._lock:
            self._transition(CircuitState.CLOSED)

    async def seed(self, state: CircuitState, *, failures: int = 0, successes: int = 0) -> None:
        """Force this breaker into ``state`` with the given counters."""
        async with self._lock:
            self._transition(state)
            now = self._clock()
            self._failure_times.extend([now] * failures)
            self._consecutive_successes = successes

    # -------------------------------------------------------------------------
    # Transitions (callers hold self._lock)
    # -------------------------------------------------------------------------

    async def _admit(self) -> None:
        async with self._lock:
            if self._state == CircuitState.CLOSED:
                return

            if self._state == CircuitState.OPEN:
                elapsed = self._clock() - self._last_transition_at
                if elapsed < self._config.open_timeout:
                    raise CircuitOpenError(self.name, self._config.open_timeout - elapsed)
                self._transition(CircuitState.HALF_OPEN)

            if self._trial_in_flight:
                raise CircuitOpenError(self.name)
            self._trial_in_flight = True

    def _record_success(self) -> None:
        self._failure_times.clear()
        self._consecutive_successes += 1
        if self._state == CircuitState.HALF_OPEN:
            self._trial_in_flight = False
            if self._consecutive_successes >= self._config.success_threshold:
                self._transition(CircuitState.CLOSED)

    def _record_failure(self) -> None:
        now = self._clock()
        self._consecutive_successes = 0
        self._failure_times.append(now)

        if self._state == CircuitState.HALF_OPEN:
            self._transition(CircuitState.OPEN)
            return

        if self._state == CircuitState.CLOSED:
            horizon = now - self._config.failure_window
            while self._failure_times and self._failure_times[0] < horizon:
                self._failure_times.popleft()
            if len(self._failure_times) >= self._config.failure_threshold:
                self._transition(CircuitState.OPEN)

    def _transition(self, state: CircuitState) -> None:
        if state != self._state:
            logger.info(f"Circuit '{self.name}' {self._state} -> {state}")
        self._state = state
        self._last_transition_at = self._clock()
        self._trial_in_flight = False
        self._consecutive_successes = 0
        if state != CircuitState.OPEN:
            self._failure_times.clear()


class CircuitBreakerRegistry:
    """
    Explicit, named registry of circuit breakers.

    Usage:
        breakers = CircuitBreakerRegistry()
        vector = await breakers.guard("embedding", lambda: embedder.embed(text))
        state = await breakers.state("embedding")
    """

    def __init__(
        self,
        config: CircuitBreakerConfig | None = None,
        clock: Clock = time.monotonic,
    ):
        self._config = config or CircuitBreakerConfig()
        self._clock = clock
        self._breakers: dict[str, CircuitBreaker] = {}

    def __repr__(self) -> str:
        return f"CircuitBreakerRegistry({sorted(self._breakers)})"

    @property
    def config(self) -> CircuitBreakerConfig:
        return self._config

    def names(self) -> list[str]:
        return sorted(self._breakers)

    def breaker(self, name: str) -> CircuitBreaker:
        """Return the breaker for ``name``, creating it on first use."""
        existing = self._breakers.get(name)
        if existing is None:
            existing = self._breakers.setdefault(
                name, CircuitBreaker(name, self._config, self._clock)
            )
        return existing

    async def guard(self, name: str, operation: Callable[[], Awaitable[T]]) -> T:
        return await self.breaker(name).call(operation)

    async def state(self, name: str) -> CircuitBreakerState:
        return await self.breaker(name).state()

    async def reset(self, name: str | None = None) -> None:
        """Close one breaker, or every known breaker when ``name`` is None."""
        targets = [self.breaker(name)] if name is not None else list(self._breakers.values())
        for breaker in targets:
            await breaker.reset()

    async def seed(
        self, name: str, state: CircuitState, *, failures: int = 0, successes: int = 0
    ) -> None:
        await self.breaker(name).seed(state, failures=failures, successes=successes)
