"""
Retry policy configuration and execution for fallible operations.

Design Pattern: Strategy Pattern
RetryPolicy encapsulates retry behavior, allowing different retry strategies
per step without modifying the executor.

Defaults:
- NONE: a single attempt, no retries
- STANDARD: 1 attempt + 3 retries, delays 100ms, 200ms, 400ms (capped at 5s)
- Only transient failures are retried (see grantflow.core.errors.is_transient)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Generic, TypeVar, cast

from grantflow.core.errors import is_transient

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True)
class RetryOutcome(Generic[T]):
    """
    Result of running an operation under a RetryPolicy.

    Exactly one of ``value``/``error`` is meaningful: ``error`` is None on
    success. ``attempts`` counts every invocation, including the first.
    """

    value: T | None
    error: BaseException | None
    attempts: int

    @property
    def succeeded(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        """Return the value, or raise the last failure."""
        if self.error is not None:
            raise self.error
        return cast(T, self.value)


@dataclass(frozen=True)
class RetryPolicy:
    """
    Configuration for step retry behavior.

    Controls how many times an operation is attempted on transient errors
    and the backoff strategy between attempts.

    Examples:
        # Named policy
        policy = RetryPolicy.STANDARD

        # Custom policy
        policy = RetryPolicy(
            max_attempts=5,
            initial_delay_ms=250,
            max_delay_ms=10000,
            backoff_multiplier=2.0,
        )
    """

    max_attempts: int
    """Maximum number of attempts (including the first try).

    For example, max_attempts = 4 means:
    - Attempt 1: immediate (first try)
    - Attempt 2: after initial_delay
    - Attempt 3: after initial_delay * backoff_multiplier
    - Attempt 4: after initial_delay * backoff_multiplier^2
    """

    initial_delay_ms: int
    """Delay before the first retry in milliseconds."""

    max_delay_ms: int
    """Maximum delay between retries in milliseconds (caps exponential backoff)."""

    backoff_multiplier: float
    """Multiplier for exponential backoff.

    Each retry delay is calculated as:
    min(initial_delay * backoff_multiplier^(attempt-1), max_delay)
    """

    if TYPE_CHECKING:
        NONE: RetryPolicy
        STANDARD: RetryPolicy
    else:
        NONE = cast("RetryPolicy", None)
        STANDARD = cast("RetryPolicy", None)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {self.max_attempts}")

    @classmethod
    def with_max_attempts(cls, max_attempts: int) -> RetryPolicy:
        """
        Create a policy with custom max_attempts (uses standard delays).

        Example:
            policy = RetryPolicy.with_max_attempts(6)
        """
        return cls(
            max_attempts=max_attempts,
            initial_delay_ms=100,
            max_delay_ms=5000,
            backoff_multiplier=2.0,
        )

    def delay_for_attempt(self, attempt: int) -> int | None:
        """
        Calculate the delay before the next attempt.

        Args:
            attempt: The attempt that just failed (1-indexed)

        Returns:
            Delay in milliseconds before the next attempt, or None if no
            attempts remain.

        Example:
            policy = RetryPolicy.STANDARD
            policy.delay_for_attempt(1)  # 100
            policy.delay_for_attempt(3)  # 400
            policy.delay_for_attempt(4)  # None
        """
        if attempt >= self.max_attempts:
            return None

        exponent = attempt - 1
        delay_ms = self.initial_delay_ms * self.backoff_multiplier**exponent
        delay_ms = min(delay_ms, self.max_delay_ms)

        return int(delay_ms)

    async def attempt(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        label: str = "operation",
        sleep: Sleep = asyncio.sleep,
    ) -> RetryOutcome[T]:
        """
        Run ``operation`` until it succeeds, fails non-transiently, or
        attempts run out.

        Never raises for failures of ``operation``; the last failure is
        carried in the returned RetryOutcome. asyncio cancellation
        propagates.
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                value = await operation()
                return RetryOutcome(value=value, error=None, attempts=attempt)
            except Exception as e:
                if not is_transient(e):
                    logger.debug(f"{label} failed permanently on attempt {attempt}: {e!r}")
                    return RetryOutcome(value=None, error=e, attempts=attempt)

                delay_ms = self.delay_for_attempt(attempt)
                if delay_ms is None:
                    logger.debug(
                        f"{label} exhausted {self.max_attempts} attempts, last error: {e!r}"
                    )
                    return RetryOutcome(value=None, error=e, attempts=attempt)

                logger.warning(
                    f"{label} failed transiently (attempt {attempt}/{self.max_attempts}), "
                    f"retrying in {delay_ms}ms: {e}"
                )
                await sleep(delay_ms / 1000.0)

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        label: str = "operation",
        sleep: Sleep = asyncio.sleep,
    ) -> T:
        """
        Return the first success of ``operation``, or raise its last failure.

        Non-transient failures propagate immediately without retry.
        """
        outcome = await self.attempt(operation, label=label, sleep=sleep)
        return outcome.unwrap()

    def __repr__(self) -> str:
        return (
            f"RetryPolicy(max_attempts={self.max_attempts}, "
            f"initial_delay_ms={self.initial_delay_ms}, "
            f"max_delay_ms={self.max_delay_ms}, "
            f"backoff_multiplier={self.backoff_multiplier})"
        )


RetryPolicy.NONE = RetryPolicy(
    max_attempts=1, initial_delay_ms=0, max_delay_ms=0, backoff_multiplier=1.0
)

RetryPolicy.STANDARD = RetryPolicy(
    max_attempts=4,
    initial_delay_ms=100,  # 100 milliseconds
    max_delay_ms=5000,  # 5 seconds
    backoff_multiplier=2.0,
)
