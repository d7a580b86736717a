"""Tests for RetryPolicy delay calculation and retry execution."""

import pytest
from conftest import RecordingSleep, no_sleep

from grantflow.core import (
    BusinessRuleError,
    RetryPolicy,
    TransientDependencyError,
    ValidationError,
)


class FlakyOperation:
    def __init__(self, failures):
        self.failures = list(failures)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return "ok"


def test_standard_policy_delays():
    policy = RetryPolicy.STANDARD

    assert policy.max_attempts == 4
    assert policy.delay_for_attempt(1) == 100
    assert policy.delay_for_attempt(2) == 200
    assert policy.delay_for_attempt(3) == 400
    assert policy.delay_for_attempt(4) is None


def test_delay_is_capped():
    policy = RetryPolicy(
        max_attempts=10, initial_delay_ms=1000, max_delay_ms=5000, backoff_multiplier=3.0
    )

    assert policy.delay_for_attempt(2) == 3000
    assert policy.delay_for_attempt(3) == 5000
    assert policy.delay_for_attempt(9) == 5000


def test_none_policy_never_retries():
    assert RetryPolicy.NONE.max_attempts == 1
    assert RetryPolicy.NONE.delay_for_attempt(1) is None


def test_with_max_attempts_uses_standard_delays():
    policy = RetryPolicy.with_max_attempts(6)

    assert policy.max_attempts == 6
    assert policy.initial_delay_ms == 100
    assert policy.max_delay_ms == 5000


def test_zero_attempts_rejected():
    with pytest.raises(ValueError, match="max_attempts"):
        RetryPolicy(max_attempts=0, initial_delay_ms=0, max_delay_ms=0, backoff_multiplier=1.0)


@pytest.mark.asyncio
async def test_three_transient_failures_then_success():
    operation = FlakyOperation([TransientDependencyError("throttled")] * 3)
    sleep = RecordingSleep()

    outcome = await RetryPolicy.STANDARD.attempt(operation, sleep=sleep)

    assert outcome.succeeded
    assert outcome.value == "ok"
    assert outcome.attempts == 4
    assert operation.calls == 4
    assert sleep.delays == [0.1, 0.2, 0.4]


@pytest.mark.asyncio
async def test_fourth_transient_failure_is_final():
    operation = FlakyOperation([TransientDependencyError(f"throttled {i}") for i in range(4)])

    outcome = await RetryPolicy.STANDARD.attempt(operation, sleep=no_sleep)

    assert not outcome.succeeded
    assert outcome.attempts == 4
    assert operation.calls == 4
    assert str(outcome.error) == "throttled 3"


@pytest.mark.asyncio
async def test_non_transient_failure_not_retried():
    operation = FlakyOperation([ValidationError("bad input")])
    sleep = RecordingSleep()

    outcome = await RetryPolicy.STANDARD.attempt(operation, sleep=sleep)

    assert outcome.attempts == 1
    assert operation.calls == 1
    assert isinstance(outcome.error, ValidationError)
    assert sleep.delays == []


@pytest.mark.asyncio
async def test_builtin_timeouts_are_transient():
    operation = FlakyOperation([TimeoutError(), ConnectionResetError()])

    outcome = await RetryPolicy.STANDARD.attempt(operation, sleep=no_sleep)

    assert outcome.succeeded
    assert outcome.attempts == 3


@pytest.mark.asyncio
async def test_execute_raises_last_failure():
    operation = FlakyOperation([BusinessRuleError("not eligible")])

    with pytest.raises(BusinessRuleError, match="not eligible"):
        await RetryPolicy.STANDARD.execute(operation, sleep=no_sleep)


@pytest.mark.asyncio
async def test_execute_returns_value():
    operation = FlakyOperation([TransientDependencyError("blip")])

    assert await RetryPolicy.STANDARD.execute(operation, sleep=no_sleep) == "ok"
