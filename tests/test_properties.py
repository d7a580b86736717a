"""
Property-based tests for grantflow using Hypothesis.

These tests generate random workflow graphs to check, for any DAG shape:
- A run succeeds exactly when no step fails
- Descendants of a failed step are skipped and never invoked
- Every step reaches a terminal status
- Retry delays never exceed the configured cap
"""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from grantflow.core import (
    CircuitBreakerRegistry,
    ErrorKind,
    RetryPolicy,
    StepStatus,
    ValidationError,
    WorkflowStatus,
)
from grantflow.executor import Step, WorkflowExecutor, WorkflowGraph


@st.composite
def random_dags(draw):
    """(dependency lists, failing step indexes) for a DAG of up to 8 steps."""
    size = draw(st.integers(min_value=1, max_value=8))
    deps = [
        sorted(draw(st.sets(st.integers(min_value=0, max_value=i - 1), max_size=3))) if i else []
        for i in range(size)
    ]
    failing = draw(st.sets(st.integers(min_value=0, max_value=size - 1), max_size=size))
    return deps, failing


def _build(deps, failing, invoked):
    def work_for(index):
        async def work(inputs):
            invoked.append(index)
            if index in failing:
                raise ValidationError(f"step {index} failed")
            return index

        return work

    steps = [
        Step(
            f"s{i}",
            inputs=tuple(f"out{d}" for d in deps[i]),
            output=f"out{i}",
            work=work_for(i),
        )
        for i in range(len(deps))
    ]
    return WorkflowGraph(steps)


@pytest.mark.property
@pytest.mark.asyncio
@given(dag=random_dags())
@settings(max_examples=100, deadline=None)
async def test_failures_propagate_to_exactly_the_descendants(dag):
    """
    Property: a step is invoked iff no ancestor failed.

    Every descendant of a failing step is SKIPPED with upstream_failure,
    every other failing step is FAILED, and everything else SUCCEEDED.
    """
    deps, failing = dag
    invoked: list[int] = []
    graph = _build(deps, failing, invoked)

    result = await WorkflowExecutor(CircuitBreakerRegistry()).execute(graph, {})

    skipped: set[str] = set()
    for index in failing:
        skipped |= graph.descendants(f"s{index}")

    assert {f"s{i}" for i in invoked} == {s.step_id for s in graph} - skipped
    for step in graph:
        status = result.step_statuses[step.step_id]
        assert status.is_terminal
        if step.step_id in skipped:
            assert status == StepStatus.SKIPPED
            assert result.error_for(step.step_id).kind == ErrorKind.UPSTREAM_FAILURE
        elif int(step.step_id[1:]) in failing:
            assert status == StepStatus.FAILED
        else:
            assert status == StepStatus.SUCCEEDED
            assert result.outputs[step.output] == int(step.step_id[1:])


@pytest.mark.property
@pytest.mark.asyncio
@given(dag=random_dags())
@settings(max_examples=100, deadline=None)
async def test_run_succeeds_iff_no_step_fails(dag):
    """Property: overall status is SUCCEEDED exactly when the failing set is empty."""
    deps, failing = dag
    graph = _build(deps, failing, [])

    result = await WorkflowExecutor(CircuitBreakerRegistry()).execute(graph, {})

    assert (result.status == WorkflowStatus.SUCCEEDED) == (not failing)
    assert (not result.errors) == (not failing)
    if result.status == WorkflowStatus.FAILED:
        assert all(key not in result.outputs for key in graph.terminal_outputs)


@pytest.mark.property
@given(
    max_attempts=st.integers(min_value=1, max_value=20),
    initial_delay_ms=st.integers(min_value=0, max_value=10000),
    max_delay_ms=st.integers(min_value=0, max_value=60000),
    multiplier=st.floats(min_value=1.0, max_value=4.0),
)
def test_retry_delays_are_bounded(max_attempts, initial_delay_ms, max_delay_ms, multiplier):
    """Property: every delay is within [0, max_delay_ms] and None after the last attempt."""
    policy = RetryPolicy(
        max_attempts=max_attempts,
        initial_delay_ms=initial_delay_ms,
        max_delay_ms=max_delay_ms,
        backoff_multiplier=multiplier,
    )

    for attempt in range(1, max_attempts):
        delay = policy.delay_for_attempt(attempt)
        assert delay is not None
        assert 0 <= delay <= max_delay_ms
    assert policy.delay_for_attempt(max_attempts) is None
