"""
Workflow executor: runs a WorkflowGraph and aggregates a WorkflowResult.

Scheduling is event-driven rather than level-by-level:
1. Every pending step whose effective dependencies all succeeded starts
   immediately as its own asyncio task
2. The executor waits for the first in-flight step to finish
3. Its output is written into the run state, which may unblock dependents
4. Steps downstream of a failure are skipped (never invoked)
5. The run ends when nothing is ready and nothing is in flight

Each step invocation runs under the step's RetryPolicy, and every attempt is
guarded by the circuit breaker named in ``step.dependency``.

Step failures never propagate out of ``execute()``; they are recorded as
StepError entries. Only a malformed graph raises (GraphValidationError).

Concurrency vs Parallelism:
Steps run concurrently on the event loop. Work functions must be
non-blocking; offload CPU-heavy or blocking calls with asyncio.to_thread().
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from uuid_extensions import uuid7

from grantflow.core.circuit import CircuitBreakerRegistry
from grantflow.core.errors import classify_error
from grantflow.core.result import StepError, WorkflowResult
from grantflow.core.retry import RetryOutcome, Sleep
from grantflow.core.status import ErrorKind, StepStatus, WorkflowStatus
from grantflow.executor.cancellation import CancellationToken
from grantflow.executor.graph import Step, WorkflowGraph

logger = logging.getLogger(__name__)

__all__ = ["WorkflowExecutor"]

_BLOCKED = (StepStatus.FAILED, StepStatus.SKIPPED)


@dataclass
class _RunState:
    """Mutable state of a single run. Discarded once the result is built."""

    run_id: str
    values: dict[str, Any]
    statuses: dict[str, StepStatus]
    outputs: dict[str, Any] = field(default_factory=dict)
    errors: list[StepError] = field(default_factory=list)
    attempts: dict[str, int] = field(default_factory=dict)
    in_flight: dict[asyncio.Task, str] = field(default_factory=dict)
    stop: ErrorKind | None = None
    stop_message: str = ""

    def fail(self, step_id: str, status: StepStatus, error: StepError) -> None:
        self.statuses[step_id] = status
        self.errors.append(error)


class WorkflowExecutor:
    """
    Runs workflow graphs against a shared circuit breaker registry.

    Usage:
        ```python
        executor = WorkflowExecutor(CircuitBreakerRegistry())
        result = await executor.execute(graph, {"document": pdf_bytes}, budget=30.0)

        if result.status == WorkflowStatus.PARTIALLY_SUCCEEDED:
            for error in result.errors:
                print(error.step_id, error.kind, error.message)
        ```
    """

    def __init__(self, breakers: CircuitBreakerRegistry | None = None, *, sleep: Sleep = asyncio.sleep):
        self._breakers = breakers if breakers is not None else CircuitBreakerRegistry()
        self._sleep = sleep

    @property
    def breakers(self) -> CircuitBreakerRegistry:
        return self._breakers

    async def execute(
        self,
        graph: WorkflowGraph,
        payload: Mapping[str, Any],
        *,
        cancellation: CancellationToken | None = None,
        budget: float | None = None,
        run_id: str | None = None,
    ) -> WorkflowResult:
        """
        Execute ``graph`` with ``payload`` as the initial run state.

        Args:
            graph: Workflow to run
            payload: Initial values, keyed like step inputs
            cancellation: Token the caller may use to stop scheduling
            budget: Wall-clock budget in seconds; None for unlimited
            run_id: Identifier reported in the result (generated if omitted)

        Raises:
            GraphValidationError: If a step input cannot be satisfied
        """
        graph.validate(payload.keys())

        state = _RunState(
            run_id=run_id or str(uuid7()),
            values=dict(payload),
            statuses={step.step_id: StepStatus.PENDING for step in graph},
        )
        started_at = datetime.now(UTC)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + budget if budget is not None else None

        logger.info(f"Run {state.run_id} started: {len(graph)} steps")

        cancel_waiter: asyncio.Task | None = None
        if cancellation is not None:
            cancel_waiter = asyncio.ensure_future(cancellation.wait())

        try:
            while True:
                self._skip_blocked(graph, state)
                self._check_stop(graph, state, cancellation, deadline, loop.time())
                if state.stop is None:
                    self._start_ready(graph, state)

                if not state.in_flight:
                    break

                if state.stop == ErrorKind.BUDGET_EXCEEDED:
                    await self._abort_in_flight(graph, state)
                    break

                waitables: set[asyncio.Future] = set(state.in_flight)
                if cancel_waiter is not None and not cancel_waiter.done():
                    waitables.add(cancel_waiter)
                timeout = max(0.0, deadline - loop.time()) if deadline is not None else None

                done, _ = await asyncio.wait(
                    waitables, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
                )
                for task in done:
                    if task is cancel_waiter:
                        continue
                    step_id = state.in_flight.pop(task)
                    self._record(graph.step(step_id), task.result(), state)
        except asyncio.CancelledError:
            for task in state.in_flight:
                task.cancel()
            raise
        finally:
            if cancel_waiter is not None and not cancel_waiter.done():
                cancel_waiter.cancel()

        self._finalize(graph, state)

        result = WorkflowResult(
            run_id=state.run_id,
            status=self._overall_status(graph, state),
            outputs=state.outputs,
            errors=state.errors,
            step_statuses=state.statuses,
            started_at=started_at,
            finished_at=datetime.now(UTC),
        )
        logger.info(
            f"Run {state.run_id} finished: status={result.status}, "
            f"outputs={sorted(result.outputs)}, errors={len(result.errors)}"
        )
        return result

    # -------------------------------------------------------------------------
    # Scheduling
    # -------------------------------------------------------------------------

    def _check_stop(
        self,
        graph: WorkflowGraph,
        state: _RunState,
        cancellation: CancellationToken | None,
        deadline: float | None,
        now: float,
    ) -> None:
        """
        Stop scheduling on cancellation or budget exhaustion.

        Both only apply while work remains: a cancellation that arrives after
        every step has been scheduled changes nothing. The budget is enforced
        even after a cancellation, since running steps may still overrun it.
        """
        if state.stop == ErrorKind.BUDGET_EXCEEDED:
            return
        pending = any(s == StepStatus.PENDING for s in state.statuses.values())

        if deadline is not None and now >= deadline and (pending or state.in_flight):
            state.stop = ErrorKind.BUDGET_EXCEEDED
            state.stop_message = "Workflow run exceeded its time budget"
            logger.warning(f"Run {state.run_id} exceeded its time budget")
            self._cancel_pending(graph, state)
        elif state.stop is None and pending and cancellation is not None and cancellation.cancelled:
            state.stop = ErrorKind.CANCELLED
            state.stop_message = cancellation.reason or "Workflow run was cancelled"
            logger.info(f"Run {state.run_id} cancelled: {state.stop_message}")
            self._cancel_pending(graph, state)

    def _skip_blocked(self, graph: WorkflowGraph, state: _RunState) -> None:
        """Mark pending steps downstream of a failure as skipped, transitively."""
        changed = True
        while changed:
            changed = False
            for step in graph:
                if state.statuses[step.step_id] != StepStatus.PENDING:
                    continue
                blocker = next(
                    (d for d in graph.dependencies(step.step_id) if state.statuses[d] in _BLOCKED),
                    None,
                )
                if blocker is None:
                    continue
                logger.warning(
                    f"Run {state.run_id}: skipping '{step.step_id}', "
                    f"upstream step '{blocker}' did not succeed"
                )
                state.fail(
                    step.step_id,
                    StepStatus.SKIPPED,
                    StepError(
                        step_id=step.step_id,
                        kind=ErrorKind.UPSTREAM_FAILURE,
                        message=f"Not run because upstream step '{blocker}' did not succeed",
                    ),
                )
                changed = True

    def _start_ready(self, graph: WorkflowGraph, state: _RunState) -> None:
        for step in graph:
            if state.statuses[step.step_id] != StepStatus.PENDING:
                continue
            deps = graph.dependencies(step.step_id)
            if not all(state.statuses[d] == StepStatus.SUCCEEDED for d in deps):
                continue
            if not all(key in state.values for key in step.inputs):
                continue

            inputs = {key: state.values[key] for key in step.inputs}
            state.statuses[step.step_id] = StepStatus.RUNNING
            state.attempts[step.step_id] = 0
            task = asyncio.ensure_future(self._invoke(step, inputs, state))
            state.in_flight[task] = step.step_id
            logger.debug(f"Run {state.run_id}: started '{step.step_id}'")

    async def _invoke(self, step: Step, inputs: dict[str, Any], state: _RunState) -> RetryOutcome:
        async def attempt() -> Any:
            state.attempts[step.step_id] += 1
            if step.dependency is None:
                return await step.work(inputs)
            return await self._breakers.guard(step.dependency, lambda: step.work(inputs))

        return await step.retry_policy.attempt(
            attempt, label=f"Step '{step.step_id}'", sleep=self._sleep
        )

    def _record(self, step: Step, outcome: RetryOutcome, state: _RunState) -> None:
        if outcome.succeeded:
            state.values[step.output] = outcome.value
            state.outputs[step.output] = outcome.value
            state.statuses[step.step_id] = StepStatus.SUCCEEDED
            logger.debug(
                f"Run {state.run_id}: '{step.step_id}' succeeded after {outcome.attempts} attempt(s)"
            )
            return

        classified = classify_error(outcome.error)
        logger.error(
            f"Run {state.run_id}: '{step.step_id}' failed after {outcome.attempts} attempt(s): "
            f"kind={classified.kind}, error={outcome.error!r}"
        )
        state.fail(
            step.step_id,
            StepStatus.FAILED,
            StepError(
                step_id=step.step_id,
                kind=classified.kind,
                message=classified.message,
                attempts=outcome.attempts,
            ),
        )

    async def _abort_in_flight(self, graph: WorkflowGraph, state: _RunState) -> None:
        tasks = list(state.in_flight)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        for task in tasks:
            step_id = state.in_flight.pop(task)
            if not task.cancelled() and task.exception() is None:
                self._record(graph.step(step_id), task.result(), state)
                continue
            state.fail(
                step_id,
                StepStatus.CANCELLED,
                StepError(
                    step_id=step_id,
                    kind=ErrorKind.BUDGET_EXCEEDED,
                    message=state.stop_message,
                    attempts=state.attempts.get(step_id, 0),
                ),
            )

    def _finalize(self, graph: WorkflowGraph, state: _RunState) -> None:
        self._skip_blocked(graph, state)
        self._cancel_pending(graph, state)

    @staticmethod
    def _cancel_pending(graph: WorkflowGraph, state: _RunState) -> None:
        for step in graph:
            if state.statuses[step.step_id] != StepStatus.PENDING:
                continue
            state.fail(
                step.step_id,
                StepStatus.CANCELLED,
                StepError(
                    step_id=step.step_id,
                    kind=state.stop or ErrorKind.CANCELLED,
                    message=state.stop_message or "Step was never scheduled",
                ),
            )

    @staticmethod
    def _overall_status(graph: WorkflowGraph, state: _RunState) -> WorkflowStatus:
        if not state.errors:
            return WorkflowStatus.SUCCEEDED
        if state.stop is not None:
            return WorkflowStatus.FAILED
        if all(key not in state.outputs for key in graph.terminal_outputs):
            return WorkflowStatus.FAILED
        return WorkflowStatus.PARTIALLY_SUCCEEDED
