"""
Orchestration service: the surface exposed to API, CLI, and web layers.

Design Pattern: Façade
OrchestrationService wires the planner, executor, circuit breaker registry,
and optional audit store behind two operations:

- submit_workflow(request_type, payload) -> WorkflowResult
- get_circuit_state(dependency_name) -> CircuitBreakerState

``start_workflow`` offers the same run as a pollable handle for callers
that cannot wait synchronously.

Example:
    ```python
    service = OrchestrationService(
        extractor=extractor,
        embedder=embedder,
        index=index,
        generator=generator,
        run_store=SqliteRunStore("runs.db"),
    )
    result = await service.submit_workflow(
        "grant_application",
        {"document": pdf_bytes, "query": "youth literacy", "profile": {...}},
        run_id="req-1234",
    )
    ```
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from datetime import date
from typing import Any

from uuid_extensions import uuid7

from grantflow.config import OrchestratorConfig
from grantflow.core.circuit import CircuitBreakerRegistry, CircuitBreakerState
from grantflow.core.result import WorkflowResult
from grantflow.core.retry import Sleep
from grantflow.executor.cancellation import CancellationToken
from grantflow.executor.runner import WorkflowExecutor
from grantflow.planner import RequestType, WorkflowPlanner
from grantflow.storage.base import (
    DuplicateRunError,
    RunRecord,
    RunStore,
    StorageError,
    fingerprint_payload,
)
from grantflow.workers import BlobStore, DocumentExtractor, Embedder, SimilarityIndex, TextGenerator

logger = logging.getLogger(__name__)

__all__ = ["OrchestrationService", "WorkflowHandle"]


class WorkflowHandle:
    """
    Pollable handle for a workflow started with ``start_workflow``.

    ``cancel()`` is cooperative: running steps finish, nothing new starts,
    and the result reports never-run steps as cancelled.
    """

    def __init__(self, run_id: str, task: asyncio.Task, token: CancellationToken):
        self.run_id = run_id
        self._task = task
        self._token = token

    def __repr__(self) -> str:
        return f"WorkflowHandle({self.run_id!r}, done={self.done()})"

    def done(self) -> bool:
        return self._task.done()

    def cancel(self, reason: str = "Workflow run was cancelled by the caller") -> None:
        self._token.cancel(reason)

    async def result(self) -> WorkflowResult:
        return await asyncio.shield(self._task)


class OrchestrationService:
    def __init__(
        self,
        *,
        extractor: DocumentExtractor,
        embedder: Embedder,
        index: SimilarityIndex,
        generator: TextGenerator,
        blob_store: BlobStore | None = None,
        config: OrchestratorConfig | None = None,
        breakers: CircuitBreakerRegistry | None = None,
        run_store: RunStore | None = None,
        today: Callable[[], date] = date.today,
        sleep: Sleep = asyncio.sleep,
    ):
        self._config = config or OrchestratorConfig.DEFAULT
        self._breakers = breakers or CircuitBreakerRegistry(self._config.circuit)
        self._run_store = run_store
        self._planner = WorkflowPlanner(
            extractor=extractor,
            embedder=embedder,
            index=index,
            generator=generator,
            blob_store=blob_store,
            breakers=self._breakers,
            config=self._config,
            today=today,
        )
        self._executor = WorkflowExecutor(self._breakers, sleep=sleep)

    @property
    def breakers(self) -> CircuitBreakerRegistry:
        return self._breakers

    @property
    def planner(self) -> WorkflowPlanner:
        return self._planner

    async def submit_workflow(
        self,
        request_type: RequestType | str,
        payload: Mapping[str, Any],
        *,
        run_id: str | None = None,
        cancellation: CancellationToken | None = None,
    ) -> WorkflowResult:
        """
        Plan and run a workflow, returning its aggregated result.

        The run id is checked against the run store before anything runs.
        A failure to write the audit record afterwards is logged; it never
        replaces the result.

        Raises:
            UnknownRequestTypeError: No plan exists for ``request_type``
            ValidationError: The payload cannot satisfy the plan
            DuplicateRunError: ``run_id`` was already recorded in the run store
        """
        run_id = run_id or str(uuid7())
        if self._run_store is not None and await self._run_store.exists(run_id):
            raise DuplicateRunError(run_id)
        plan = self._planner.plan(request_type, payload)

        logger.info(f"Submitting {plan.request_type} workflow as run {run_id}")
        result = await self._executor.execute(
            plan.graph,
            plan.payload,
            cancellation=cancellation,
            budget=plan.budget,
            run_id=run_id,
        )

        if self._run_store is not None:
            record = RunRecord(
                run_id=run_id,
                request_type=plan.request_type.value,
                payload_hash=fingerprint_payload(payload),
                result=result,
            )
            try:
                await self._run_store.save(record)
            except StorageError as e:
                logger.error(f"Failed to record run {run_id} in {self._run_store!r}: {e}")

        return result

    def start_workflow(
        self,
        request_type: RequestType | str,
        payload: Mapping[str, Any],
        *,
        run_id: str | None = None,
    ) -> WorkflowHandle:
        """Start a workflow in the background and return a pollable handle.

        Must be called from a running event loop.
        """
        run_id = run_id or str(uuid7())
        token = CancellationToken()
        task = asyncio.ensure_future(
            self.submit_workflow(request_type, payload, run_id=run_id, cancellation=token)
        )
        return WorkflowHandle(run_id, task, token)

    async def get_circuit_state(self, dependency_name: str) -> CircuitBreakerState:
        return await self._breakers.state(dependency_name)

    async def get_run(self, run_id: str) -> RunRecord | None:
        """Return the audit record for ``run_id`` (None without a run store)."""
        if self._run_store is None:
            return None
        return await self._run_store.get(run_id)
