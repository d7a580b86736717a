"""
Executor module - runtime engine for workflow graphs.

- graph: Step and WorkflowGraph (DAG structure and validation)
- runner: WorkflowExecutor (scheduling, retries, circuit breaking, aggregation)
- cancellation: CancellationToken (cooperative stop)
"""

from grantflow.executor.cancellation import CancellationToken
from grantflow.executor.graph import GraphSummary, Step, StepInputs, WorkFunction, WorkflowGraph
from grantflow.executor.runner import WorkflowExecutor

__all__ = [
    "Step",
    "StepInputs",
    "WorkFunction",
    "WorkflowGraph",
    "GraphSummary",
    "WorkflowExecutor",
    "CancellationToken",
]
