"""Value types describing the outcome of steps and whole workflow runs."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from grantflow.core.status import ErrorKind, StepStatus, WorkflowStatus


@dataclass(frozen=True)
class StepError:
    """
    One failed, skipped, or cancelled step.

    Attributes:
        step_id: Identifier of the step within its graph
        kind: Classification of the failure
        message: Plain-language description, safe to show to callers
        attempts: Number of invocations made (0 for never-run steps)
    """

    step_id: str
    kind: ErrorKind
    message: str
    attempts: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "step_id": self.step_id,
            "kind": self.kind.value,
            "message": self.message,
            "attempts": self.attempts,
        }


@dataclass
class WorkflowResult:
    """
    Aggregated outcome of one workflow run.

    ``outputs`` holds only values produced by steps. ``errors`` is ordered
    by the time each error was recorded.
    """

    run_id: str
    status: WorkflowStatus
    outputs: dict[str, Any] = field(default_factory=dict)
    errors: list[StepError] = field(default_factory=list)
    step_statuses: dict[str, StepStatus] = field(default_factory=dict)
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == WorkflowStatus.SUCCEEDED

    def error_for(self, step_id: str) -> StepError | None:
        """Return the StepError recorded for ``step_id``, if any."""
        return next((e for e in self.errors if e.step_id == step_id), None)

    def summary(self) -> dict[str, Any]:
        """Structured summary without output values, suitable for logs and APIs."""
        return {
            "run_id": self.run_id,
            "status": self.status.value,
            "outputs": sorted(self.outputs),
            "errors": [e.to_dict() for e in self.errors],
            "steps": {step_id: str(s) for step_id, s in self.step_statuses.items()},
        }
