"""Status enumerations for workflow execution tracking.

Defines lifecycle states for individual steps, whole workflow runs,
and the error kinds used to classify step failures.
"""

from enum import Enum


class StepStatus(Enum):
    """Status of a single step within one workflow run.

    Lifecycle:
        PENDING → RUNNING → SUCCEEDED/FAILED
        PENDING → SKIPPED (an upstream step failed)
        PENDING → CANCELLED (run cancelled or out of budget)
    """

    PENDING = "pending"
    """Step has not been scheduled yet."""

    RUNNING = "running"
    """Step is in flight."""

    SUCCEEDED = "succeeded"
    """Step produced its output."""

    FAILED = "failed"
    """Step failed after exhausting its retry policy."""

    SKIPPED = "skipped"
    """Step was never invoked because an upstream step did not succeed."""

    CANCELLED = "cancelled"
    """Step never ran (or was interrupted) because the run stopped early."""

    @property
    def is_terminal(self) -> bool:
        """Check if this status is terminal (no more work for this step)."""
        return self not in (StepStatus.PENDING, StepStatus.RUNNING)

    def __str__(self) -> str:
        return self.value


class WorkflowStatus(Enum):
    """Overall outcome of a workflow run."""

    SUCCEEDED = "succeeded"
    """No step reported an error."""

    PARTIALLY_SUCCEEDED = "partially_succeeded"
    """At least one terminal output was produced, but some step failed."""

    FAILED = "failed"
    """Every terminal output is missing, or the run was cancelled."""

    def __str__(self) -> str:
        return self.value


class ErrorKind(Enum):
    """Classification of a step failure.

    Only TRANSIENT_DEPENDENCY is retried by a RetryPolicy. CIRCUIT_OPEN is
    not retried at call time; the caller may resubmit the whole workflow later.
    """

    VALIDATION = "validation"
    AUTHORIZATION = "authorization"
    NOT_FOUND = "not_found"
    BUSINESS_RULE = "business_rule"
    TRANSIENT_DEPENDENCY = "transient_dependency"
    CIRCUIT_OPEN = "circuit_open"
    UPSTREAM_FAILURE = "upstream_failure"
    CANCELLED = "cancelled"
    BUDGET_EXCEEDED = "budget_exceeded"
    INTERNAL = "internal"

    @property
    def is_retryable(self) -> bool:
        return self == ErrorKind.TRANSIENT_DEPENDENCY

    def __str__(self) -> str:
        return self.value
