"""
Core types for the grantflow orchestration engine.

This module contains the fundamental types used throughout grantflow:
- StepStatus, WorkflowStatus, ErrorKind: lifecycle and failure classification
- StepError, WorkflowResult: outcome value types
- RetryPolicy, RetryOutcome: retry configuration and execution
- CircuitBreakerRegistry, CircuitState, CircuitBreakerState: dependency gating
- StepFailure and subclasses: exceptions raised by work functions
"""

from grantflow.core.circuit import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitBreakerState,
    CircuitState,
)
from grantflow.core.errors import (
    AuthorizationError,
    BlobNotFoundError,
    BusinessRuleError,
    CircuitOpenError,
    EmbeddingError,
    ExtractionError,
    GenerationError,
    GrantflowError,
    GraphValidationError,
    NotFoundError,
    RankingError,
    SearchError,
    StepFailure,
    TransientDependencyError,
    UnknownRequestTypeError,
    ValidationError,
    WorkerError,
    classify_error,
    is_transient,
)
from grantflow.core.result import StepError, WorkflowResult
from grantflow.core.retry import RetryOutcome, RetryPolicy
from grantflow.core.status import ErrorKind, StepStatus, WorkflowStatus

__all__ = [
    "StepStatus",
    "WorkflowStatus",
    "ErrorKind",
    "StepError",
    "WorkflowResult",
    "RetryPolicy",
    "RetryOutcome",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerRegistry",
    "CircuitBreakerState",
    "CircuitState",
    "GrantflowError",
    "StepFailure",
    "ValidationError",
    "AuthorizationError",
    "NotFoundError",
    "BusinessRuleError",
    "TransientDependencyError",
    "CircuitOpenError",
    "GraphValidationError",
    "UnknownRequestTypeError",
    "RankingError",
    "WorkerError",
    "ExtractionError",
    "EmbeddingError",
    "SearchError",
    "GenerationError",
    "BlobNotFoundError",
    "classify_error",
    "is_transient",
]
