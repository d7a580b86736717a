"""
Error taxonomy for step execution.

Work functions signal failures by raising exceptions. The executor catches
them at the step boundary, classifies them into an ErrorKind and a plain
message, and records a StepError instead of propagating.

Only TRANSIENT_DEPENDENCY failures are retried:
- StepFailure subclasses carry their kind explicitly
- TimeoutError and ConnectionError are treated as transient
- Anything else is non-transient

Example:
    class QuotaError(StepFailure):
        kind = ErrorKind.TRANSIENT_DEPENDENCY

    # Transient - retried by the step's RetryPolicy
    raise QuotaError("Embedding quota exhausted, try again shortly")

    # Permanent - recorded immediately
    raise ValidationError("Profile is missing an organization name")
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

from grantflow.core.status import ErrorKind


class GrantflowError(Exception):
    """Base exception for grantflow."""

    pass


class StepFailure(GrantflowError):
    """
    Base class for failures raised from work functions.

    Subclasses set ``kind``; instances may override it. ``is_retryable()``
    answers whether a RetryPolicy should try again.
    """

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str, *, kind: ErrorKind | None = None):
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind

    def is_retryable(self) -> bool:
        return self.kind.is_retryable


class ValidationError(StepFailure):
    """Malformed input to a step."""

    kind = ErrorKind.VALIDATION


class AuthorizationError(StepFailure):
    """Caller lacks rights for the requested operation."""

    kind = ErrorKind.AUTHORIZATION


class NotFoundError(StepFailure):
    """A referenced entity is absent."""

    kind = ErrorKind.NOT_FOUND


class BusinessRuleError(StepFailure):
    """Input is well-formed but violates a business rule."""

    kind = ErrorKind.BUSINESS_RULE


class TransientDependencyError(StepFailure):
    """Rate limit, throttling, timeout, or temporary unavailability."""

    kind = ErrorKind.TRANSIENT_DEPENDENCY


class CircuitOpenError(StepFailure):
    """The circuit breaker for a dependency is rejecting calls."""

    kind = ErrorKind.CIRCUIT_OPEN

    def __init__(self, dependency: str, retry_after: float | None = None):
        if retry_after is not None:
            message = (
                f"Dependency '{dependency}' is temporarily unavailable; "
                f"retry in {retry_after:.0f}s"
            )
        else:
            message = f"Dependency '{dependency}' is temporarily unavailable"
        super().__init__(message)
        self.dependency = dependency
        self.retry_after = retry_after


class GraphValidationError(GrantflowError, ValueError):
    """A WorkflowGraph is malformed or its inputs cannot be satisfied.

    Raised before execution starts. This is a caller error, never recorded
    as a StepError.
    """

    pass


class UnknownRequestTypeError(ValidationError):
    """No plan exists for the requested workflow type."""

    pass


class RankingError(StepFailure):
    """The ranking pipeline could not produce a shortlist."""

    pass


# =============================================================================
# Worker errors - raised by external collaborator adapters
# =============================================================================


class WorkerError(StepFailure):
    """
    Failure reported by an external worker.

    ``transient=True`` (default) marks the failure as retryable. Otherwise the
    error carries ``kind`` (VALIDATION by default).
    """

    def __init__(self, message: str, *, transient: bool = True, kind: ErrorKind | None = None):
        if transient:
            kind = ErrorKind.TRANSIENT_DEPENDENCY
        elif kind is None:
            kind = ErrorKind.VALIDATION
        super().__init__(message, kind=kind)
        self.transient = transient


class ExtractionError(WorkerError):
    pass


class EmbeddingError(WorkerError):
    pass


class SearchError(WorkerError):
    pass


class GenerationError(WorkerError):
    pass


class BlobNotFoundError(NotFoundError):
    """Blob reference does not exist in the blob store."""

    def __init__(self, reference: str):
        super().__init__(f"Document '{reference}' was not found")
        self.reference = reference


# =============================================================================
# Classification
# =============================================================================


@dataclass(frozen=True)
class Classified:
    """Kind and plain-language message derived from an exception."""

    kind: ErrorKind
    message: str


def classify_error(error: BaseException) -> Classified:
    """
    Map an exception raised by a work function to an ErrorKind and message.

    Dependency-specific text from unclassified exceptions does not cross the
    result boundary; only StepFailure messages are passed through.
    """
    if isinstance(error, StepFailure):
        return Classified(error.kind, error.message)
    if isinstance(error, (TimeoutError, asyncio.TimeoutError)):
        return Classified(ErrorKind.TRANSIENT_DEPENDENCY, "Dependency timed out")
    if isinstance(error, ConnectionError):
        return Classified(ErrorKind.TRANSIENT_DEPENDENCY, "Dependency is unreachable")
    if isinstance(error, PermissionError):
        return Classified(ErrorKind.AUTHORIZATION, "Not permitted to access a required resource")
    if isinstance(error, FileNotFoundError):
        return Classified(ErrorKind.NOT_FOUND, "A required resource was not found")
    if hasattr(error, "is_retryable") and callable(error.is_retryable):
        if error.is_retryable():
            return Classified(ErrorKind.TRANSIENT_DEPENDENCY, str(error))
    if isinstance(error, ValueError):
        return Classified(ErrorKind.VALIDATION, str(error) or "Invalid input")
    return Classified(ErrorKind.INTERNAL, "Unexpected error while running step")


def is_transient(error: BaseException) -> bool:
    """Return True if the failure is expected to succeed on retry."""
    return classify_error(error).kind.is_retryable
