"""
grantflow: workflow orchestration for grant discovery and compliance

Design Pattern: Façade Pattern
This module re-exports the public surface: build a WorkflowGraph of Steps and
run it with a WorkflowExecutor, or let OrchestrationService plan and run
whole requests against the worker contracts.

Example:
    ```python
    import asyncio
    from grantflow import OrchestrationService

    async def main():
        service = OrchestrationService(
            extractor=extractor, embedder=embedder, index=index, generator=generator
        )
        result = await service.submit_workflow(
            "grant_search",
            {"query": "rural broadband", "profile": {"categories": ["infrastructure"]}},
        )
        for ranked in result.outputs.get("grants", ()):
            print(ranked.candidate.candidate_id, ranked.score)

    asyncio.run(main())
    ```
"""

from grantflow.compliance import (
    ComplianceAssessment,
    ComplianceEvaluator,
    ComplianceStatus,
    parse_expiry_date,
)
from grantflow.config import OrchestratorConfig
from grantflow.core import (
    CircuitBreakerRegistry,
    CircuitBreakerState,
    CircuitState,
    ErrorKind,
    RetryPolicy,
    StepError,
    StepStatus,
    WorkflowResult,
    WorkflowStatus,
)
from grantflow.drafting import DraftConstraints, GeneratedDraft
from grantflow.executor import CancellationToken, Step, WorkflowExecutor, WorkflowGraph
from grantflow.planner import RequestType, WorkflowPlan, WorkflowPlanner
from grantflow.ranking import (
    ProfileAttributes,
    RankedCandidate,
    RankingPipeline,
    RankingResult,
    ScoringWeights,
)
from grantflow.service import OrchestrationService, WorkflowHandle
from grantflow.workers import (
    BlobStore,
    CandidateRecord,
    DocumentExtractor,
    Embedder,
    ExtractedDocument,
    SearchHit,
    SimilarityIndex,
    TextGenerator,
)

__version__ = "0.1.0"

__all__ = [
    # Core types
    "StepStatus",
    "WorkflowStatus",
    "ErrorKind",
    "StepError",
    "WorkflowResult",
    "RetryPolicy",
    "CircuitBreakerRegistry",
    "CircuitBreakerState",
    "CircuitState",
    # Execution
    "Step",
    "WorkflowGraph",
    "WorkflowExecutor",
    "CancellationToken",
    # Planning and service
    "RequestType",
    "WorkflowPlan",
    "WorkflowPlanner",
    "OrchestrationService",
    "WorkflowHandle",
    "OrchestratorConfig",
    # Workers
    "ComplianceEvaluator",
    "ComplianceAssessment",
    "ComplianceStatus",
    "parse_expiry_date",
    "RankingPipeline",
    "RankingResult",
    "RankedCandidate",
    "ProfileAttributes",
    "ScoringWeights",
    "DraftConstraints",
    "GeneratedDraft",
    # Worker contracts
    "DocumentExtractor",
    "Embedder",
    "SimilarityIndex",
    "TextGenerator",
    "BlobStore",
    "ExtractedDocument",
    "CandidateRecord",
    "SearchHit",
    # Metadata
    "__version__",
]
