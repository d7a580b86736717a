"""
Workflow planning: turn a high-level request into a WorkflowGraph.

Request types:
- compliance_check:  [fetch_document →] extract_document → evaluate_compliance
- grant_search:      embed_query → search_candidates → filter_candidates
                     → score_candidates → select_shortlist
- grant_application: both branches above, plus
                     evaluate_compliance → clear_compliance ┐
                     select_shortlist ──────────────────────┴→ draft_application

In grant_application the compliance and search branches are independent.
A failed compliance gate stops only the drafting step; the shortlist is still
delivered, and the run reports partially_succeeded.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any

from grantflow.compliance import ComplianceEvaluator, clear_compliance, evaluate_compliance_step
from grantflow.config import OrchestratorConfig
from grantflow.core.circuit import CircuitBreakerRegistry
from grantflow.core.errors import UnknownRequestTypeError, ValidationError
from grantflow.drafting import DraftConstraints, draft_application_step
from grantflow.executor.graph import Step, WorkflowGraph
from grantflow.ranking import ProfileAttributes, RankingPipeline
from grantflow.workers import BlobStore, DocumentExtractor, Embedder, SimilarityIndex, TextGenerator

logger = logging.getLogger(__name__)

EXTRACTION_DEPENDENCY = "extraction"
GENERATION_DEPENDENCY = "generation"
BLOB_DEPENDENCY = "blob_storage"


class RequestType(Enum):
    COMPLIANCE_CHECK = "compliance_check"
    GRANT_SEARCH = "grant_search"
    GRANT_APPLICATION = "grant_application"

    @classmethod
    def parse(cls, value: RequestType | str) -> RequestType:
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            known = ", ".join(t.value for t in cls)
            raise UnknownRequestTypeError(
                f"Unknown request type '{value}'. Expected one of: {known}"
            ) from None

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class WorkflowPlan:
    """A graph plus the normalized payload and time budget to run it with."""

    request_type: RequestType
    graph: WorkflowGraph
    payload: Mapping[str, Any]
    budget: float | None


class WorkflowPlanner:
    def __init__(
        self,
        *,
        extractor: DocumentExtractor,
        embedder: Embedder,
        index: SimilarityIndex,
        generator: TextGenerator,
        blob_store: BlobStore | None = None,
        breakers: CircuitBreakerRegistry | None = None,
        config: OrchestratorConfig = OrchestratorConfig.DEFAULT,
        today: Callable[[], date] = date.today,
    ):
        self._extractor = extractor
        self._generator = generator
        self._blob_store = blob_store
        self._config = config
        self._today = today
        self._evaluator = ComplianceEvaluator(
            expiring_window_days=config.expiring_window_days,
            min_confidence=config.min_confidence,
        )
        self._ranking = RankingPipeline(
            embedder,
            index,
            breakers,
            search_k=config.search_k,
            limit=config.shortlist_limit,
            min_results=config.shortlist_min,
            weights=config.weights,
            retry_policy=config.retry_policy,
            budget=config.search_budget,
        )
        self._draft_constraints = DraftConstraints(max_words=config.draft_max_words)

    def plan(self, request_type: RequestType | str, payload: Mapping[str, Any]) -> WorkflowPlan:
        """
        Build the graph for ``request_type``.

        Raises:
            UnknownRequestTypeError: No plan exists for the request type
            ValidationError: The payload lacks what the plan needs
        """
        kind = RequestType.parse(request_type)
        payload = dict(payload)

        if kind == RequestType.COMPLIANCE_CHECK:
            steps = self._compliance_steps(payload)
            graph = WorkflowGraph(steps)
            budget = self._config.compliance_budget
        elif kind == RequestType.GRANT_SEARCH:
            self._normalize_profile(payload)
            graph = WorkflowGraph(self._ranking.steps())
            budget = self._config.search_budget
        else:
            self._normalize_profile(payload)
            steps = self._compliance_steps(payload)
            steps += self._ranking.steps()
            steps += [
                Step(
                    "clear_compliance",
                    inputs=("compliance",),
                    output="compliance_clearance",
                    work=clear_compliance,
                ),
                Step(
                    "draft_application",
                    inputs=("grants", "profile", "compliance_clearance"),
                    output="draft",
                    work=draft_application_step(self._generator, self._draft_constraints),
                    retry_policy=self._config.retry_policy,
                    dependency=GENERATION_DEPENDENCY,
                ),
            ]
            graph = WorkflowGraph(steps, terminal_outputs=("grants", "draft"))
            budget = self._config.generation_budget

        logger.debug(f"Planned {kind}:\n{graph.level_graph()}")
        return WorkflowPlan(request_type=kind, graph=graph, payload=payload, budget=budget)

    def _compliance_steps(self, payload: dict[str, Any]) -> list[Step]:
        payload.setdefault("as_of", self._today())
        steps: list[Step] = []

        if "document" not in payload:
            if "document_ref" not in payload:
                raise ValidationError("A compliance document or document reference is required")
            if self._blob_store is None:
                raise ValidationError("Document references require a configured blob store")
            steps.append(
                Step(
                    "fetch_document",
                    inputs=("document_ref",),
                    output="document",
                    work=self._fetch_document,
                    retry_policy=self._config.retry_policy,
                    dependency=BLOB_DEPENDENCY,
                )
            )

        steps += [
            Step(
                "extract_document",
                inputs=("document",),
                output="extracted",
                work=self._extract_document,
                retry_policy=self._config.retry_policy,
                dependency=EXTRACTION_DEPENDENCY,
            ),
            Step(
                "evaluate_compliance",
                inputs=("extracted", "as_of"),
                output="compliance",
                work=evaluate_compliance_step(self._evaluator),
            ),
        ]
        return steps

    @staticmethod
    def _normalize_profile(payload: dict[str, Any]) -> None:
        profile = payload.get("profile")
        if profile is None:
            payload["profile"] = ProfileAttributes()
        elif isinstance(profile, Mapping):
            payload["profile"] = ProfileAttributes.from_mapping(profile)
        elif not isinstance(profile, ProfileAttributes):
            raise ValidationError("Profile must be a mapping of attributes")

    async def _fetch_document(self, inputs: Mapping[str, Any]) -> bytes:
        return await self._blob_store.fetch(inputs["document_ref"])

    async def _extract_document(self, inputs: Mapping[str, Any]):
        document = inputs["document"]
        if not isinstance(document, (bytes, bytearray)) or not document:
            raise ValidationError("Compliance document must be non-empty bytes")
        return await self._extractor.extract(bytes(document))
