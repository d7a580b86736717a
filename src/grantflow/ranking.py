"""
Grant ranking pipeline: free-text query plus profile to a short, ordered list.

The pipeline is itself a workflow, so each stage gets the executor's
retry and circuit-breaker handling:

    embed_query → search_candidates → filter_candidates
                → score_candidates → select_shortlist

- embed_query: external embedding worker (dependency "embedding")
- search_candidates: top-20 nearest neighbours (dependency "similarity_search")
- filter_candidates: drop candidates failing every applicable hard filter
  (category overlap, funding-range overlap)
- score_candidates: 0.7 × similarity + 0.2 × category match + 0.1 × geography
- select_shortlist: sort by score descending, id ascending, keep the top 5

A result shorter than 3 is valid and never padded. An empty result carries
the note "no close matches".

Usage:
    ```python
    pipeline = RankingPipeline(embedder, index, breakers)
    shortlist = await pipeline.rank("STEM after-school programs", profile)
    for ranked in shortlist:
        print(ranked.candidate.candidate_id, ranked.score, ranked.reasons)
    ```
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from grantflow.core.circuit import CircuitBreakerRegistry
from grantflow.core.errors import RankingError, SearchError, ValidationError
from grantflow.core.retry import RetryPolicy, Sleep
from grantflow.core.status import ErrorKind
from grantflow.executor.graph import Step, WorkflowGraph
from grantflow.executor.runner import WorkflowExecutor
from grantflow.workers import CandidateRecord, Embedder, SearchHit, SimilarityIndex

logger = logging.getLogger(__name__)

NO_CLOSE_MATCHES = "no close matches"

EMBEDDING_DEPENDENCY = "embedding"
SEARCH_DEPENDENCY = "similarity_search"

DEFAULT_SEARCH_BUDGET = 5.0  # seconds


@dataclass(frozen=True)
class ProfileAttributes:
    """Organization attributes used to filter and score candidates."""

    organization: str = ""
    mission: str = ""
    categories: frozenset[str] = frozenset()
    funding_min: float | None = None
    funding_max: float | None = None
    region: str | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> ProfileAttributes:
        """Build a profile from a request payload mapping."""
        categories = data.get("categories") or ()
        if isinstance(categories, str):
            categories = [categories]
        try:
            return cls(
                organization=str(data.get("organization", "")),
                mission=str(data.get("mission", "")),
                categories=frozenset(c.strip().lower() for c in categories),
                funding_min=_optional_float(data.get("funding_min")),
                funding_max=_optional_float(data.get("funding_max")),
                region=data.get("region") or None,
            )
        except (TypeError, ValueError, AttributeError) as e:
            raise ValidationError(f"Profile is malformed: {e}") from e

    @property
    def has_funding_range(self) -> bool:
        return self.funding_min is not None or self.funding_max is not None


@dataclass(frozen=True)
class ScoringWeights:
    similarity: float = 0.7
    category: float = 0.2
    geography: float = 0.1


@dataclass(frozen=True)
class RankedCandidate:
    candidate: CandidateRecord
    score: float
    reasons: tuple[str, ...] = ()


@dataclass(frozen=True)
class RankingResult(Sequence[RankedCandidate]):
    """Ordered shortlist. ``note`` is set only when the list is empty."""

    candidates: tuple[RankedCandidate, ...] = ()
    note: str | None = None

    def __len__(self) -> int:
        return len(self.candidates)

    def __iter__(self) -> Iterator[RankedCandidate]:
        return iter(self.candidates)

    def __getitem__(self, index):
        return self.candidates[index]

    @property
    def top(self) -> RankedCandidate | None:
        return self.candidates[0] if self.candidates else None

    def ids(self) -> list[str]:
        return [c.candidate.candidate_id for c in self.candidates]


# =============================================================================
# Pure stages
# =============================================================================


def normalized_similarity(distance: float) -> float:
    """Map cosine distance in [0, 2] to similarity in [0, 1]."""
    if math.isnan(distance):
        return 0.0
    return min(1.0, max(0.0, 1.0 - distance / 2.0))


def category_overlap(candidate: CandidateRecord, profile: ProfileAttributes) -> set[str]:
    return {c.lower() for c in candidate.categories} & set(profile.categories)


def funding_overlaps(candidate: CandidateRecord, profile: ProfileAttributes) -> bool:
    low = max(candidate.funding_min or 0.0, profile.funding_min or 0.0)
    high = min(
        candidate.funding_max if candidate.funding_max is not None else math.inf,
        profile.funding_max if profile.funding_max is not None else math.inf,
    )
    return low <= high


def geographic_match(candidate: CandidateRecord, profile: ProfileAttributes) -> bool:
    if not candidate.regions:
        return True
    if profile.region is None:
        return False
    region = profile.region.strip().casefold()
    return any(r.strip().casefold() == region for r in candidate.regions)


def filter_hits(hits: Iterable[SearchHit], profile: ProfileAttributes) -> list[SearchHit]:
    """
    Drop candidates that fail every applicable hard filter.

    A filter applies only when the profile supplies data for it. With no
    applicable filter, every candidate is kept. Duplicate candidate ids keep
    their closest hit.
    """
    checks = []
    if profile.categories:
        checks.append(lambda c: bool(category_overlap(c, profile)))
    if profile.has_funding_range:
        checks.append(lambda c: funding_overlaps(c, profile))

    kept: list[SearchHit] = []
    seen: set[str] = set()
    for hit in hits:
        candidate_id = hit.candidate.candidate_id
        if candidate_id in seen:
            continue
        seen.add(candidate_id)
        if checks and not any(check(hit.candidate) for check in checks):
            continue
        kept.append(hit)
    return kept


def score_hit(
    hit: SearchHit, profile: ProfileAttributes, weights: ScoringWeights = ScoringWeights()
) -> RankedCandidate:
    candidate = hit.candidate
    similarity = normalized_similarity(hit.distance)
    overlap = category_overlap(candidate, profile)
    geo = geographic_match(candidate, profile)

    score = (
        weights.similarity * similarity
        + weights.category * (1.0 if overlap else 0.0)
        + weights.geography * (1.0 if geo else 0.0)
    )
    score = round(min(1.0, max(0.0, score)), 6)

    reasons = [f"Semantic similarity {similarity:.2f}"]
    if overlap:
        reasons.append(f"Matches categories: {', '.join(sorted(overlap))}")
    if geo:
        if candidate.regions:
            reasons.append(f"Available in {profile.region}")
        else:
            reasons.append("Open to applicants in any region")
    if profile.has_funding_range and funding_overlaps(candidate, profile):
        reasons.append("Funding range fits the requested amount")

    return RankedCandidate(candidate=candidate, score=score, reasons=tuple(reasons))


def select_top(scored: Iterable[RankedCandidate], limit: int = 5) -> RankingResult:
    ordered = sorted(scored, key=lambda r: (-r.score, r.candidate.candidate_id))[:limit]
    if not ordered:
        return RankingResult((), NO_CLOSE_MATCHES)
    return RankingResult(tuple(ordered))


# =============================================================================
# Pipeline
# =============================================================================


class RankingPipeline:
    def __init__(
        self,
        embedder: Embedder,
        index: SimilarityIndex,
        breakers: CircuitBreakerRegistry | None = None,
        *,
        search_k: int = 20,
        limit: int = 5,
        min_results: int = 3,
        weights: ScoringWeights = ScoringWeights(),
        retry_policy: RetryPolicy = RetryPolicy.STANDARD,
        budget: float | None = DEFAULT_SEARCH_BUDGET,
        sleep: Sleep = asyncio.sleep,
    ):
        self._embedder = embedder
        self._index = index
        self._breakers = breakers if breakers is not None else CircuitBreakerRegistry()
        self._search_k = search_k
        self._limit = limit
        self._min_results = min_results
        self._weights = weights
        self._retry_policy = retry_policy
        self._budget = budget
        self._sleep = sleep

    def steps(
        self, *, query_key: str = "query", profile_key: str = "profile", output_key: str = "grants"
    ) -> list[Step]:
        """Ranking stages as workflow steps, for embedding into larger graphs."""

        async def embed_query(inputs: Mapping[str, Any]) -> list[float]:
            query = inputs[query_key]
            if not isinstance(query, str) or not query.strip():
                raise ValidationError("Search query must be non-empty text")
            return list(await self._embedder.embed(query.strip()))

        async def search_candidates(inputs: Mapping[str, Any]) -> list[SearchHit]:
            hits = list(await self._index.search(inputs["query_vector"], self._search_k))
            if any(not isinstance(h, SearchHit) for h in hits):
                raise SearchError("Similarity index returned malformed results", transient=False)
            return hits[: self._search_k]

        async def filter_candidates(inputs: Mapping[str, Any]) -> list[SearchHit]:
            profile = _as_profile(inputs[profile_key])
            kept = filter_hits(inputs["search_hits"], profile)
            logger.debug(f"Filtered {len(inputs['search_hits'])} hits down to {len(kept)}")
            return kept

        async def score_candidates(inputs: Mapping[str, Any]) -> list[RankedCandidate]:
            profile = _as_profile(inputs[profile_key])
            return [score_hit(hit, profile, self._weights) for hit in inputs["filtered_hits"]]

        async def select_shortlist(inputs: Mapping[str, Any]) -> RankingResult:
            result = select_top(inputs["scored_candidates"], self._limit)
            if len(result) < self._min_results:
                logger.info(f"Shortlist has {len(result)} candidate(s), below {self._min_results}")
            return result

        return [
            Step(
                "embed_query",
                inputs=(query_key,),
                output="query_vector",
                work=embed_query,
                retry_policy=self._retry_policy,
                dependency=EMBEDDING_DEPENDENCY,
            ),
            Step(
                "search_candidates",
                inputs=("query_vector",),
                output="search_hits",
                work=search_candidates,
                retry_policy=self._retry_policy,
                dependency=SEARCH_DEPENDENCY,
            ),
            Step(
                "filter_candidates",
                inputs=("search_hits", profile_key),
                output="filtered_hits",
                work=filter_candidates,
            ),
            Step(
                "score_candidates",
                inputs=("filtered_hits", profile_key),
                output="scored_candidates",
                work=score_candidates,
            ),
            Step(
                "select_shortlist",
                inputs=("scored_candidates",),
                output=output_key,
                work=select_shortlist,
            ),
        ]

    async def rank(
        self, query: str, profile: ProfileAttributes | Mapping[str, Any]
    ) -> RankingResult:
        """
        Rank candidates for ``query`` and ``profile``.

        Raises:
            RankingError: A stage failed; ``kind`` is the failing stage's kind
        """
        graph = WorkflowGraph(self.steps())
        executor = WorkflowExecutor(self._breakers, sleep=self._sleep)
        result = await executor.execute(
            graph, {"query": query, "profile": profile}, budget=self._budget
        )
        if "grants" in result.outputs:
            return result.outputs["grants"]

        cause = next(
            (e for e in result.errors if e.kind != ErrorKind.UPSTREAM_FAILURE),
            result.errors[0],
        )
        raise RankingError(cause.message, kind=cause.kind)


def _as_profile(value: Any) -> ProfileAttributes:
    if isinstance(value, ProfileAttributes):
        return value
    if isinstance(value, Mapping):
        return ProfileAttributes.from_mapping(value)
    raise ValidationError("Profile must be a mapping of attributes")


def _optional_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    return float(value)
