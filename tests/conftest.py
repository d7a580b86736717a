"""
Pytest configuration and fixtures for grantflow tests.

Provides scripted fakes for the worker contracts, a manual clock for
circuit breaker timing, and ready-made registries, executors, and services.
"""

import asyncio
from collections.abc import AsyncGenerator, Mapping, Sequence
from datetime import date
from typing import Any

import pytest

from grantflow.config import OrchestratorConfig
from grantflow.core.circuit import CircuitBreakerRegistry
from grantflow.core.errors import BlobNotFoundError, EmbeddingError
from grantflow.executor import WorkflowExecutor
from grantflow.service import OrchestrationService
from grantflow.storage import InMemoryRunStore
from grantflow.workers import CandidateRecord, ExtractedDocument, SearchHit

TODAY = date(2025, 3, 1)


class ManualClock:
    """Monotonic clock advanced explicitly by tests."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def no_sleep(seconds: float) -> None:
    """Retry sleep that yields to the loop without waiting."""
    await asyncio.sleep(0)


class RecordingSleep:
    """Retry sleep that records requested delays."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        await asyncio.sleep(0)


# ==============================================================================
# Worker fakes
# ==============================================================================


class _Scripted:
    """Raise scripted failures in order, then behave normally."""

    def __init__(self, failures: Sequence[BaseException] = ()):
        self.failures = list(failures)
        self.calls = 0

    def _next_call(self) -> None:
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)


class FakeExtractor(_Scripted):
    def __init__(
        self,
        fields: Mapping[str, str] | None = None,
        confidence: float = 0.97,
        failures: Sequence[BaseException] = (),
    ):
        super().__init__(failures)
        self.fields = dict(fields if fields is not None else {"Expiry Date": "2025-06-01"})
        self.confidence = confidence
        self.documents: list[bytes] = []

    async def extract(self, document: bytes) -> ExtractedDocument:
        self._next_call()
        self.documents.append(document)
        return ExtractedDocument(fields=self.fields, confidence=self.confidence)


class FakeEmbedder(_Scripted):
    def __init__(self, failures: Sequence[BaseException] = (), always_fail: bool = False):
        super().__init__(failures)
        self.always_fail = always_fail
        self.texts: list[str] = []

    async def embed(self, text: str) -> list[float]:
        self._next_call()
        if self.always_fail:
            raise EmbeddingError("Embedding provider is throttling requests")
        self.texts.append(text)
        return [0.1, 0.2, 0.3]


class FakeIndex(_Scripted):
    def __init__(self, hits: Sequence[SearchHit] = (), failures: Sequence[BaseException] = ()):
        super().__init__(failures)
        self.hits = list(hits)
        self.requested_k: list[int] = []

    async def search(self, vector: Sequence[float], k: int) -> list[SearchHit]:
        self._next_call()
        self.requested_k.append(k)
        return sorted(self.hits, key=lambda h: h.distance)[:k]


DRAFT_TEXT = """## Executive Summary
We teach reading.

## Statement of Need
Literacy rates are low.

## Project Description
After-school tutoring.

## Budget Justification
Tutors and books.

## Organizational Capacity
Ten years of programs.
"""


class FakeGenerator(_Scripted):
    def __init__(self, text: str = DRAFT_TEXT, failures: Sequence[BaseException] = ()):
        super().__init__(failures)
        self.text = text
        self.prompts: list[str] = []
        self.constraints: list[Mapping[str, Any]] = []

    async def generate(self, prompt: str, constraints: Mapping[str, Any]) -> str:
        self._next_call()
        self.prompts.append(prompt)
        self.constraints.append(constraints)
        return self.text


class FakeBlobStore(_Scripted):
    def __init__(self, blobs: Mapping[str, bytes] | None = None):
        super().__init__()
        self.blobs = dict(blobs or {})

    async def store(self, data: bytes, path: str) -> str:
        self.blobs[path] = data
        return path

    async def fetch(self, reference: str) -> bytes:
        self._next_call()
        if reference not in self.blobs:
            raise BlobNotFoundError(reference)
        return self.blobs[reference]

    async def delete(self, reference: str) -> None:
        if self.blobs.pop(reference, None) is None:
            raise BlobNotFoundError(reference)


def candidate(
    candidate_id: str,
    *,
    categories: Sequence[str] = ("education",),
    funding_min: float | None = None,
    funding_max: float | None = None,
    regions: Sequence[str] = (),
) -> CandidateRecord:
    return CandidateRecord(
        candidate_id=candidate_id,
        description=f"Funding opportunity {candidate_id}",
        categories=frozenset(categories),
        funding_min=funding_min,
        funding_max=funding_max,
        regions=frozenset(regions),
        title=f"Grant {candidate_id}",
    )


def hit(candidate_id: str, distance: float = 0.4, **kwargs) -> SearchHit:
    return SearchHit(candidate(candidate_id, **kwargs), distance)


# ==============================================================================
# Fixtures
# ==============================================================================


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def breakers(clock: ManualClock) -> CircuitBreakerRegistry:
    return CircuitBreakerRegistry(clock=clock)


@pytest.fixture
def executor(breakers: CircuitBreakerRegistry) -> WorkflowExecutor:
    return WorkflowExecutor(breakers, sleep=no_sleep)


@pytest.fixture
def extractor() -> FakeExtractor:
    return FakeExtractor()


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def index() -> FakeIndex:
    return FakeIndex([hit(f"g{i:02d}", distance=0.1 * i) for i in range(1, 8)])


@pytest.fixture
def generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
def blob_store() -> FakeBlobStore:
    return FakeBlobStore({"docs/irs-letter.pdf": b"%PDF-1.7 letter"})


@pytest.fixture
async def run_store() -> AsyncGenerator[InMemoryRunStore, None]:
    """Async in-memory run store with automatic cleanup."""
    store = InMemoryRunStore()
    yield store
    await store.reset()


@pytest.fixture
def service(
    extractor, embedder, index, generator, blob_store, breakers, run_store
) -> OrchestrationService:
    return OrchestrationService(
        extractor=extractor,
        embedder=embedder,
        index=index,
        generator=generator,
        blob_store=blob_store,
        config=OrchestratorConfig.TESTING,
        breakers=breakers,
        run_store=run_store,
        today=lambda: TODAY,
        sleep=no_sleep,
    )
