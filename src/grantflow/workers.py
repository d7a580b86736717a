"""
Worker contracts consumed by the orchestration core.

Each contract is implemented by an external collaborator (document
extraction service, embedding model, vector index, text generation model,
object storage). The core depends only on these protocols, so collaborators
can run in-process or behind a network boundary without changing behavior.

Adapters report failures with the matching WorkerError subclass from
grantflow.core.errors, setting ``transient`` to control retries:

    raise EmbeddingError("Rate limited by embedding provider", transient=True)
    raise ExtractionError("Document is not a readable PDF", transient=False)
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable


@dataclass(frozen=True)
class ExtractedDocument:
    """Key/value text pulled from a document, with the extractor's confidence."""

    fields: Mapping[str, str]
    confidence: float


@dataclass(frozen=True)
class CandidateRecord:
    """
    A funding opportunity known to the similarity index.

    The embedding vector is owned by the index and never copied here.
    An empty ``regions`` set means the opportunity has no geographic
    restriction.
    """

    candidate_id: str
    description: str
    categories: frozenset[str] = frozenset()
    funding_min: float | None = None
    funding_max: float | None = None
    regions: frozenset[str] = frozenset()
    title: str = ""
    metadata: Mapping[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @property
    def display_name(self) -> str:
        return self.title or self.candidate_id


@dataclass(frozen=True)
class SearchHit:
    """One nearest-neighbour result; ``distance`` is cosine distance in [0, 2]."""

    candidate: CandidateRecord
    distance: float


@runtime_checkable
class DocumentExtractor(Protocol):
    async def extract(self, document: bytes) -> ExtractedDocument:
        """Raises ExtractionError."""
        ...


@runtime_checkable
class Embedder(Protocol):
    async def embed(self, text: str) -> Sequence[float]:
        """Raises EmbeddingError."""
        ...


@runtime_checkable
class SimilarityIndex(Protocol):
    async def search(self, vector: Sequence[float], k: int) -> Sequence[SearchHit]:
        """Return up to ``k`` hits ordered by ascending distance. Raises SearchError."""
        ...


@runtime_checkable
class TextGenerator(Protocol):
    async def generate(self, prompt: str, constraints: Mapping[str, Any]) -> str:
        """Raises GenerationError."""
        ...


@runtime_checkable
class BlobStore(Protocol):
    async def store(self, data: bytes, path: str) -> str:
        """Store ``data`` at ``path`` and return a reference."""
        ...

    async def fetch(self, reference: str) -> bytes:
        """Raises BlobNotFoundError."""
        ...

    async def delete(self, reference: str) -> None:
        """Raises BlobNotFoundError."""
        ...
