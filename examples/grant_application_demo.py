import asyncio
import logging
import random

from grantflow import (
    CandidateRecord,
    ExtractedDocument,
    OrchestrationService,
    SearchHit,
)
from grantflow.core.errors import ExtractionError
from grantflow.storage.sqlite import SqliteRunStore

logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

CATALOG = [
    CandidateRecord(
        "lit-2025", "After-school reading programs", frozenset({"education"}),
        5_000, 50_000, frozenset({"CA", "OR"}), title="Community Literacy Fund",
    ),
    CandidateRecord(
        "stem-114", "Hands-on STEM clubs", frozenset({"education", "science"}),
        10_000, 100_000, title="Young Makers Grant",
    ),
    CandidateRecord(
        "arts-07", "Public murals", frozenset({"arts"}), 1_000, 8_000, frozenset({"NY"}),
        title="Neighborhood Arts Award",
    ),
]


class FlakyExtractor:
    """Times out on the first call to show retries."""

    def __init__(self):
        self.calls = 0

    async def extract(self, document: bytes) -> ExtractedDocument:
        self.calls += 1
        if self.calls == 1:
            raise ExtractionError("Extraction service timed out")
        return ExtractedDocument({"Expiration Date": "December 31, 2026"}, confidence=0.96)


class KeywordEmbedder:
    async def embed(self, text: str) -> list[float]:
        return [float("literacy" in text), float("stem" in text.lower()), 1.0]


class CatalogIndex:
    async def search(self, vector, k: int) -> list[SearchHit]:
        hits = [SearchHit(c, round(random.uniform(0.1, 0.9), 3)) for c in CATALOG]
        return sorted(hits, key=lambda h: h.distance)[:k]


class TemplateGenerator:
    async def generate(self, prompt: str, constraints) -> str:
        return "\n\n".join(f"## {name}\n(draft text)" for name in constraints["sections"])


async def main():
    store = SqliteRunStore("data/grant_runs.db")
    await store.connect()

    service = OrchestrationService(
        extractor=FlakyExtractor(),
        embedder=KeywordEmbedder(),
        index=CatalogIndex(),
        generator=TemplateGenerator(),
        run_store=store,
    )

    result = await service.submit_workflow(
        "grant_application",
        {
            "document": b"%PDF-1.7 501(c)(3) determination letter",
            "query": "after-school literacy tutoring",
            "profile": {
                "organization": "Readers United",
                "categories": ["education"],
                "funding_min": 10_000,
                "funding_max": 40_000,
                "region": "CA",
            },
        },
    )

    print(f"Run {result.run_id}: {result.status}")
    print(f"Compliance: {result.outputs['compliance'].to_dict()}")
    for ranked in result.outputs.get("grants", ()):
        print(f"  {ranked.score:.3f} {ranked.candidate.display_name}: {'; '.join(ranked.reasons)}")
    if "draft" in result.outputs:
        print(f"Draft sections: {list(result.outputs['draft'].sections)}")
    for error in result.errors:
        print(f"  {error.step_id}: {error.kind} - {error.message}")

    print(await service.get_circuit_state("extraction"))
    await store.close()


if __name__ == "__main__":
    asyncio.run(main())
