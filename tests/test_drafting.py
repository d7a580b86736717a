"""Tests for application drafting prompts and section parsing."""

import pytest
from conftest import DRAFT_TEXT, FakeGenerator, hit

from grantflow.compliance import ComplianceEvaluator
from grantflow.core import BusinessRuleError, ErrorKind, GenerationError
from grantflow.drafting import (
    DEFAULT_SECTIONS,
    DraftConstraints,
    build_prompt,
    draft_application_step,
    split_sections,
)
from grantflow.ranking import ProfileAttributes, RankingResult, score_hit, select_top

PROFILE = ProfileAttributes(
    organization="Readers United",
    mission="Every child reads by third grade",
    categories=frozenset({"education"}),
)


def _shortlist(*ids):
    return select_top([score_hit(hit(i, funding_min=5000, funding_max=25000), PROFILE)
                       for i in ids])


def test_prompt_includes_top_candidate_and_constraints():
    constraints = DraftConstraints(max_words=800)

    prompt = build_prompt(PROFILE, _shortlist("g1", "g2"), None, constraints)

    assert "Readers United" in prompt
    assert "Every child reads by third grade" in prompt
    assert "Grant g1" in prompt
    assert "Grant g2" not in prompt
    assert "$5,000 to $25,000" in prompt
    assert "at most 800 words" in prompt
    for section in DEFAULT_SECTIONS:
        assert f"- {section}" in prompt


def test_prompt_includes_compliance_status():
    from datetime import date

    assessment = ComplianceEvaluator().evaluate(date(2025, 6, 1), date(2025, 3, 1))

    prompt = build_prompt(PROFILE, _shortlist("g1"), assessment, DraftConstraints())

    assert "Compliance status: valid" in prompt


def test_prompt_requires_a_candidate():
    with pytest.raises(BusinessRuleError):
        build_prompt(PROFILE, RankingResult(), None, DraftConstraints())


def test_split_sections():
    sections = split_sections(DRAFT_TEXT, DEFAULT_SECTIONS)

    assert list(sections) == list(DEFAULT_SECTIONS)
    assert sections["Statement of Need"] == "Literacy rates are low."


def test_split_sections_ignores_unknown_headings():
    text = "# Intro\nignored\n## Budget Justification\nBooks.\n### Appendix\nMore books."

    assert split_sections(text, DEFAULT_SECTIONS) == {
        "Budget Justification": "Books.\n### Appendix\nMore books."
    }


@pytest.mark.asyncio
async def test_draft_step_calls_generator():
    generator = FakeGenerator()
    step = draft_application_step(generator, DraftConstraints(max_words=500))

    draft = await step({"grants": _shortlist("g1"), "profile": PROFILE,
                        "compliance_clearance": None})

    assert draft.candidate_id == "g1"
    assert draft.sections["Executive Summary"] == "We teach reading."
    assert draft.word_count > 0
    assert generator.constraints == [
        {"sections": list(DEFAULT_SECTIONS), "max_words": 500, "tone": "formal"}
    ]


@pytest.mark.asyncio
async def test_draft_step_accepts_profile_mapping():
    step = draft_application_step(FakeGenerator())

    draft = await step({"grants": _shortlist("g1"), "profile": {"organization": "Readers"}})

    assert draft.candidate_id == "g1"


@pytest.mark.asyncio
async def test_empty_generation_is_transient():
    step = draft_application_step(FakeGenerator(text="   "))

    with pytest.raises(GenerationError) as exc_info:
        await step({"grants": _shortlist("g1"), "profile": PROFILE})

    assert exc_info.value.kind == ErrorKind.TRANSIENT_DEPENDENCY
