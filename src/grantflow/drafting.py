"""Grant application drafting via an external text generation worker.

The drafting step turns the top-ranked opportunity, the organization profile,
and the compliance assessment into a structured prompt, and asks the
TextGenerator for a draft with fixed sections.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from grantflow.compliance import ComplianceAssessment
from grantflow.core.errors import BusinessRuleError, GenerationError
from grantflow.ranking import ProfileAttributes, RankingResult
from grantflow.workers import TextGenerator

logger = logging.getLogger(__name__)

DEFAULT_SECTIONS = (
    "Executive Summary",
    "Statement of Need",
    "Project Description",
    "Budget Justification",
    "Organizational Capacity",
)


@dataclass(frozen=True)
class DraftConstraints:
    sections: tuple[str, ...] = DEFAULT_SECTIONS
    max_words: int = 1500
    tone: str = "formal"

    def to_dict(self) -> dict[str, Any]:
        return {"sections": list(self.sections), "max_words": self.max_words, "tone": self.tone}


@dataclass(frozen=True)
class GeneratedDraft:
    candidate_id: str
    text: str
    sections: Mapping[str, str] = field(default_factory=dict)

    @property
    def word_count(self) -> int:
        return len(self.text.split())


def build_prompt(
    profile: ProfileAttributes,
    shortlist: RankingResult,
    compliance: ComplianceAssessment | None,
    constraints: DraftConstraints,
) -> str:
    top = shortlist.top
    if top is None:
        raise BusinessRuleError("No matching funding opportunity to draft an application for")

    candidate = top.candidate
    lines = [
        f"Draft a grant application for {profile.organization or 'the applicant organization'}.",
    ]
    if profile.mission:
        lines.append(f"Mission: {profile.mission}")
    lines += [
        "",
        f"Funding opportunity: {candidate.display_name}",
        f"Description: {candidate.description}",
    ]
    if candidate.funding_min is not None or candidate.funding_max is not None:
        lines.append(
            f"Award range: {_money(candidate.funding_min)} to {_money(candidate.funding_max)}"
        )
    if profile.categories:
        lines.append(f"Focus areas: {', '.join(sorted(profile.categories))}")
    if compliance is not None:
        lines.append(f"Compliance status: {compliance.status} ({compliance.reason})")
    lines += [
        "",
        f"Write at most {constraints.max_words} words in a {constraints.tone} tone.",
        "Use exactly these section headings, each on its own line prefixed with '## ':",
    ]
    lines += [f"- {name}" for name in constraints.sections]
    return "\n".join(lines)


def split_sections(text: str, names: Sequence[str]) -> dict[str, str]:
    """Split generated markdown into the requested sections (missing ones omitted)."""
    sections: dict[str, str] = {}
    current: str | None = None
    buffer: list[str] = []
    wanted = {name.lower(): name for name in names}

    for line in text.splitlines():
        match = re.match(r"^#{1,6}\s*(.+?)\s*$", line)
        if match and match.group(1).lower() in wanted:
            if current is not None:
                sections[current] = "\n".join(buffer).strip()
            current = wanted[match.group(1).lower()]
            buffer = []
        elif current is not None:
            buffer.append(line)
    if current is not None:
        sections[current] = "\n".join(buffer).strip()
    return sections


def draft_application_step(generator: TextGenerator, constraints: DraftConstraints | None = None):
    """Work function: (grants, profile, compliance_clearance) -> GeneratedDraft."""
    constraints = constraints or DraftConstraints()

    async def draft_application(inputs: Mapping[str, Any]) -> GeneratedDraft:
        shortlist: RankingResult = inputs["grants"]
        profile = inputs["profile"]
        if not isinstance(profile, ProfileAttributes):
            profile = ProfileAttributes.from_mapping(profile)
        compliance = inputs.get("compliance_clearance")

        prompt = build_prompt(profile, shortlist, compliance, constraints)
        text = await generator.generate(prompt, constraints.to_dict())
        if not text or not text.strip():
            raise GenerationError("Text generation returned an empty draft")

        sections = split_sections(text, constraints.sections)
        missing = [name for name in constraints.sections if name not in sections]
        if missing:
            logger.warning(f"Generated draft is missing sections: {missing}")

        return GeneratedDraft(
            candidate_id=shortlist.top.candidate.candidate_id,
            text=text.strip(),
            sections=sections,
        )

    return draft_application


def _money(value: float | None) -> str:
    return "unspecified" if value is None else f"${value:,.0f}"
