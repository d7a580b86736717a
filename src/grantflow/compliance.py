"""Compliance document status classification.

Pure logic, no external calls. Given the expiry date pulled from an
organization's compliance document and a reference date, classify the
document as valid, expiring soon, expired, or invalid.

Thresholds:
    days_until_expiry > 30       valid
    0 <= days_until_expiry <= 30 expiring_soon
    days_until_expiry < 0        expired
    no date / confidence < 0.90  invalid (days_until_expiry is None)
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any

from grantflow.core.errors import BusinessRuleError, ValidationError
from grantflow.workers import ExtractedDocument

logger = logging.getLogger(__name__)

EXPIRY_FIELD_NAMES = ("expiry_date", "expiration_date", "expires_on", "valid_until", "expiry")

_DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y", "%d %B %Y", "%d %b %Y", "%B %d, %Y", "%b %d, %Y")


class ComplianceStatus(Enum):
    VALID = "valid"
    EXPIRING_SOON = "expiring_soon"
    EXPIRED = "expired"
    INVALID = "invalid"

    @property
    def is_compliant(self) -> bool:
        return self in (ComplianceStatus.VALID, ComplianceStatus.EXPIRING_SOON)

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class ComplianceAssessment:
    status: ComplianceStatus
    days_until_expiry: int | None
    reason: str
    expiry_date: date | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "daysUntilExpiry": self.days_until_expiry,
            "reason": self.reason,
            "expiryDate": self.expiry_date.isoformat() if self.expiry_date else None,
        }


@dataclass(frozen=True)
class ComplianceEvaluator:
    expiring_window_days: int = 30
    min_confidence: float = 0.90

    def evaluate(
        self, expiry_date: date | None, now: date, confidence: float = 1.0
    ) -> ComplianceAssessment:
        if expiry_date is None:
            return ComplianceAssessment(
                ComplianceStatus.INVALID, None, "No expiry date could be extracted"
            )
        if confidence < self.min_confidence:
            return ComplianceAssessment(
                ComplianceStatus.INVALID,
                None,
                f"Extraction confidence {confidence:.2f} is below {self.min_confidence:.2f}",
                expiry_date,
            )

        days = (expiry_date - now).days
        if days < 0:
            return ComplianceAssessment(
                ComplianceStatus.EXPIRED, days, f"Expired {-days} day(s) ago", expiry_date
            )
        if days <= self.expiring_window_days:
            return ComplianceAssessment(
                ComplianceStatus.EXPIRING_SOON, days, f"Expires in {days} day(s)", expiry_date
            )
        return ComplianceAssessment(
            ComplianceStatus.VALID, days, f"Valid for {days} more day(s)", expiry_date
        )

    def evaluate_document(self, document: ExtractedDocument, now: date) -> ComplianceAssessment:
        return self.evaluate(parse_expiry_date(document.fields), now, document.confidence)


def parse_expiry_date(fields: Mapping[str, str]) -> date | None:
    """Return the expiry date from the first recognised field, or None."""
    normalized = {_normalize_key(k): v for k, v in fields.items()}
    for name in EXPIRY_FIELD_NAMES:
        raw = normalized.get(name)
        if raw:
            parsed = parse_date(raw)
            if parsed is None:
                logger.debug(f"Unparseable {name} value: {raw!r}")
            return parsed
    return None


def parse_date(raw: str) -> date | None:
    text = raw.strip()
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def _normalize_key(key: str) -> str:
    return re.sub(r"[^a-z0-9]+", "_", key.strip().lower()).strip("_")


# =============================================================================
# Workflow steps
# =============================================================================


def evaluate_compliance_step(evaluator: ComplianceEvaluator):
    """Work function: (extracted, as_of) -> ComplianceAssessment."""

    async def evaluate_compliance(inputs: Mapping[str, Any]) -> ComplianceAssessment:
        extracted = inputs["extracted"]
        as_of = inputs["as_of"]
        if not isinstance(extracted, ExtractedDocument):
            raise ValidationError("Extracted document fields are missing")
        if isinstance(as_of, datetime):
            as_of = as_of.date()
        if not isinstance(as_of, date):
            raise ValidationError("Reference date must be a date")
        return evaluator.evaluate_document(extracted, as_of)

    return evaluate_compliance


async def clear_compliance(inputs: Mapping[str, Any]) -> ComplianceAssessment:
    """Work function gating dependent work on a compliant document."""
    assessment: ComplianceAssessment = inputs["compliance"]
    if not assessment.status.is_compliant:
        raise BusinessRuleError(
            f"Compliance document is {assessment.status}: {assessment.reason}"
        )
    return assessment
