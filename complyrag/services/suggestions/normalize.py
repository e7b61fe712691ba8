from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from complyrag.domain.enums import Level, RiskStatus, RuleStatus, risk_score


# English and German labels seen in model output.
_LEVEL_LABELS: dict[str, str] = {
    "high": Level.HIGH.value,
    "hoch": Level.HIGH.value,
    "critical": Level.HIGH.value,
    "kritisch": Level.HIGH.value,
    "severe": Level.HIGH.value,
    "medium": Level.MEDIUM.value,
    "mittel": Level.MEDIUM.value,
    "moderate": Level.MEDIUM.value,
    "moderat": Level.MEDIUM.value,
    "low": Level.LOW.value,
    "niedrig": Level.LOW.value,
    "gering": Level.LOW.value,
    "minor": Level.LOW.value,
}
# Longest labels first so "moderat" never shadows "moderate".
_LABELS_BY_LENGTH = sorted(_LEVEL_LABELS, key=len, reverse=True)
_LABEL_PATTERNS = [(re.compile(rf"\b{re.escape(label)}\b"), _LEVEL_LABELS[label]) for label in _LABELS_BY_LENGTH]
_NUMERIC_LEVELS = {1: Level.LOW.value, 2: Level.MEDIUM.value, 3: Level.HIGH.value}


def coerce_level(value: Any, default: str = Level.LOW.value) -> str:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return _NUMERIC_LEVELS.get(int(value), default)
    if not isinstance(value, str):
        return default
    key = value.strip().lower()
    if not key:
        return default
    if key in _LEVEL_LABELS:
        return _LEVEL_LABELS[key]
    # A label anywhere in the text, e.g. "Very High", "sehr hoch".
    for pattern, level in _LABEL_PATTERNS:
        if pattern.search(key):
            return level
    # Truncated or glued labels, e.g. "Med", "Hochrisiko".
    for label in _LABELS_BY_LENGTH:
        if key.startswith(label) or label.startswith(key):
            return _LEVEL_LABELS[label]
    return default


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (int, float)):
        return str(value)
    return ""


def _string_list(value: Any) -> list[str]:
    if isinstance(value, str):
        value = value.split(",")
    if not isinstance(value, list):
        return []
    seen: list[str] = []
    for item in value:
        text = _text(item)
        if text and text not in seen:
            seen.append(text)
    return seen


def _parse_date(value: Any, fallback: date) -> date:
    if isinstance(value, str) and len(value) >= 10:
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            return fallback
    return fallback


@dataclass
class RuleCandidate:
    name: str
    description: str
    category: str | None
    priority: str
    status: str
    tags: list[str]
    source_document_id: str
    ai_updated_at: datetime


@dataclass
class RiskCandidate:
    title: str
    description: str
    source: str
    category: str | None
    probability: str
    impact: str
    status: str
    identified_date: date
    source_document_id: str
    ai_updated_at: datetime
    related_rules: list[str] = field(default_factory=list)
    mitigations: list[str] = field(default_factory=list)


def normalize_rule(item: dict[str, Any], *, document_id: str, now: datetime) -> RuleCandidate | None:
    """Candidate with server-owned defaults applied; None when the name is missing."""
    name = _text(item.get("name"))
    if not name:
        return None
    return RuleCandidate(
        name=name,
        description=_text(item.get("description")),
        category=_text(item.get("category")) or None,
        priority=coerce_level(item.get("priority"), default=Level.MEDIUM.value),
        # Suggestions always land as drafts regardless of what the model proposes.
        status=RuleStatus.DRAFT.value,
        tags=_string_list(item.get("tags")),
        source_document_id=document_id,
        ai_updated_at=now,
    )


def normalize_risk(
    item: dict[str, Any], *, document_id: str, document_name: str, now: datetime
) -> RiskCandidate | None:
    title = _text(item.get("title"))
    if not title:
        return None
    return RiskCandidate(
        title=title,
        description=_text(item.get("description")),
        source=_text(item.get("source")) or f"AI analysis: {document_name}",
        category=_text(item.get("category")) or None,
        probability=coerce_level(item.get("probability")),
        impact=coerce_level(item.get("impact")),
        status=RiskStatus.OPEN.value,
        identified_date=_parse_date(item.get("identifiedDate"), now.date()),
        source_document_id=document_id,
        ai_updated_at=now,
        related_rules=_string_list(item.get("relatedRules")),
        mitigations=_string_list(item.get("mitigations")),
    )


@dataclass
class RiskAssessment:
    category: str | None
    probability: str
    impact: str
    measures: list[str] = field(default_factory=list)
    # Absorbed completion/parse failures; an empty assessment carries the reason.
    errors: list[str] = field(default_factory=list)

    @property
    def risk_score(self) -> int:
        return risk_score(self.probability, self.impact)


def normalize_assessment(item: dict[str, Any]) -> RiskAssessment:
    return RiskAssessment(
        category=_text(item.get("category")) or None,
        probability=coerce_level(item.get("probability")),
        impact=coerce_level(item.get("impact")),
        measures=_string_list(item.get("measures") or item.get("mitigations")),
    )
