from __future__ import annotations

from datetime import date
from typing import Iterable


_OUTPUT_RULES = (
    "Return only a valid JSON array, without explanations or code fences. "
    "If nothing is found, return an empty array: []."
)


def build_rule_prompt(document_name: str, text: str) -> str:
    return (
        "Analyze the following document and identify compliance requirements or company rules.\n"
        f'Document name: "{document_name}"\n'
        "Document content:\n"
        '"""\n'
        f"{text}\n"
        '"""\n\n'
        "Return each rule as a separate JSON object in an array:\n"
        "[\n"
        "  {\n"
        '    "name": "Unique, concise rule name (max. 150 characters)",\n'
        '    "description": "Purpose of the rule and the affected processes (max. 1000 characters)",\n'
        '    "category": "e.g. Data protection, IT security, Financial compliance, Labour law, Internal policy",\n'
        '    "priority": "high | medium | low, by potential impact and urgency",\n'
        '    "tags": ["tag1", "tag2"]\n'
        "  }\n"
        "]\n"
        f"{_OUTPUT_RULES}"
    )


def _context_block(context_rules: Iterable[tuple[str, str]]) -> str:
    lines = [
        f'{idx}. Rule: "{name}" (description: {description or "n/a"})'
        for idx, (name, description) in enumerate(context_rules, start=1)
    ]
    if not lines:
        return ""
    return "Rules previously identified for this document:\n" + "\n".join(lines) + "\n"


def build_risk_prompt(
    document_name: str,
    text: str,
    context_rules: Iterable[tuple[str, str]] = (),
    *,
    today: date | None = None,
) -> str:
    """Risk prompt; context_rules are (name, description) pairs listed as numbered facts."""
    today = today or date.today()
    return (
        "Analyze the following document and the optional rules. Identify risks that arise "
        "from not meeting compliance requirements or company rules implied or named in the document.\n"
        f'Document name: "{document_name}"\n'
        f"{_context_block(context_rules)}"
        "Document content:\n"
        '"""\n'
        f"{text}\n"
        '"""\n\n'
        "Return each risk as a separate JSON object in an array:\n"
        "[\n"
        "  {\n"
        '    "title": "Unique, concise risk title (max. 150 characters)",\n'
        '    "description": "Causes and potential consequences of the risk (max. 1000 characters)",\n'
        f'    "source": "AI analysis: {document_name}",\n'
        '    "category": "e.g. Financial, Operational, Compliance, Strategic, Reputation, IT",\n'
        '    "probability": "high | medium | low",\n'
        '    "impact": "high | medium | low",\n'
        f'    "identifiedDate": "{today.isoformat()}",\n'
        '    "relatedRules": ["names of the listed rules this risk relates to"],\n'
        '    "mitigations": ["short mitigation measure"]\n'
        "  }\n"
        "]\n"
        f"{_OUTPUT_RULES}"
    )


def build_assessment_prompt(description: str) -> str:
    return (
        "You are a compliance and risk management expert. Assess the following risk "
        "and return a structured classification.\n"
        "Risk description:\n"
        '"""\n'
        f"{description}\n"
        '"""\n\n'
        "Return a single JSON object:\n"
        "{\n"
        '  "category": "e.g. Financial, Operational, Compliance, Strategic, Reputation, IT",\n'
        '  "probability": "high | medium | low",\n'
        '  "impact": "high | medium | low",\n'
        '  "measures": ["concrete mitigation measure"]\n'
        "}\n"
        "Return only valid JSON, without explanations or code fences."
    )
