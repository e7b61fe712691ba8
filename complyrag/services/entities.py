from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from complyrag.core.errors import NotFoundError, ValidationError
from complyrag.domain.enums import Level, RiskStatus, RuleStatus
from complyrag.domain.models import Risk, Rule
from complyrag.persistence.repos import risks as risks_repo
from complyrag.persistence.repos import rules as rules_repo
from complyrag.services.authz import RISK_EDIT_ROLES, RULE_EDIT_ROLES, Principal, require_roles


logger = logging.getLogger(__name__)

_LEVELS = {level.value for level in Level}
_RULE_ENUMS: dict[str, set[str]] = {
    "priority": _LEVELS,
    "status": {s.value for s in RuleStatus},
}
_RISK_ENUMS: dict[str, set[str]] = {
    "probability": _LEVELS,
    "impact": _LEVELS,
    "status": {s.value for s in RiskStatus},
}
_NOT_NULL = {"description", "tags", "linked_rule_ids"}
RULE_EDITABLE = ("description", "category", "priority", "status", "tags")
RISK_EDITABLE = ("description", "source", "category", "probability", "impact", "status", "owner", "linked_rule_ids")


def _clean_changes(changes: dict[str, Any], editable: tuple[str, ...], enums: dict[str, set[str]]) -> dict[str, Any]:
    unknown = sorted(set(changes) - set(editable))
    if unknown:
        raise ValidationError(f"fields not editable: {', '.join(unknown)}")
    for field, allowed in enums.items():
        if field in changes and changes[field] not in allowed:
            raise ValidationError(f"invalid {field}: {changes[field]!r}")
    cleared = sorted(field for field in _NOT_NULL & set(changes) if changes[field] is None)
    if cleared:
        raise ValidationError(f"fields cannot be null: {', '.join(cleared)}")
    if not changes:
        raise ValidationError("no changes supplied")
    return changes


class EntityEditor:
    """Records human edits on suggested rules and risks.

    Edited rows carry human_edited_at, which the suggestion merge honours.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def edit_rule(self, rule_id: str, changes: dict[str, Any], principal: Principal) -> Rule:
        require_roles(principal, RULE_EDIT_ROLES, "edit rules")
        cleaned = _clean_changes(changes, RULE_EDITABLE, _RULE_ENUMS)
        async with self._session_factory() as session:
            rule = await rules_repo.get_rule_by_rule_id(session, rule_id)
            if rule is None:
                raise NotFoundError(f"rule {rule_id} not found")
            await rules_repo.apply_human_edit(
                session, rule, cleaned, actor=principal.subject_id, edited_at=datetime.now(timezone.utc)
            )
            await session.commit()
            await session.refresh(rule)
        logger.info("rule_edited rule_id=%s fields=%s by=%s", rule_id, ",".join(sorted(cleaned)), principal.subject_id)
        return rule

    async def edit_risk(self, risk_id: str, changes: dict[str, Any], principal: Principal) -> Risk:
        require_roles(principal, RISK_EDIT_ROLES, "edit risks")
        cleaned = _clean_changes(changes, RISK_EDITABLE, _RISK_ENUMS)
        async with self._session_factory() as session:
            risk = await risks_repo.get_risk_by_risk_id(session, risk_id)
            if risk is None:
                raise NotFoundError(f"risk {risk_id} not found")
            await risks_repo.apply_human_edit(
                session, risk, cleaned, actor=principal.subject_id, edited_at=datetime.now(timezone.utc)
            )
            await session.commit()
            await session.refresh(risk)
        logger.info("risk_edited risk_id=%s fields=%s by=%s", risk_id, ",".join(sorted(cleaned)), principal.subject_id)
        return risk
