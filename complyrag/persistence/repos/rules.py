from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from complyrag.core.errors import DatabaseError
from complyrag.domain.enums import MergePolicy
from complyrag.domain.models import Rule
from complyrag.persistence.db import upsert_insert


# Columns an AI merge may rewrite; identity, provenance and human markers are never touched.
RULE_CONTENT_FIELDS = ("description", "category", "priority", "status", "tags")


def new_rule_id() -> str:
    return f"RULE-{uuid4().hex[:8].upper()}"


async def get_rule_by_natural_key(
    session: AsyncSession, source_document_id: str, name: str
) -> Rule | None:
    result = await session.execute(
        select(Rule)
        .where(Rule.source_document_id == source_document_id, Rule.name == name)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_rule_by_rule_id(session: AsyncSession, rule_id: str) -> Rule | None:
    result = await session.execute(select(Rule).where(Rule.rule_id == rule_id))
    return result.scalar_one_or_none()


async def list_rules_for_document(session: AsyncSession, source_document_id: str) -> list[Rule]:
    result = await session.execute(
        select(Rule)
        .where(Rule.source_document_id == source_document_id)
        .order_by(Rule.created_at, Rule.name)
    )
    return list(result.scalars().all())


def merge_assignments(
    table: Any, excluded: Any, fields: list[str], merge_policy: str
) -> dict[str, Any]:
    # Under preserve_human_edits an edited row keeps its own value for every content column.
    assignments: dict[str, Any] = {}
    for field in fields:
        incoming = excluded[field]
        if merge_policy == MergePolicy.OVERWRITE.value:
            assignments[field] = incoming
        else:
            assignments[field] = case(
                (table.c.human_edited_at.is_(None), incoming), else_=table.c[field]
            )
    return assignments


async def upsert_ai_rule(
    session: AsyncSession,
    *,
    source_document_id: str,
    name: str,
    description: str,
    category: str | None,
    priority: str,
    status: str,
    tags: list[str],
    ai_updated_at: datetime,
    merge_policy: str,
) -> tuple[Rule, bool]:
    """Insert or merge an AI-suggested rule keyed by (source_document_id, name).

    Returns the stored rule and whether it was created. The write is a single
    INSERT ... ON CONFLICT statement so concurrent runs cannot duplicate a rule;
    the preceding lookup only labels the outcome.
    """
    existing = await get_rule_by_natural_key(session, source_document_id, name)
    values = {
        "description": description,
        "category": category,
        "priority": priority,
        "status": status,
        "tags": tags,
    }
    stmt = upsert_insert(session, Rule).values(
        id=uuid4().hex,
        rule_id=new_rule_id(),
        name=name,
        source_document_id=source_document_id,
        ai_generated=True,
        last_ai_update=ai_updated_at,
        **values,
    )
    # Empty candidate fields never blank out stored values.
    provided = [field for field in RULE_CONTENT_FIELDS if values[field] not in (None, "", [])]
    set_ = merge_assignments(Rule.__table__, stmt.excluded, provided, merge_policy)
    set_["last_ai_update"] = stmt.excluded.last_ai_update
    set_["updated_at"] = func.now()
    stmt = stmt.on_conflict_do_update(index_elements=["source_document_id", "name"], set_=set_)
    await session.execute(stmt)

    stored = await get_rule_by_natural_key(session, source_document_id, name)
    if stored is None:
        raise DatabaseError(f"rule upsert left no row for {source_document_id}/{name}")
    return stored, existing is None


async def apply_human_edit(
    session: AsyncSession,
    rule: Rule,
    changes: dict[str, Any],
    *,
    actor: str,
    edited_at: datetime,
) -> Rule:
    # Human edits mark the row so later AI merges can leave its content alone.
    for field, value in changes.items():
        setattr(rule, field, value)
    rule.human_edited_at = edited_at
    rule.last_modified_by = actor
    await session.flush()
    return rule
