from __future__ import annotations

from datetime import date, datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from complyrag.core.errors import DatabaseError
from complyrag.domain.enums import MitigationStatus, risk_score
from complyrag.domain.models import MitigationMeasure, Risk
from complyrag.persistence.db import upsert_insert
from complyrag.persistence.repos.rules import merge_assignments


RISK_CONTENT_FIELDS = (
    "description",
    "source",
    "category",
    "probability",
    "impact",
    "risk_score",
    "status",
    "linked_rule_ids",
)


def new_risk_id() -> str:
    return f"RISK-{uuid4().hex[:8].upper()}"


async def get_risk_by_natural_key(
    session: AsyncSession, source_document_id: str, title: str
) -> Risk | None:
    result = await session.execute(
        select(Risk)
        .where(Risk.source_document_id == source_document_id, Risk.title == title)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_risk_by_risk_id(session: AsyncSession, risk_id: str) -> Risk | None:
    result = await session.execute(select(Risk).where(Risk.risk_id == risk_id))
    return result.scalar_one_or_none()


async def list_mitigations(session: AsyncSession, risk_pk: str) -> list[MitigationMeasure]:
    result = await session.execute(
        select(MitigationMeasure)
        .where(MitigationMeasure.risk_id == risk_pk)
        .order_by(MitigationMeasure.created_at, MitigationMeasure.id)
    )
    return list(result.scalars().all())


async def upsert_ai_risk(
    session: AsyncSession,
    *,
    source_document_id: str,
    title: str,
    description: str,
    source: str | None,
    category: str | None,
    probability: str,
    impact: str,
    status: str,
    identified_date: date,
    linked_rule_ids: list[str],
    ai_updated_at: datetime,
    merge_policy: str,
) -> tuple[Risk, bool]:
    # Same contract as upsert_ai_rule, keyed by (source_document_id, title).
    existing = await get_risk_by_natural_key(session, source_document_id, title)
    values = {
        "description": description,
        "source": source,
        "category": category,
        "probability": probability,
        "impact": impact,
        "risk_score": risk_score(probability, impact),
        "status": status,
        "linked_rule_ids": linked_rule_ids,
    }
    stmt = upsert_insert(session, Risk).values(
        id=uuid4().hex,
        risk_id=new_risk_id(),
        title=title,
        source_document_id=source_document_id,
        identified_date=identified_date,
        ai_generated=True,
        last_ai_update=ai_updated_at,
        **values,
    )
    provided = [field for field in RISK_CONTENT_FIELDS if values[field] not in (None, "", [])]
    set_ = merge_assignments(Risk.__table__, stmt.excluded, provided, merge_policy)
    set_["last_ai_update"] = stmt.excluded.last_ai_update
    set_["updated_at"] = func.now()
    stmt = stmt.on_conflict_do_update(index_elements=["source_document_id", "title"], set_=set_)
    await session.execute(stmt)

    stored = await get_risk_by_natural_key(session, source_document_id, title)
    if stored is None:
        raise DatabaseError(f"risk upsert left no row for {source_document_id}/{title}")
    return stored, existing is None


async def add_mitigations(
    session: AsyncSession, risk_pk: str, measures: list[dict[str, Any]]
) -> list[MitigationMeasure]:
    created: list[MitigationMeasure] = []
    for measure in measures:
        row = MitigationMeasure(
            id=uuid4().hex,
            risk_id=risk_pk,
            description=measure["description"],
            responsible=measure.get("responsible"),
            due_date=measure.get("due_date"),
            status=measure.get("status") or MitigationStatus.PLANNED.value,
        )
        session.add(row)
        created.append(row)
    await session.flush()
    return created


async def apply_human_edit(
    session: AsyncSession,
    risk: Risk,
    changes: dict[str, Any],
    *,
    actor: str,
    edited_at: datetime,
) -> Risk:
    for field, value in changes.items():
        setattr(risk, field, value)
    # Score is derived; keep it consistent with edited levels.
    risk.risk_score = risk_score(risk.probability, risk.impact)
    risk.human_edited_at = edited_at
    risk.last_modified_by = actor
    await session.flush()
    return risk
