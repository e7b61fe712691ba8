from __future__ import annotations

from datetime import date, datetime

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from complyrag.apps.api.deps import get_container, get_principal
from complyrag.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from complyrag.apps.api.response import SuccessEnvelope, success_response
from complyrag.domain.models import Risk, Rule
from complyrag.services.authz import Principal
from complyrag.services.container import ServiceContainer


router = APIRouter(tags=["entities"], responses=DEFAULT_ERROR_RESPONSES)


class RulePatch(BaseModel):
    description: str | None = None
    category: str | None = None
    priority: str | None = None
    status: str | None = None
    tags: list[str] | None = None

    model_config = {"extra": "forbid"}


class RiskPatch(BaseModel):
    description: str | None = None
    source: str | None = None
    category: str | None = None
    probability: str | None = None
    impact: str | None = None
    status: str | None = None
    owner: str | None = None
    linked_rule_ids: list[str] | None = None

    model_config = {"extra": "forbid"}


class RiskAssessRequest(BaseModel):
    description: str

    model_config = {"extra": "forbid"}


class RiskAssessmentResponse(BaseModel):
    category: str | None
    probability: str
    impact: str
    risk_score: int
    measures: list[str]
    errors: list[str]


class RuleResponse(BaseModel):
    rule_id: str
    name: str
    description: str
    category: str | None
    priority: str
    status: str
    tags: list[str]
    source_document_id: str | None
    ai_generated: bool
    last_ai_update: datetime | None
    human_edited_at: datetime | None
    last_modified_by: str | None


class RiskResponse(BaseModel):
    risk_id: str
    title: str
    description: str
    source: str | None
    category: str | None
    probability: str
    impact: str
    risk_score: int
    status: str
    owner: str | None
    identified_date: date
    source_document_id: str | None
    ai_generated: bool
    linked_rule_ids: list[str]
    last_ai_update: datetime | None
    human_edited_at: datetime | None
    last_modified_by: str | None


def _rule_response(rule: Rule) -> RuleResponse:
    return RuleResponse(
        rule_id=rule.rule_id,
        name=rule.name,
        description=rule.description,
        category=rule.category,
        priority=rule.priority,
        status=rule.status,
        tags=list(rule.tags or []),
        source_document_id=rule.source_document_id,
        ai_generated=rule.ai_generated,
        last_ai_update=rule.last_ai_update,
        human_edited_at=rule.human_edited_at,
        last_modified_by=rule.last_modified_by,
    )


def _risk_response(risk: Risk) -> RiskResponse:
    return RiskResponse(
        risk_id=risk.risk_id,
        title=risk.title,
        description=risk.description,
        source=risk.source,
        category=risk.category,
        probability=risk.probability,
        impact=risk.impact,
        risk_score=risk.risk_score,
        status=risk.status,
        owner=risk.owner,
        identified_date=risk.identified_date,
        source_document_id=risk.source_document_id,
        ai_generated=risk.ai_generated,
        linked_rule_ids=list(risk.linked_rule_ids or []),
        last_ai_update=risk.last_ai_update,
        human_edited_at=risk.human_edited_at,
        last_modified_by=risk.last_modified_by,
    )


@router.post("/risks/assess", response_model=SuccessEnvelope[RiskAssessmentResponse])
async def assess_risk(
    body: RiskAssessRequest,
    request: Request,
    principal: Principal = Depends(get_principal),
    container: ServiceContainer = Depends(get_container),
) -> dict:
    """Rate a free-text risk and suggest measures; nothing is stored."""
    assessment = await container.suggestions.assess_risk(body.description, principal)
    payload = RiskAssessmentResponse(
        category=assessment.category,
        probability=assessment.probability,
        impact=assessment.impact,
        risk_score=assessment.risk_score,
        measures=assessment.measures,
        errors=assessment.errors,
    )
    return success_response(request=request, data=payload)


# Only fields present in the request body are applied; omitted fields keep their value.
@router.patch("/rules/{rule_id}", response_model=SuccessEnvelope[RuleResponse])
async def edit_rule(
    rule_id: str,
    body: RulePatch,
    request: Request,
    principal: Principal = Depends(get_principal),
    container: ServiceContainer = Depends(get_container),
) -> dict:
    rule = await container.entities.edit_rule(rule_id, body.model_dump(exclude_unset=True), principal)
    return success_response(request=request, data=_rule_response(rule))


@router.patch("/risks/{risk_id}", response_model=SuccessEnvelope[RiskResponse])
async def edit_risk(
    risk_id: str,
    body: RiskPatch,
    request: Request,
    principal: Principal = Depends(get_principal),
    container: ServiceContainer = Depends(get_container),
) -> dict:
    risk = await container.entities.edit_risk(risk_id, body.model_dump(exclude_unset=True), principal)
    return success_response(request=request, data=_risk_response(risk))
