from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from complyrag.apps.api.deps import get_container, get_principal
from complyrag.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from complyrag.apps.api.response import SuccessEnvelope, success_response
from complyrag.apps.api.routes.documents import DocumentResponse, to_document_response
from complyrag.services.authz import Principal
from complyrag.services.container import ServiceContainer


router = APIRouter(tags=["search"], responses=DEFAULT_ERROR_RESPONSES)


class SearchRequest(BaseModel):
    query: str
    top_k: int | None = Field(default=None, ge=1)
    min_score: float | None = Field(default=None, ge=-1.0, le=1.0)

    model_config = {
        "extra": "forbid",
        "json_schema_extra": {"examples": [{"query": "data retention obligations", "top_k": 5}]},
    }


class SearchHitResponse(BaseModel):
    document: DocumentResponse
    score: float


@router.post("/search", response_model=SuccessEnvelope[list[SearchHitResponse]])
async def search_documents(
    body: SearchRequest,
    request: Request,
    principal: Principal = Depends(get_principal),
    container: ServiceContainer = Depends(get_container),
) -> dict:
    hits = await container.search.search(
        body.query, principal=principal, top_k=body.top_k, min_score=body.min_score
    )
    payload = [SearchHitResponse(document=to_document_response(h.document), score=h.score) for h in hits]
    return success_response(request=request, data=payload)
