from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from complyrag.apps.api.deps import get_container, get_principal
from complyrag.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from complyrag.apps.api.response import SuccessEnvelope, success_response
from complyrag.services.authz import Principal
from complyrag.services.container import ServiceContainer


router = APIRouter(prefix="/suggestions", tags=["suggestions"], responses=DEFAULT_ERROR_RESPONSES)


class BatchFailureResponse(BaseModel):
    document_id: str
    message: str


class BatchResponse(BaseModel):
    # Counter names follow the batch summary contract consumed by existing clients.
    rulesProcessed: int
    risksProcessed: int
    errorsCount: int
    documentsTotal: int
    cancelled: bool
    summary: list[str]
    failures: list[BatchFailureResponse]


@router.post("/batch", response_model=SuccessEnvelope[BatchResponse])
async def run_batch(
    request: Request,
    principal: Principal = Depends(get_principal),
    container: ServiceContainer = Depends(get_container),
) -> dict:
    """Run suggestions over every document and return the aggregated summary."""
    summary = await container.batch.run(principal=principal)
    payload = BatchResponse(
        rulesProcessed=summary.rules_processed,
        risksProcessed=summary.risks_processed,
        errorsCount=summary.errors_count,
        documentsTotal=summary.documents_total,
        cancelled=summary.cancelled,
        summary=summary.summary,
        failures=[
            BatchFailureResponse(document_id=f.document_id, message=f.message) for f in summary.failures
        ],
    )
    return success_response(request=request, data=payload)
