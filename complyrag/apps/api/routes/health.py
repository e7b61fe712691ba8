from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from complyrag.apps.api.deps import get_container
from complyrag.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from complyrag.apps.api.response import SuccessEnvelope, success_response
from complyrag.services.container import ServiceContainer


router = APIRouter(tags=["health"], responses=DEFAULT_ERROR_RESPONSES)


class HealthResponse(BaseModel):
    status: str
    index_execution_mode: str


@router.get("/health", response_model=SuccessEnvelope[HealthResponse])
async def health(request: Request, container: ServiceContainer = Depends(get_container)) -> dict:
    payload = HealthResponse(status="ok", index_execution_mode=container.scheduler.mode)
    return success_response(request=request, data=payload)
