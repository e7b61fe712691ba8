from __future__ import annotations

import logging
import mimetypes
from datetime import datetime

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from pydantic import BaseModel

from complyrag.apps.api.deps import get_container, get_principal, parse_roles
from complyrag.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from complyrag.apps.api.response import SuccessEnvelope, get_request_id, success_response
from complyrag.domain.models import Document, DocumentVersion
from complyrag.services.authz import Principal
from complyrag.services.container import ServiceContainer
from complyrag.services.suggestions.engine import MergedRecord, SuggestionResult


logger = logging.getLogger(__name__)
router = APIRouter(prefix="/documents", tags=["documents"], responses=DEFAULT_ERROR_RESPONSES)

_FALLBACK_MEDIA_TYPE = "application/octet-stream"


class DocumentResponse(BaseModel):
    id: str
    name: str
    size: int
    media_type: str
    current_version_id: str | None
    status: str
    index_state: str
    index_error: str | None
    index_attempts: int
    last_indexed_at: datetime | None
    view_roles: list[str]
    edit_roles: list[str]
    description: str | None
    tags: list[str] | None
    created_by: str
    status_changed_by: str | None
    status_changed_at: datetime | None
    created_at: datetime
    updated_at: datetime


class VersionResponse(BaseModel):
    id: str
    document_id: str
    version_number: int
    name: str
    size: int
    media_type: str
    uploaded_by: str
    change_description: str | None
    created_at: datetime
    is_current: bool = False


class UploadResponse(BaseModel):
    document: DocumentResponse
    version: VersionResponse


class StatusChangeRequest(BaseModel):
    status: str

    model_config = {"extra": "forbid", "json_schema_extra": {"examples": [{"status": "inReview"}]}}


class DeleteResponse(BaseModel):
    document_id: str
    deleted: bool


class MergedRecordResponse(BaseModel):
    id: str
    label: str
    created: bool


class SuggestionResponse(BaseModel):
    document_id: str
    document_name: str
    rules: list[MergedRecordResponse]
    risks: list[MergedRecordResponse]
    errors: list[str]
    skipped: list[str]


def to_document_response(doc: Document) -> DocumentResponse:
    return DocumentResponse(
        id=doc.id,
        name=doc.name,
        size=doc.size,
        media_type=doc.media_type,
        current_version_id=doc.current_version_id,
        status=doc.status,
        index_state=doc.index_state,
        index_error=doc.index_error,
        index_attempts=doc.index_attempts,
        last_indexed_at=doc.last_indexed_at,
        view_roles=list(doc.view_roles or []),
        edit_roles=list(doc.edit_roles or []),
        description=doc.description,
        tags=list(doc.tags) if doc.tags is not None else None,
        created_by=doc.created_by,
        status_changed_by=doc.status_changed_by,
        status_changed_at=doc.status_changed_at,
        created_at=doc.created_at,
        updated_at=doc.updated_at,
    )


def _to_version_response(version: DocumentVersion, current_version_id: str | None) -> VersionResponse:
    return VersionResponse(
        id=version.id,
        document_id=version.document_id,
        version_number=version.version_number,
        name=version.name,
        size=version.size,
        media_type=version.media_type,
        uploaded_by=version.uploaded_by,
        change_description=version.change_description,
        created_at=version.created_at,
        is_current=version.id == current_version_id,
    )


def _records(records: list[MergedRecord]) -> list[MergedRecordResponse]:
    return [MergedRecordResponse(id=r.business_id, label=r.label, created=r.created) for r in records]


def _to_suggestion_response(result: SuggestionResult) -> SuggestionResponse:
    return SuggestionResponse(
        document_id=result.document_id,
        document_name=result.document_name,
        rules=_records(result.rules),
        risks=_records(result.risks),
        errors=list(result.errors),
        skipped=list(result.skipped),
    )


def _media_type(upload: UploadFile) -> str:
    # Browsers send octet-stream for unknown files; the filename is a better hint.
    content_type = (upload.content_type or "").split(";")[0].strip().lower()
    if content_type and content_type != _FALLBACK_MEDIA_TYPE:
        return content_type
    guessed, _ = mimetypes.guess_type(upload.filename or "")
    return guessed or content_type or _FALLBACK_MEDIA_TYPE


@router.post("", status_code=201, response_model=SuccessEnvelope[UploadResponse])
async def upload_document(
    request: Request,
    file: UploadFile = File(...),
    document_id: str | None = Form(default=None),
    change_description: str | None = Form(default=None),
    view_roles: str | None = Form(default=None),
    edit_roles: str | None = Form(default=None),
    description: str | None = Form(default=None),
    tags: str | None = Form(default=None),
    principal: Principal = Depends(get_principal),
    container: ServiceContainer = Depends(get_container),
) -> dict:
    """Create a document, or append a version when document_id is given.

    Indexing is triggered after the write commits; the response never waits for it.
    """
    content = await file.read()
    doc, version = await container.versions.upload(
        content=content,
        name=(file.filename or "").strip(),
        media_type=_media_type(file),
        principal=principal,
        document_id=document_id or None,
        change_description=change_description,
        view_roles=parse_roles(view_roles) or None,
        edit_roles=parse_roles(edit_roles) or None,
        description=description,
        tags=parse_roles(tags) or None,
    )
    logger.info(
        "upload_accepted document_id=%s version=%s request_id=%s",
        doc.id,
        version.version_number,
        get_request_id(request),
    )
    payload = UploadResponse(
        document=to_document_response(doc),
        version=_to_version_response(version, doc.current_version_id),
    )
    return success_response(request=request, data=payload)


@router.get("/{document_id}", response_model=SuccessEnvelope[DocumentResponse])
async def get_document(
    document_id: str,
    request: Request,
    principal: Principal = Depends(get_principal),
    container: ServiceContainer = Depends(get_container),
) -> dict:
    doc = await container.versions.get_document(document_id, principal)
    return success_response(request=request, data=to_document_response(doc))


@router.delete("/{document_id}", response_model=SuccessEnvelope[DeleteResponse])
async def delete_document(
    document_id: str,
    request: Request,
    principal: Principal = Depends(get_principal),
    container: ServiceContainer = Depends(get_container),
) -> dict:
    await container.versions.delete_document(document_id, principal)
    return success_response(request=request, data=DeleteResponse(document_id=document_id, deleted=True))


@router.get("/{document_id}/versions", response_model=SuccessEnvelope[list[VersionResponse]])
async def list_versions(
    document_id: str,
    request: Request,
    principal: Principal = Depends(get_principal),
    container: ServiceContainer = Depends(get_container),
) -> dict:
    doc = await container.versions.get_document(document_id, principal)
    versions = await container.versions.list_versions(document_id, principal)
    payload = [_to_version_response(v, doc.current_version_id) for v in versions]
    return success_response(request=request, data=payload)


@router.post("/{document_id}/versions", status_code=201, response_model=SuccessEnvelope[VersionResponse])
async def create_version(
    document_id: str,
    request: Request,
    file: UploadFile = File(...),
    change_description: str | None = Form(default=None),
    principal: Principal = Depends(get_principal),
    container: ServiceContainer = Depends(get_container),
) -> dict:
    content = await file.read()
    version = await container.versions.create_version(
        document_id,
        content=content,
        name=(file.filename or "").strip(),
        media_type=_media_type(file),
        principal=principal,
        change_description=change_description,
    )
    # A new upload always becomes the current version.
    return success_response(request=request, data=_to_version_response(version, version.id))


@router.post(
    "/{document_id}/versions/{version_id}/set-current",
    response_model=SuccessEnvelope[DocumentResponse],
)
async def set_current_version(
    document_id: str,
    version_id: str,
    request: Request,
    principal: Principal = Depends(get_principal),
    container: ServiceContainer = Depends(get_container),
) -> dict:
    doc = await container.versions.set_current_version(document_id, version_id, principal)
    return success_response(request=request, data=to_document_response(doc))


@router.post("/{document_id}/status", response_model=SuccessEnvelope[DocumentResponse])
async def change_status(
    document_id: str,
    body: StatusChangeRequest,
    request: Request,
    principal: Principal = Depends(get_principal),
    container: ServiceContainer = Depends(get_container),
) -> dict:
    doc = await container.workflow.change_status(document_id, body.status, principal)
    return success_response(request=request, data=to_document_response(doc))


@router.post("/{document_id}/suggestions", response_model=SuccessEnvelope[SuggestionResponse])
async def suggest_entities(
    document_id: str,
    request: Request,
    principal: Principal = Depends(get_principal),
    container: ServiceContainer = Depends(get_container),
) -> dict:
    result = await container.suggestions.suggest_entities(document_id, principal)
    return success_response(request=request, data=_to_suggestion_response(result))
