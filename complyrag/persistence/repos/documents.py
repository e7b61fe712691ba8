from __future__ import annotations

from datetime import datetime
from typing import Iterable

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from complyrag.domain.models import Document, DocumentVersion


async def create_document(
    session: AsyncSession,
    *,
    document_id: str,
    name: str,
    size: int,
    media_type: str,
    created_by: str,
    view_roles: Iterable[str],
    edit_roles: Iterable[str],
    description: str | None = None,
    tags: list[str] | None = None,
) -> Document:
    # New documents always start as draft with a pending index.
    doc = Document(
        id=document_id,
        name=name,
        size=size,
        media_type=media_type,
        created_by=created_by,
        status="draft",
        index_state="pending",
        index_attempts=0,
        view_roles=sorted(set(view_roles)),
        edit_roles=sorted(set(edit_roles)),
        description=description,
        tags=tags,
    )
    session.add(doc)
    return doc


async def get_document(session: AsyncSession, document_id: str) -> Document | None:
    result = await session.execute(select(Document).where(Document.id == document_id))
    return result.scalar_one_or_none()


async def list_documents(session: AsyncSession) -> list[Document]:
    # Secondary ordering keeps batch enumeration deterministic.
    result = await session.execute(select(Document).order_by(Document.created_at, Document.id))
    return list(result.scalars().all())


async def list_documents_by_ids(session: AsyncSession, document_ids: list[str]) -> list[Document]:
    if not document_ids:
        return []
    result = await session.execute(select(Document).where(Document.id.in_(document_ids)))
    return list(result.scalars().all())


async def next_version_number(session: AsyncSession, document_id: str) -> int:
    result = await session.execute(
        select(func.max(DocumentVersion.version_number)).where(
            DocumentVersion.document_id == document_id
        )
    )
    return int(result.scalar() or 0) + 1


async def create_version(
    session: AsyncSession,
    *,
    version_id: str,
    document_id: str,
    version_number: int,
    storage_key: str,
    name: str,
    size: int,
    media_type: str,
    uploaded_by: str,
    change_description: str | None,
) -> DocumentVersion:
    version = DocumentVersion(
        id=version_id,
        document_id=document_id,
        version_number=version_number,
        storage_key=storage_key,
        name=name,
        size=size,
        media_type=media_type,
        uploaded_by=uploaded_by,
        change_description=change_description,
    )
    session.add(version)
    return version


async def get_version(
    session: AsyncSession, document_id: str, version_id: str
) -> DocumentVersion | None:
    # Scope by document so a foreign version id behaves like an unknown one.
    result = await session.execute(
        select(DocumentVersion).where(
            DocumentVersion.id == version_id,
            DocumentVersion.document_id == document_id,
        )
    )
    return result.scalar_one_or_none()


async def list_versions(session: AsyncSession, document_id: str) -> list[DocumentVersion]:
    result = await session.execute(
        select(DocumentVersion)
        .where(DocumentVersion.document_id == document_id)
        .order_by(DocumentVersion.version_number.desc())
    )
    return list(result.scalars().all())


def point_to_version(doc: Document, version: DocumentVersion) -> None:
    # Mirror version metadata onto the document and invalidate the index.
    doc.current_version_id = version.id
    doc.name = version.name
    doc.size = version.size
    doc.media_type = version.media_type
    doc.index_state = "pending"
    doc.index_error = None
    doc.index_attempts = 0
    doc.last_indexed_at = None


async def update_index_state(
    session: AsyncSession,
    document_id: str,
    *,
    index_state: str,
    index_error: str | None = None,
    index_attempts: int | None = None,
    last_indexed_at: datetime | None = None,
    version_id: str | None = None,
) -> bool:
    """Update index bookkeeping in place; returns False when no row matched.

    With version_id set the write only lands while that version is still
    current, so a superseded run cannot overwrite the state owned by a newer one.
    """
    values: dict = {"index_state": index_state, "index_error": index_error}
    if index_attempts is not None:
        values["index_attempts"] = index_attempts
    if last_indexed_at is not None:
        values["last_indexed_at"] = last_indexed_at
    stmt = update(Document).where(Document.id == document_id)
    if version_id is not None:
        stmt = stmt.where(Document.current_version_id == version_id)
    result = await session.execute(stmt.values(**values))
    return (result.rowcount or 0) == 1


async def compare_and_set_status(
    session: AsyncSession,
    document_id: str,
    *,
    expected: str,
    target: str,
    actor: str,
    changed_at: datetime,
) -> bool:
    # Conditional update: a concurrent transition from the same status matches zero rows.
    result = await session.execute(
        update(Document)
        .where(Document.id == document_id, Document.status == expected)
        .values(status=target, status_changed_by=actor, status_changed_at=changed_at)
    )
    return (result.rowcount or 0) == 1


async def delete_document(session: AsyncSession, document_id: str) -> list[str]:
    # Delete versions explicitly; SQLite does not enforce ON DELETE CASCADE by default.
    result = await session.execute(
        select(DocumentVersion.storage_key).where(DocumentVersion.document_id == document_id)
    )
    storage_keys = [row[0] for row in result.all()]
    await session.execute(delete(DocumentVersion).where(DocumentVersion.document_id == document_id))
    await session.execute(delete(Document).where(Document.id == document_id))
    return storage_keys
