from __future__ import annotations

import logging
from typing import Iterable
from uuid import uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from complyrag.core.errors import DatabaseError, NotFoundError, UpstreamServiceError, ValidationError
from complyrag.domain.enums import DEFAULT_EDIT_ROLES, DEFAULT_VIEW_ROLES
from complyrag.domain.models import Document, DocumentVersion
from complyrag.persistence.repos import documents as documents_repo
from complyrag.providers.storage.base import ContentStorage
from complyrag.providers.vector.base import VectorIndex
from complyrag.services.authz import UPLOAD_ROLES, Principal, require_edit, require_roles, require_view
from complyrag.services.ingest.queue import IndexScheduler
from complyrag.services.resilience import call_upstream


logger = logging.getLogger(__name__)

# Concurrent uploads may race on max+1; the unique index rejects the loser, which retries.
_VERSION_NUMBER_ATTEMPTS = 3


def storage_key_for(document_id: str, version_id: str) -> str:
    return f"{document_id}/{version_id}"


def _validate_upload(content: bytes, name: str) -> None:
    if not name or not name.strip():
        raise ValidationError("file name is required")
    if not content:
        raise ValidationError("uploaded file is empty")


class VersionStore:
    """Document/version aggregate: uploads, current-version pointer, deletion."""

    def __init__(
        self,
        *,
        session_factory: async_sessionmaker[AsyncSession],
        storage: ContentStorage,
        vector_index: VectorIndex,
        scheduler: IndexScheduler,
    ) -> None:
        self._session_factory = session_factory
        self._storage = storage
        self._vector_index = vector_index
        self._scheduler = scheduler

    async def upload(
        self,
        *,
        content: bytes,
        name: str,
        media_type: str,
        principal: Principal,
        document_id: str | None = None,
        change_description: str | None = None,
        view_roles: Iterable[str] | None = None,
        edit_roles: Iterable[str] | None = None,
        description: str | None = None,
        tags: list[str] | None = None,
    ) -> tuple[Document, DocumentVersion]:
        # First upload creates the document; later uploads append a version.
        if document_id is None:
            return await self.create_document(
                content=content,
                name=name,
                media_type=media_type,
                principal=principal,
                view_roles=view_roles,
                edit_roles=edit_roles,
                description=description,
                tags=tags,
                change_description=change_description,
            )
        version = await self.create_version(
            document_id,
            content=content,
            name=name,
            media_type=media_type,
            principal=principal,
            change_description=change_description,
        )
        doc = await self.get_document(document_id, principal)
        return doc, version

    async def create_document(
        self,
        *,
        content: bytes,
        name: str,
        media_type: str,
        principal: Principal,
        view_roles: Iterable[str] | None = None,
        edit_roles: Iterable[str] | None = None,
        description: str | None = None,
        tags: list[str] | None = None,
        change_description: str | None = None,
    ) -> tuple[Document, DocumentVersion]:
        require_roles(principal, UPLOAD_ROLES, "upload documents")
        _validate_upload(content, name)
        document_id = uuid4().hex
        version_id = uuid4().hex
        storage_key = storage_key_for(document_id, version_id)
        await self._storage.store(storage_key, content)

        try:
            async with self._session_factory() as session:
                doc = await documents_repo.create_document(
                    session,
                    document_id=document_id,
                    name=name,
                    size=len(content),
                    media_type=media_type,
                    created_by=principal.subject_id,
                    view_roles=view_roles or DEFAULT_VIEW_ROLES,
                    edit_roles=edit_roles or DEFAULT_EDIT_ROLES,
                    description=description,
                    tags=tags,
                )
                # Flush the parent row before the version that references it.
                await session.flush()
                version = await documents_repo.create_version(
                    session,
                    version_id=version_id,
                    document_id=document_id,
                    version_number=1,
                    storage_key=storage_key,
                    name=name,
                    size=len(content),
                    media_type=media_type,
                    uploaded_by=principal.subject_id,
                    change_description=change_description,
                )
                documents_repo.point_to_version(doc, version)
                await session.commit()
                await session.refresh(doc)
                await session.refresh(version)
        except Exception:
            await self._discard_content(storage_key)
            raise

        logger.info("document_created document_id=%s version_id=%s", document_id, version_id)
        await self._scheduler.schedule(document_id, version_id)
        return await self._reload(document_id, doc), version

    async def create_version(
        self,
        document_id: str,
        *,
        content: bytes,
        name: str,
        media_type: str,
        principal: Principal,
        change_description: str | None = None,
    ) -> DocumentVersion:
        _validate_upload(content, name)
        async with self._session_factory() as session:
            doc = await documents_repo.get_document(session, document_id)
            if doc is None:
                raise NotFoundError(f"document {document_id} not found")
            require_edit(principal, doc)

        version_id = uuid4().hex
        storage_key = storage_key_for(document_id, version_id)
        await self._storage.store(storage_key, content)
        try:
            version = await self._insert_version(
                document_id,
                version_id=version_id,
                storage_key=storage_key,
                name=name,
                size=len(content),
                media_type=media_type,
                uploaded_by=principal.subject_id,
                change_description=change_description,
            )
        except Exception:
            await self._discard_content(storage_key)
            raise

        logger.info(
            "version_created document_id=%s version_id=%s number=%s",
            document_id,
            version_id,
            version.version_number,
        )
        await self._scheduler.schedule(document_id, version_id)
        return version

    async def _insert_version(self, document_id: str, *, version_id: str, **fields) -> DocumentVersion:
        for attempt in range(1, _VERSION_NUMBER_ATTEMPTS + 1):
            async with self._session_factory() as session:
                doc = await documents_repo.get_document(session, document_id)
                if doc is None:
                    raise NotFoundError(f"document {document_id} not found")
                number = await documents_repo.next_version_number(session, document_id)
                version = await documents_repo.create_version(
                    session,
                    version_id=version_id,
                    document_id=document_id,
                    version_number=number,
                    **fields,
                )
                documents_repo.point_to_version(doc, version)
                try:
                    await session.commit()
                except IntegrityError as exc:
                    await session.rollback()
                    logger.warning(
                        "version_number_conflict document_id=%s number=%s attempt=%s",
                        document_id,
                        number,
                        attempt,
                    )
                    if attempt == _VERSION_NUMBER_ATTEMPTS:
                        raise DatabaseError(f"could not allocate a version number for {document_id}") from exc
                    continue
                await session.refresh(version)
                return version
        raise DatabaseError(f"could not allocate a version number for {document_id}")

    async def set_current_version(self, document_id: str, version_id: str, principal: Principal) -> Document:
        async with self._session_factory() as session:
            doc = await documents_repo.get_document(session, document_id)
            if doc is None:
                raise NotFoundError(f"document {document_id} not found")
            require_edit(principal, doc)
            version = await documents_repo.get_version(session, document_id, version_id)
            if version is None:
                raise NotFoundError(f"version {version_id} not found for document {document_id}")
            # Re-pointing to the current version still re-indexes.
            documents_repo.point_to_version(doc, version)
            await session.commit()
            await session.refresh(doc)

        logger.info("current_version_set document_id=%s version_id=%s", document_id, version_id)
        await self._scheduler.schedule(document_id, version_id)
        return await self._reload(document_id, doc)

    async def list_versions(self, document_id: str, principal: Principal) -> list[DocumentVersion]:
        async with self._session_factory() as session:
            doc = await documents_repo.get_document(session, document_id)
            if doc is None:
                raise NotFoundError(f"document {document_id} not found")
            require_view(principal, doc)
            return await documents_repo.list_versions(session, document_id)

    async def _reload(self, document_id: str, fallback: Document) -> Document:
        # Scheduling may already have moved index_state; return what is stored now.
        async with self._session_factory() as session:
            doc = await documents_repo.get_document(session, document_id)
        return doc if doc is not None else fallback

    async def get_document(self, document_id: str, principal: Principal) -> Document:
        async with self._session_factory() as session:
            doc = await documents_repo.get_document(session, document_id)
            if doc is None:
                raise NotFoundError(f"document {document_id} not found")
            require_view(principal, doc)
            return doc

    async def delete_document(self, document_id: str, principal: Principal) -> None:
        async with self._session_factory() as session:
            doc = await documents_repo.get_document(session, document_id)
            if doc is None:
                raise NotFoundError(f"document {document_id} not found")
            require_edit(principal, doc)
            storage_keys = await documents_repo.delete_document(session, document_id)
            await session.commit()

        # Index and content cleanup follow the committed delete; leftovers are only logged.
        try:
            await call_upstream(
                "vector_index", lambda: self._vector_index.delete_where(document_id=document_id)
            )
        except UpstreamServiceError:
            logger.exception("vector_delete_failed document_id=%s", document_id)
        for key in storage_keys:
            await self._discard_content(key)
        logger.info("document_deleted document_id=%s versions=%s", document_id, len(storage_keys))

    async def _discard_content(self, storage_key: str) -> None:
        try:
            await self._storage.delete(storage_key)
        except UpstreamServiceError:
            logger.exception("content_delete_failed storage_key=%s", storage_key)
