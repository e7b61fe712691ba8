from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from complyrag.core.config import Settings, get_settings
from complyrag.core.errors import ComplyError, UpstreamServiceError, ValidationError
from complyrag.domain.enums import IndexState
from complyrag.persistence.repos import documents as documents_repo
from complyrag.providers.embeddings.base import EmbeddingProvider
from complyrag.providers.extraction.base import TextExtractor
from complyrag.providers.storage.base import ContentStorage
from complyrag.providers.vector.base import VectorIndex
from complyrag.services.resilience import RetryPolicy, backoff_seconds, call_upstream
from complyrag.services.text import load_version_text


logger = logging.getLogger(__name__)


SKIPPED = "skipped"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _failure_reason(exc: Exception) -> str:
    # Short, operator-facing messages; stack traces stay in the logs.
    if isinstance(exc, ComplyError):
        return str(exc) or type(exc).__name__
    return "Indexing failed; check worker logs"


class IndexingPipeline:
    """Extract, embed and index the current version of a document.

    A run never raises to its invoker: every outcome lands in the document's
    index_state/index_error. Retryable upstream failures are retried with
    exponential backoff up to index_max_attempts.
    """

    def __init__(
        self,
        *,
        session_factory: async_sessionmaker[AsyncSession],
        storage: ContentStorage,
        extractor: TextExtractor,
        embedder: EmbeddingProvider,
        vector_index: VectorIndex,
        settings: Settings | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._storage = storage
        self._extractor = extractor
        self._embedder = embedder
        self._vector_index = vector_index
        self._settings = settings or get_settings()

    def _call_policy(self) -> RetryPolicy:
        # The run owns retries; each external call only gets the timeout bound.
        return RetryPolicy(
            timeout_ms=self._settings.ext_call_timeout_ms,
            max_attempts=1,
            backoff_ms=0,
        )

    async def run(self, document_id: str, version_id: str) -> str:
        async with self._session_factory() as session:
            doc = await documents_repo.get_document(session, document_id)
            if doc is None:
                logger.info("index_skip_missing document_id=%s", document_id)
                return SKIPPED
            if doc.current_version_id != version_id:
                # A newer trigger owns the document.
                logger.info(
                    "index_skip_stale document_id=%s version_id=%s current=%s",
                    document_id,
                    version_id,
                    doc.current_version_id,
                )
                return SKIPPED
            await documents_repo.update_index_state(
                session,
                document_id,
                index_state=IndexState.PROCESSING.value,
                index_attempts=0,
                version_id=version_id,
            )
            await session.commit()

        max_attempts = max(1, int(self._settings.index_max_attempts))
        attempt = 1
        while True:
            try:
                if not await self._index_once(document_id, version_id):
                    logger.info("index_skip_stale document_id=%s version_id=%s", document_id, version_id)
                    return SKIPPED
                break
            except UpstreamServiceError as exc:
                if exc.retryable and attempt < max_attempts:
                    logger.warning(
                        "index_retry document_id=%s attempt=%s service=%s",
                        document_id,
                        attempt,
                        exc.service,
                    )
                    await asyncio.sleep(backoff_seconds(self._settings.index_retry_backoff_ms, attempt))
                    attempt += 1
                    continue
                return await self._mark_failed(document_id, version_id, exc, attempt)
            except Exception as exc:  # noqa: BLE001 - every failure is recorded on the document
                return await self._mark_failed(document_id, version_id, exc, attempt)

        async with self._session_factory() as session:
            applied = await documents_repo.update_index_state(
                session,
                document_id,
                index_state=IndexState.COMPLETED.value,
                index_error=None,
                index_attempts=attempt,
                last_indexed_at=_utc_now(),
                version_id=version_id,
            )
            await session.commit()
        if not applied:
            logger.info("index_superseded document_id=%s version_id=%s", document_id, version_id)
            return await self._reconcile(document_id, version_id)
        logger.info("index_completed document_id=%s attempts=%s", document_id, attempt)
        return IndexState.COMPLETED.value

    async def _index_once(self, document_id: str, version_id: str) -> bool:
        """Embed and upsert one version; False when it stopped being current first."""
        async with self._session_factory() as session:
            version = await documents_repo.get_version(session, document_id, version_id)
            if version is None:
                raise ValidationError(f"version {version_id} no longer exists")
            text = await load_version_text(session, self._storage, self._extractor, version)
            await session.commit()

        text = text.strip()
        if not text:
            raise ValidationError("no extractable text")
        text = text[: max(1, int(self._settings.embed_max_chars))]

        policy = self._call_policy()
        vector = await call_upstream("embedding", lambda: self._embedder.embed(text), policy=policy)
        if not await self._is_current(document_id, version_id):
            return False
        await call_upstream(
            "vector_index",
            lambda: self._vector_index.upsert(document_id, vector, {"documentId": document_id}),
            policy=policy,
        )
        return True

    async def _is_current(self, document_id: str, version_id: str) -> bool:
        async with self._session_factory() as session:
            doc = await documents_repo.get_document(session, document_id)
        return doc is not None and doc.current_version_id == version_id

    async def _reconcile(self, document_id: str, version_id: str) -> str:
        # The upsert landed after a delete or a newer version; undo or redo it.
        async with self._session_factory() as session:
            doc = await documents_repo.get_document(session, document_id)
        if doc is None:
            try:
                await call_upstream(
                    "vector_index",
                    lambda: self._vector_index.delete_where(document_id=document_id),
                    policy=self._call_policy(),
                )
            except UpstreamServiceError:
                logger.exception("index_orphan_remove_failed document_id=%s", document_id)
                return SKIPPED
            logger.info("index_orphan_removed document_id=%s version_id=%s", document_id, version_id)
            return SKIPPED
        if doc.current_version_id and doc.current_version_id != version_id:
            logger.info(
                "index_rerun_current document_id=%s stale=%s current=%s",
                document_id,
                version_id,
                doc.current_version_id,
            )
            return await self.run(document_id, doc.current_version_id)
        return SKIPPED

    async def _mark_failed(
        self, document_id: str, version_id: str, exc: Exception, attempts: int
    ) -> str:
        reason = _failure_reason(exc)
        logger.error(
            "index_failed document_id=%s attempts=%s reason=%s",
            document_id,
            attempts,
            reason,
            exc_info=not isinstance(exc, ComplyError),
        )
        async with self._session_factory() as session:
            await documents_repo.update_index_state(
                session,
                document_id,
                index_state=IndexState.FAILED.value,
                index_error=reason,
                index_attempts=attempts,
                version_id=version_id,
            )
            await session.commit()
        return IndexState.FAILED.value

    async def mark_unscheduled(self, document_id: str, version_id: str, exc: Exception) -> None:
        # Used when a trigger cannot be handed to the queue at all.
        reason = UpstreamServiceError(f"indexing queue unavailable: {type(exc).__name__}", service="queue")
        await self._mark_failed(document_id, version_id, reason, 0)
