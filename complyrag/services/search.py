from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from complyrag.core.config import Settings, get_settings
from complyrag.core.errors import ValidationError
from complyrag.domain.models import Document
from complyrag.persistence.repos import documents as documents_repo
from complyrag.providers.embeddings.base import EmbeddingProvider
from complyrag.providers.vector.base import VectorIndex
from complyrag.services.authz import Principal, can_view
from complyrag.services.resilience import RetryPolicy, call_upstream


logger = logging.getLogger(__name__)


@dataclass
class DocumentHit:
    document: Document
    score: float


class SearchEngine:
    def __init__(
        self,
        *,
        session_factory: async_sessionmaker[AsyncSession],
        embedder: EmbeddingProvider,
        vector_index: VectorIndex,
        settings: Settings | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._embedder = embedder
        self._vector_index = vector_index
        self._settings = settings or get_settings()

    def _policy(self) -> RetryPolicy:
        return RetryPolicy(
            timeout_ms=self._settings.ext_call_timeout_ms,
            max_attempts=max(1, self._settings.ext_retry_max_attempts),
            backoff_ms=self._settings.ext_retry_backoff_ms,
        )

    async def search(
        self,
        query: str,
        *,
        principal: Principal,
        top_k: int | None = None,
        min_score: float | None = None,
    ) -> list[DocumentHit]:
        """Rank documents by vector similarity, keeping only those the caller may view.

        An empty list means no relevant documents; embedding or index failures
        raise UpstreamServiceError.
        """
        text = (query or "").strip()
        if not text:
            raise ValidationError("query must not be empty")
        limit = top_k if top_k is not None else self._settings.search_default_top_k
        limit = max(1, min(int(limit), self._settings.search_max_top_k))
        threshold = self._settings.search_default_min_score if min_score is None else float(min_score)

        policy = self._policy()
        vector = await call_upstream("embedding", lambda: self._embedder.embed(text), policy=policy)
        raw_hits = await call_upstream(
            "vector_index", lambda: self._vector_index.search(vector, limit), policy=policy
        )

        # Hits arrive best-first; the first occurrence of a document carries its best score.
        scores: dict[str, float] = {}
        for hit in raw_hits:
            if hit.score < threshold or hit.document_id in scores:
                continue
            scores[hit.document_id] = hit.score
        if not scores:
            return []

        async with self._session_factory() as session:
            documents = await documents_repo.list_documents_by_ids(session, list(scores))

        hits = [
            DocumentHit(document=doc, score=scores[doc.id])
            for doc in documents
            if can_view(principal, doc)
        ]
        hits.sort(key=lambda hit: (-hit.score, hit.document.id))
        logger.info(
            "search_done raw=%s kept=%s visible=%s top_k=%s",
            len(raw_hits),
            len(scores),
            len(hits),
            limit,
        )
        return hits
