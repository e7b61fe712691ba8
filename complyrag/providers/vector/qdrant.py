from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any

from qdrant_client import AsyncQdrantClient
from qdrant_client.http.exceptions import ResponseHandlingException, UnexpectedResponse
from qdrant_client.models import (
    Distance,
    FieldCondition,
    Filter,
    FilterSelector,
    MatchValue,
    PointStruct,
    VectorParams,
)

from complyrag.core.config import EMBED_DIM, get_settings
from complyrag.core.errors import UpstreamServiceError
from complyrag.providers.vector.base import VectorHit


logger = logging.getLogger(__name__)

# Fixed namespace so a document always maps to the same point id.
DOCUMENT_POINT_NAMESPACE = uuid.UUID("5f0c7d9e-2b8a-4c61-9a3e-7d2f1b6c8e40")

_CLIENT_ERRORS = (ResponseHandlingException, UnexpectedResponse)


def document_point_id(document_id: str) -> str:
    return str(uuid.uuid5(DOCUMENT_POINT_NAMESPACE, document_id))


class QdrantVectorIndex:
    # Callers own timeouts and retries; this class only maps client errors.
    def __init__(
        self,
        client: AsyncQdrantClient | None = None,
        collection: str | None = None,
    ) -> None:
        settings = get_settings()
        self._client = client or AsyncQdrantClient(url=settings.qdrant_url, api_key=settings.qdrant_api_key)
        self._collection = collection or settings.qdrant_collection
        self._ready = False
        self._ready_lock = asyncio.Lock()

    async def _ensure_collection(self) -> None:
        if self._ready:
            return
        async with self._ready_lock:
            if self._ready:
                return
            collections = await self._client.get_collections()
            existing = {c.name for c in collections.collections}
            if self._collection not in existing:
                await self._client.create_collection(
                    collection_name=self._collection,
                    vectors_config=VectorParams(size=EMBED_DIM, distance=Distance.COSINE),
                )
                logger.info("qdrant_collection_created name=%s", self._collection)
            self._ready = True

    async def upsert(self, document_id: str, vector: list[float], payload: dict[str, Any]) -> None:
        try:
            await self._ensure_collection()
            await self._client.upsert(
                collection_name=self._collection,
                points=[
                    PointStruct(
                        id=document_point_id(document_id),
                        vector=vector,
                        payload={**payload, "documentId": document_id},
                    )
                ],
            )
        except _CLIENT_ERRORS as exc:
            raise UpstreamServiceError("qdrant upsert failed", service="vector_index") from exc

    async def search(self, vector: list[float], top_k: int) -> list[VectorHit]:
        try:
            await self._ensure_collection()
            response = await self._client.query_points(
                collection_name=self._collection,
                query=vector,
                limit=max(1, int(top_k)),
                with_payload=True,
            )
        except _CLIENT_ERRORS as exc:
            raise UpstreamServiceError("qdrant query failed", service="vector_index") from exc
        hits: list[VectorHit] = []
        for point in response.points:
            payload = dict(point.payload or {})
            document_id = payload.get("documentId")
            if not document_id:
                continue
            hits.append(VectorHit(document_id=str(document_id), score=float(point.score), payload=payload))
        return hits

    async def delete_where(self, *, document_id: str) -> None:
        try:
            await self._ensure_collection()
            await self._client.delete(
                collection_name=self._collection,
                points_selector=FilterSelector(
                    filter=Filter(
                        must=[FieldCondition(key="documentId", match=MatchValue(value=document_id))]
                    )
                ),
            )
        except _CLIENT_ERRORS as exc:
            raise UpstreamServiceError("qdrant delete failed", service="vector_index") from exc

    async def aclose(self) -> None:
        await self._client.close()
