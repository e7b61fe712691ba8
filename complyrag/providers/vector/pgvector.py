from __future__ import annotations

from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from complyrag.core.config import EMBED_DIM
from complyrag.core.errors import UpstreamServiceError, ValidationError
from complyrag.domain.models import DocumentVector
from complyrag.persistence.db import upsert_insert
from complyrag.providers.vector.base import VectorHit


class PgVectorIndex:
    """Vector index backed by the document_vectors table (pgvector)."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def upsert(self, document_id: str, vector: list[float], payload: dict[str, Any]) -> None:
        if len(vector) != EMBED_DIM:
            raise ValidationError(f"vector dimension {len(vector)} != {EMBED_DIM}")
        try:
            async with self._session_factory() as session:
                stmt = upsert_insert(session, DocumentVector).values(
                    document_id=document_id, embedding=vector, payload_json=payload
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=["document_id"],
                    set_={
                        "embedding": stmt.excluded.embedding,
                        "payload_json": stmt.excluded.payload_json,
                        "updated_at": func.now(),
                    },
                )
                await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as exc:
            raise UpstreamServiceError("pgvector upsert failed", service="vector_index") from exc

    async def search(self, vector: list[float], top_k: int) -> list[VectorHit]:
        # Cosine distance from pgvector; lower is more similar.
        distance_expr = DocumentVector.embedding.cosine_distance(vector)
        stmt = (
            select(DocumentVector, distance_expr.label("distance"))
            .order_by(distance_expr.asc(), DocumentVector.document_id.asc())
            .limit(max(1, int(top_k)))
        )
        try:
            async with self._session_factory() as session:
                rows = (await session.execute(stmt)).all()
        except SQLAlchemyError as exc:
            raise UpstreamServiceError("pgvector query failed", service="vector_index") from exc

        hits: list[VectorHit] = []
        for record, distance in rows:
            score = 1.0 - float(distance)
            hits.append(
                VectorHit(
                    document_id=record.document_id,
                    score=max(-1.0, min(1.0, score)),
                    payload=record.payload_json or {},
                )
            )
        return hits

    async def delete_where(self, *, document_id: str) -> None:
        try:
            async with self._session_factory() as session:
                await session.execute(
                    delete(DocumentVector).where(DocumentVector.document_id == document_id)
                )
                await session.commit()
        except SQLAlchemyError as exc:
            raise UpstreamServiceError("pgvector delete failed", service="vector_index") from exc
