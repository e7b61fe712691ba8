from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from complyrag.core.config import get_settings
from complyrag.core.errors import ProviderConfigError
from complyrag.providers.vector.memory import InMemoryVectorIndex
from complyrag.providers.vector.pgvector import PgVectorIndex
from complyrag.providers.vector.qdrant import QdrantVectorIndex


def get_vector_index(session_factory: async_sessionmaker[AsyncSession]):
    settings = get_settings()
    backend = (settings.vector_index or "pgvector").lower()

    if backend == "memory":
        return InMemoryVectorIndex()
    if backend == "pgvector":
        return PgVectorIndex(session_factory)
    if backend == "qdrant":
        return QdrantVectorIndex()

    raise ProviderConfigError(f"Unsupported vector index: {backend}")
