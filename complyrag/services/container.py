from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from complyrag.core.config import Settings, get_settings
from complyrag.providers.embeddings.base import EmbeddingProvider
from complyrag.providers.embeddings.factory import get_embedding_provider
from complyrag.providers.extraction.base import TextExtractor
from complyrag.providers.extraction.text import DocumentTextExtractor
from complyrag.providers.llm.base import CompletionProvider
from complyrag.providers.llm.factory import get_completion_provider
from complyrag.providers.storage.base import ContentStorage
from complyrag.providers.storage.local import LocalContentStorage
from complyrag.providers.vector.base import VectorIndex
from complyrag.providers.vector.factory import get_vector_index
from complyrag.services.batch import BatchOrchestrator
from complyrag.services.entities import EntityEditor
from complyrag.services.ingest.pipeline import IndexingPipeline
from complyrag.services.ingest.queue import IndexScheduler, close_redis_pool
from complyrag.services.search import SearchEngine
from complyrag.services.suggestions.engine import SuggestionEngine
from complyrag.services.versioning import VersionStore
from complyrag.services.workflow import WorkflowEngine


logger = logging.getLogger(__name__)


class ServiceContainer:
    """Explicitly constructed handles shared by the API, the worker and scripts.

    Every component receives its collaborators here; nothing below reaches for
    a process-wide client on its own.
    """

    def __init__(
        self,
        *,
        session_factory: async_sessionmaker[AsyncSession],
        storage: ContentStorage,
        extractor: TextExtractor,
        embedder: EmbeddingProvider,
        completion: CompletionProvider,
        vector_index: VectorIndex,
        settings: Settings,
        index_mode: str | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.storage = storage
        self.extractor = extractor
        self.embedder = embedder
        self.completion = completion
        self.vector_index = vector_index
        self.settings = settings

        self.pipeline = IndexingPipeline(
            session_factory=session_factory,
            storage=storage,
            extractor=extractor,
            embedder=embedder,
            vector_index=vector_index,
            settings=settings,
        )
        self.scheduler = IndexScheduler(self.pipeline, mode=index_mode, settings=settings)
        self.versions = VersionStore(
            session_factory=session_factory,
            storage=storage,
            vector_index=vector_index,
            scheduler=self.scheduler,
        )
        self.workflow = WorkflowEngine(session_factory)
        self.entities = EntityEditor(session_factory)
        self.suggestions = SuggestionEngine(
            session_factory=session_factory,
            storage=storage,
            extractor=extractor,
            completion=completion,
            settings=settings,
        )
        self.batch = BatchOrchestrator(
            session_factory=session_factory, engine=self.suggestions, settings=settings
        )
        self.search = SearchEngine(
            session_factory=session_factory,
            embedder=embedder,
            vector_index=vector_index,
            settings=settings,
        )


def build_container(
    *,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    storage: ContentStorage | None = None,
    extractor: TextExtractor | None = None,
    embedder: EmbeddingProvider | None = None,
    completion: CompletionProvider | None = None,
    vector_index: VectorIndex | None = None,
    settings: Settings | None = None,
    index_mode: str | None = None,
) -> ServiceContainer:
    # Anything not passed in comes from settings; tests pass fakes explicitly.
    settings = settings or get_settings()
    if session_factory is None:
        from complyrag.persistence.db import SessionLocal

        session_factory = SessionLocal
    container = ServiceContainer(
        session_factory=session_factory,
        storage=LocalContentStorage(settings.content_storage_dir) if storage is None else storage,
        extractor=DocumentTextExtractor() if extractor is None else extractor,
        embedder=get_embedding_provider() if embedder is None else embedder,
        completion=get_completion_provider() if completion is None else completion,
        vector_index=get_vector_index(session_factory) if vector_index is None else vector_index,
        settings=settings,
        index_mode=index_mode,
    )
    logger.info(
        "container_built index_mode=%s embedding=%s llm=%s vector_index=%s",
        container.scheduler.mode,
        type(container.embedder).__name__,
        type(container.completion).__name__,
        type(container.vector_index).__name__,
    )
    return container


async def close_container(container: ServiceContainer) -> None:
    await container.scheduler.drain()
    handles: list[Any] = [container.embedder, container.completion, container.vector_index]
    for handle in handles:
        aclose = getattr(handle, "aclose", None)
        if aclose is not None:
            await aclose()
    if container.scheduler.mode == "queue":
        await close_redis_pool()
