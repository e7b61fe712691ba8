from __future__ import annotations

import asyncio
import logging
from typing import Any

from arq import create_pool
from arq.connections import RedisSettings
from pydantic import BaseModel

from complyrag.core.config import Settings, get_settings
from complyrag.core.errors import ProviderConfigError
from complyrag.services.ingest.pipeline import IndexingPipeline


logger = logging.getLogger(__name__)

INDEX_JOB_NAME = "index_document"
BATCH_JOB_NAME = "run_batch_suggestion"

_EXECUTION_MODES = {"queue", "background", "inline"}

_redis_pool = None
_redis_pool_loop = None
_redis_lock = asyncio.Lock()


class IndexJobPayload(BaseModel):
    # Job schema for the API-to-worker handoff.
    document_id: str
    version_id: str
    request_id: str | None = None


async def get_redis_pool():
    # Cache the arq pool per event loop to avoid reconnecting on every enqueue.
    global _redis_pool, _redis_pool_loop
    current_loop = asyncio.get_running_loop()
    if _redis_pool is not None and _redis_pool_loop == current_loop:
        return _redis_pool
    if _redis_pool is not None and _redis_pool_loop != current_loop:
        _redis_pool = None
    async with _redis_lock:
        if _redis_pool is None:
            settings = get_settings()
            _redis_pool = await create_pool(
                RedisSettings.from_dsn(settings.redis_url),
                default_queue_name=settings.index_queue_name,
            )
            _redis_pool_loop = current_loop
    return _redis_pool


async def close_redis_pool() -> None:
    global _redis_pool, _redis_pool_loop
    if _redis_pool is not None:
        await _redis_pool.close()
    _redis_pool = None
    _redis_pool_loop = None


class IndexScheduler:
    """Hands pipeline triggers to the configured executor.

    queue: arq job consumed by the indexing worker.
    background: in-process asyncio task; callers never wait for it.
    inline: awaited in the caller, for deterministic tests and scripts.
    """

    def __init__(self, pipeline: IndexingPipeline, *, mode: str | None = None, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        resolved = (mode or self._settings.index_execution_mode or "queue").lower()
        if resolved not in _EXECUTION_MODES:
            raise ProviderConfigError(f"Unsupported index execution mode: {resolved}")
        self._mode = resolved
        self._pipeline = pipeline
        # Strong references keep fire-and-forget tasks alive until they finish.
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def mode(self) -> str:
        return self._mode

    async def schedule(self, document_id: str, version_id: str, *, request_id: str | None = None) -> None:
        payload = IndexJobPayload(document_id=document_id, version_id=version_id, request_id=request_id)
        if self._mode == "inline":
            await self._pipeline.run(document_id, version_id)
            return
        if self._mode == "background":
            task = asyncio.create_task(self._pipeline.run(document_id, version_id))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            return
        try:
            redis = await get_redis_pool()
            await redis.enqueue_job(
                INDEX_JOB_NAME,
                payload.model_dump(),
                _queue_name=self._settings.index_queue_name,
            )
        except Exception as exc:  # noqa: BLE001 - the upload already committed; record the miss
            logger.exception("index_enqueue_failed document_id=%s", document_id)
            await self._pipeline.mark_unscheduled(document_id, version_id, exc)
            return
        logger.info("index_enqueued document_id=%s version_id=%s", document_id, version_id)

    async def drain(self) -> None:
        # Wait for in-flight background runs; used at shutdown and in tests.
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
