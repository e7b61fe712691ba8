from __future__ import annotations

import logging

from arq.connections import RedisSettings

from complyrag.core.config import get_settings
from complyrag.core.logging import configure_logging
from complyrag.services.container import ServiceContainer, build_container, close_container
from complyrag.services.ingest.queue import IndexJobPayload


logger = logging.getLogger(__name__)


def _container(ctx) -> ServiceContainer:
    return ctx["container"]


async def index_document(ctx, payload: dict) -> str:
    # Validate the payload in the worker so schema drift fails loudly.
    job = IndexJobPayload.model_validate(payload)
    logger.info(
        "index_job_start document_id=%s version_id=%s job_try=%s request_id=%s",
        job.document_id,
        job.version_id,
        ctx.get("job_try", 1),
        job.request_id,
    )
    return await _container(ctx).pipeline.run(job.document_id, job.version_id)


async def run_batch_suggestion(ctx) -> dict:
    summary = await _container(ctx).batch.run()
    for line in summary.summary:
        logger.info("batch_summary %s", line)
    return {
        "rulesProcessed": summary.rules_processed,
        "risksProcessed": summary.risks_processed,
        "errorsCount": summary.errors_count,
        "summary": summary.summary,
    }


async def _startup(ctx) -> None:
    configure_logging()
    # Jobs run inside the worker, so the pipeline itself is always awaited inline.
    ctx["container"] = build_container(index_mode="inline")


async def _shutdown(ctx) -> None:
    container = ctx.get("container")
    if container is not None:
        await close_container(container)


class WorkerSettings:
    # Keep worker configuration as class attributes for arq CLI compatibility.
    settings = get_settings()
    redis_settings = RedisSettings.from_dsn(settings.redis_url)
    queue_name = settings.index_queue_name
    # Retries happen inside the pipeline run; arq never replays a job.
    max_tries = 1
    functions = [index_document, run_batch_suggestion]
    on_startup = _startup
    on_shutdown = _shutdown
