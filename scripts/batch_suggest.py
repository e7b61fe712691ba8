from __future__ import annotations

import argparse
import asyncio

from complyrag.core.config import get_settings
from complyrag.core.logging import configure_logging
from complyrag.services.container import build_container, close_container
from complyrag.services.ingest.queue import BATCH_JOB_NAME, close_redis_pool, get_redis_pool


async def _run_inline() -> int:
    # Run the batch in this process and print the summary lines for operators.
    container = build_container(index_mode="inline")
    try:
        summary = await container.batch.run()
    finally:
        await close_container(container)
    for line in summary.summary:
        print(line)
    print(f"rules_processed={summary.rules_processed}")
    print(f"risks_processed={summary.risks_processed}")
    print(f"errors_count={summary.errors_count}")
    return 1 if summary.errors_count else 0


async def _enqueue() -> int:
    # Hand the batch to the indexing worker instead of running it here.
    settings = get_settings()
    try:
        redis = await get_redis_pool()
        job = await redis.enqueue_job(BATCH_JOB_NAME, _queue_name=settings.index_queue_name)
    finally:
        await close_redis_pool()
    print(f"job_id={job.job_id if job is not None else 'duplicate'}")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Generate rule and risk suggestions for every document")
    parser.add_argument("--enqueue", action="store_true", help="enqueue the run for the worker")
    args = parser.parse_args()
    configure_logging()
    runner = _enqueue if args.enqueue else _run_inline
    raise SystemExit(asyncio.run(runner()))


if __name__ == "__main__":
    main()
