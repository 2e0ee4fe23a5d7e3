"""
Background Jobs Module
======================

Defines arq tasks for processing the label-scan queue. Redis only
carries the wake-up signal; the queue itself lives in the database, so
a lost or duplicated arq job never loses or double-processes a scan.
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from arq import create_pool, cron
from arq.connections import RedisSettings
from sqlalchemy.orm import Session

from vinho.config import PipelineConfig, get_default_config
from vinho.core.schema import QueueJob
from vinho.db.engine import get_session_factory
from vinho.pipeline.claimer import JobClaimer
from vinho.pipeline.storage import get_default_storage
from vinho.pipeline.worker import ExtractionWorker, JobOutcome
from vinho.services.ai.client import get_ai_client

logger = logging.getLogger(__name__)


@dataclass
class BatchResult:
    """Result of one claim-and-process cycle."""

    processed: int = 0
    failed: int = 0
    outcomes: list[JobOutcome] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.processed + self.failed

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "processed": self.processed,
            "failed": self.failed,
            "total": self.total,
        }


def get_redis_settings() -> RedisSettings:
    """Get Redis connection settings from environment."""
    return RedisSettings(
        host=os.environ.get("REDIS_HOST", "localhost"),
        port=int(os.environ.get("REDIS_PORT", "6379")),
        database=int(os.environ.get("REDIS_DB", "0")),
    )


def build_worker(
    config: PipelineConfig | None = None,
    session_factory: Callable[[], Session] | None = None,
) -> ExtractionWorker:
    """Create an ExtractionWorker from configuration and environment."""
    config = config or get_default_config()
    extraction = config.extraction
    ai_client = get_ai_client(
        extraction.provider,
        api_key=extraction.api_key,
        model=extraction.model,
        temperature=extraction.temperature,
    )
    return ExtractionWorker(
        session_factory=session_factory or get_session_factory(),
        ai_client=ai_client,
        config=config,
        storage=get_default_storage(config.storage),
    )


async def run_queue_batch(
    limit: int | None = None,
    worker: ExtractionWorker | None = None,
) -> BatchResult:
    """
    Claim a batch of pending jobs and process them concurrently.

    Each job runs in its own thread with its own session; one job's
    failure is recorded on that job and does not affect the others.

    Args:
        limit: Requested batch size (clamped by configuration)
        worker: Worker to use (built from configuration if omitted)

    Returns:
        BatchResult with completed/failed counts
    """
    worker = worker or build_worker()

    def claim() -> list[QueueJob]:
        with worker.session_factory() as session:
            return JobClaimer(session, worker.config.queue).claim(limit)

    jobs = await asyncio.to_thread(claim)
    result = BatchResult()
    if not jobs:
        return result

    outcomes = await asyncio.gather(
        *(asyncio.to_thread(worker.process_job, job) for job in jobs),
        return_exceptions=True,
    )

    for job, outcome in zip(jobs, outcomes):
        if isinstance(outcome, BaseException):
            logger.error(f"Job {job.id} raised outside the worker: {outcome!r}")
            result.failed += 1
            continue
        result.outcomes.append(outcome)
        if outcome.succeeded:
            result.processed += 1
        else:
            result.failed += 1

    logger.info(f"Batch finished: {result.processed} completed, {result.failed} failed")
    return result


async def process_wine_queue(ctx: dict[str, Any], limit: int | None = None) -> dict[str, Any]:
    """
    arq task: claim and process one batch of label-scan jobs.

    Args:
        ctx: arq context (contains Redis connection and the shared worker)
        limit: Optional batch size

    Returns:
        {processed, failed, total}
    """
    result = await run_queue_batch(limit, worker=ctx.get("worker"))
    return result.to_dict()


async def poll_wine_queue(ctx: dict[str, Any]) -> dict[str, Any]:
    """arq cron task: periodic sweep for pending jobs, including retries."""
    return await process_wine_queue(ctx)


async def enqueue_processing(limit: int | None = None) -> str | None:
    """
    Enqueue a queue-processing run for a worker to pick up.

    Returns:
        arq job ID, or None if arq deduplicated the request
    """
    redis = await create_pool(get_redis_settings())
    try:
        job = await redis.enqueue_job("process_wine_queue", limit)
    finally:
        await redis.close()
    return job.job_id if job else None


async def trigger_processing() -> None:
    """
    Best-effort wake-up after a submission.

    Failures are logged only: the cron sweep picks the job up anyway.
    """
    try:
        arq_job_id = await enqueue_processing()
        logger.debug(f"Enqueued queue processing run {arq_job_id}")
    except Exception as e:
        logger.warning(f"Could not trigger queue processing: {e}")


async def startup(ctx: dict[str, Any]) -> None:
    """Build one ExtractionWorker per arq process."""
    ctx["worker"] = build_worker()


class WorkerSettings:
    """arq worker settings."""

    functions = [process_wine_queue]
    cron_jobs = [cron(poll_wine_queue, second=0, run_at_startup=True)]
    on_startup = startup
    redis_settings = get_redis_settings()
    max_jobs = 5
    job_timeout = 600  # 10 minutes
    keep_result = 3600  # 1 hour
