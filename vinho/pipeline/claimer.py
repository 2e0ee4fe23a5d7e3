"""
Job Claimer
===========

Hands out batches of pending jobs so that every job is processed by
exactly one worker, however many pollers run at once.
"""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from vinho.config import QueueConfig
from vinho.core.schema import QueueJob
from vinho.db.repositories import QueueJobRepository

logger = logging.getLogger(__name__)


class JobClaimer:
    """Claims pending jobs for processing."""

    def __init__(self, session: Session, config: QueueConfig | None = None) -> None:
        self.session = session
        self.config = config or QueueConfig()
        self.jobs = QueueJobRepository(session)

    def claim(self, limit: int | None = None) -> list[QueueJob]:
        """
        Claim up to `limit` pending jobs, oldest first.

        The limit defaults to the configured batch size and is clamped to
        1..max_batch_size. Claimed jobs are committed as processing
        before this returns.

        Args:
            limit: Requested batch size

        Returns:
            Claimed jobs (empty when nothing is pending)
        """
        batch_size = self.config.clamp_batch_size(limit)
        jobs = self.jobs.claim_pending(batch_size)
        if jobs:
            logger.info(f"Claimed {len(jobs)} job(s): {', '.join(job.id for job in jobs)}")
        else:
            logger.debug("No pending jobs to claim")
        return jobs
