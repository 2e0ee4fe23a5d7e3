"""
Retry/Failure Manager
=====================

Decides what happens to a job after a failed attempt: back to pending
for another try, or permanently failed once the retry ceiling is hit.
"""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from vinho.core.enums import JobStatus
from vinho.db.repositories import QueueJobRepository

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3


class RetryManager:
    """Records failed attempts against queue jobs."""

    def __init__(self, session: Session, max_retries: int = DEFAULT_MAX_RETRIES) -> None:
        self.session = session
        self.max_retries = max_retries
        self.jobs = QueueJobRepository(session)

    def handle_failure(self, job_id: str, error_message: str) -> JobStatus | None:
        """
        Record a failed attempt and commit.

        Args:
            job_id: The processing job that failed
            error_message: Human-readable failure reason

        Returns:
            The job's new status, or None if it was no longer processing
        """
        outcome = self.jobs.record_failure(job_id, error_message, self.max_retries)
        self.session.commit()

        if outcome is None:
            logger.warning(f"Job {job_id} was not processing; failure not recorded")
            return None

        status, retry_count = outcome
        if status == JobStatus.FAILED:
            logger.error(
                f"Job {job_id} failed permanently after {retry_count} attempts: {error_message}"
            )
        else:
            logger.warning(
                f"Job {job_id} failed (attempt {retry_count}/{self.max_retries}), "
                f"returned to queue: {error_message}"
            )
        return status
