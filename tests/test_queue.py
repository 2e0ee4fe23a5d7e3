"""Tests for the durable queue: job persistence, claiming and retries."""

import tempfile
import threading
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from vinho.config import QueueConfig
from vinho.core.enums import JobStatus
from vinho.db import models_catalog  # noqa: F401
from vinho.db.engine import create_db_engine
from vinho.db.models import Base, QueueJobDB
from vinho.db.repositories import QueueJobRepository
from vinho.pipeline.claimer import JobClaimer
from vinho.pipeline.retry import RetryManager


@pytest.fixture
def temp_db_path():
    """Create a temporary database file."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir) / "test_queue.db"


@pytest.fixture
def engine(temp_db_path):
    """Create a test database engine."""
    engine = create_db_engine(temp_db_path)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    """Create a session factory for testing."""
    return sessionmaker(bind=engine)


@pytest.fixture
def session(session_factory):
    """Create a database session for testing."""
    session = session_factory()
    yield session
    session.close()


def _add_jobs(session: Session, count: int, user_id: str = "user-1") -> list[str]:
    """Insert pending jobs with strictly increasing creation times."""
    base = datetime(2025, 1, 1, tzinfo=UTC)
    ids = []
    for i in range(count):
        job = QueueJobDB(
            user_id=user_id,
            image_url=f"https://example.com/label-{i}.jpg",
            status=JobStatus.PENDING.value,
            retry_count=0,
            created_at=base + timedelta(seconds=i),
        )
        session.add(job)
        session.flush()
        ids.append(job.id)
    session.commit()
    return ids


class TestQueueJobRepository:
    """Tests for QueueJobRepository."""

    def test_create_job_is_pending(self, session: Session) -> None:
        """Test a new job starts pending with no retries."""
        repo = QueueJobRepository(session)
        job = repo.create(user_id="user-1", image_url="https://example.com/a.jpg", ocr_text="Chateau")
        session.commit()

        retrieved = repo.get_by_id(job.id)
        assert retrieved is not None
        assert retrieved.status == JobStatus.PENDING
        assert retrieved.retry_count == 0
        assert retrieved.ocr_text == "Chateau"
        assert retrieved.processed_at is None

    def test_duplicate_idempotency_key_rejected(self, session: Session) -> None:
        """Test the unique idempotency key rejects a second job."""
        repo = QueueJobRepository(session)
        repo.create(user_id="user-1", image_url="https://example.com/a.jpg", idempotency_key="k1")
        session.commit()

        with pytest.raises(IntegrityError):
            repo.create(user_id="user-1", image_url="https://example.com/b.jpg", idempotency_key="k1")
        session.rollback()

    def test_jobs_without_key_do_not_collide(self, session: Session) -> None:
        """Test several jobs may omit the idempotency key."""
        repo = QueueJobRepository(session)
        repo.create(user_id="user-1", image_url="https://example.com/a.jpg")
        repo.create(user_id="user-1", image_url="https://example.com/b.jpg")
        session.commit()

        assert repo.count_by_status()["pending"] == 2

    def test_mark_completed_requires_processing(self, session: Session) -> None:
        """Test completion only applies to a processing job."""
        repo = QueueJobRepository(session)
        job = repo.create(user_id="user-1", image_url="https://example.com/a.jpg")
        session.commit()

        assert repo.mark_completed(job.id, {"producer": "X"}) is False

        repo.claim_pending(1)
        assert repo.mark_completed(job.id, {"producer": "X"}) is True
        session.commit()

        done = repo.get_by_id(job.id)
        assert done.status == JobStatus.COMPLETED
        assert done.processed_data == {"producer": "X"}
        assert done.processed_at is not None

    def test_list_for_user(self, session: Session) -> None:
        """Test listing only returns the user's own jobs."""
        _add_jobs(session, 2, user_id="user-1")
        _add_jobs(session, 1, user_id="user-2")

        jobs = QueueJobRepository(session).list_for_user("user-1")
        assert len(jobs) == 2
        assert all(job.user_id == "user-1" for job in jobs)


class TestJobClaimer:
    """Tests for atomic job claiming."""

    def test_claims_oldest_first(self, session: Session) -> None:
        """Test jobs are claimed in creation order."""
        ids = _add_jobs(session, 4)

        claimed = JobClaimer(session, QueueConfig()).claim(2)

        assert [job.id for job in claimed] == ids[:2]
        assert all(job.status == JobStatus.PROCESSING for job in claimed)

    def test_claim_sets_processing_in_database(self, session: Session) -> None:
        """Test the status change is committed."""
        _add_jobs(session, 3)
        JobClaimer(session).claim(2)

        counts = QueueJobRepository(session).count_by_status()
        assert counts["processing"] == 2
        assert counts["pending"] == 1

    def test_claim_empty_queue(self, session: Session) -> None:
        """Test claiming with nothing pending returns no jobs."""
        assert JobClaimer(session).claim(5) == []

    def test_claim_skips_non_pending(self, session: Session) -> None:
        """Test completed and failed jobs are never claimed."""
        ids = _add_jobs(session, 3)
        session.get(QueueJobDB, ids[0]).status = JobStatus.COMPLETED.value
        session.get(QueueJobDB, ids[1]).status = JobStatus.FAILED.value
        session.commit()

        claimed = JobClaimer(session).claim(5)
        assert [job.id for job in claimed] == [ids[2]]

    def test_limit_is_clamped(self, session: Session) -> None:
        """Test the batch size is clamped to the configured maximum."""
        _add_jobs(session, 25)

        claimed = JobClaimer(session, QueueConfig(max_batch_size=20)).claim(100)
        assert len(claimed) == 20

    def test_default_and_minimum_batch_size(self) -> None:
        """Test the default batch size and the lower clamp."""
        config = QueueConfig()
        assert config.clamp_batch_size(None) == 5
        assert config.clamp_batch_size(0) == 1
        assert config.clamp_batch_size(-3) == 1

    def test_concurrent_claimers_never_share_jobs(self, session: Session, session_factory) -> None:
        """Test parallel claimers receive disjoint sets covering every job."""
        ids = _add_jobs(session, 40)
        results: list[list[str]] = []
        errors: list[BaseException] = []
        lock = threading.Lock()

        def claim_all() -> None:
            try:
                while True:
                    with session_factory() as worker_session:
                        claimed = JobClaimer(worker_session).claim(3)
                    if not claimed:
                        return
                    with lock:
                        results.append([job.id for job in claimed])
            except BaseException as e:  # pragma: no cover - surfaced below
                errors.append(e)

        threads = [threading.Thread(target=claim_all) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        claimed_ids = [job_id for batch in results for job_id in batch]
        assert len(claimed_ids) == len(set(claimed_ids))
        assert set(claimed_ids) == set(ids)


class TestRetryManager:
    """Tests for failure handling and the retry ceiling."""

    def test_failure_returns_job_to_pending(self, session: Session) -> None:
        """Test a first failure requeues the job."""
        _add_jobs(session, 1)
        job = JobClaimer(session).claim(1)[0]

        status = RetryManager(session).handle_failure(job.id, "parse_error: bad JSON")

        assert status == JobStatus.PENDING
        stored = QueueJobRepository(session).get_by_id(job.id)
        assert stored.status == JobStatus.PENDING
        assert stored.retry_count == 1
        assert stored.error_message == "parse_error: bad JSON"
        assert stored.processed_at is None

    def test_third_failure_is_terminal(self, session: Session) -> None:
        """Test the job fails permanently on its third failed attempt."""
        _add_jobs(session, 1)
        manager = RetryManager(session, max_retries=3)
        statuses = []
        for _ in range(3):
            job = JobClaimer(session).claim(1)[0]
            statuses.append(manager.handle_failure(job.id, "api_error: timeout"))

        assert statuses == [JobStatus.PENDING, JobStatus.PENDING, JobStatus.FAILED]
        stored = QueueJobRepository(session).get_by_id(job.id)
        assert stored.status == JobStatus.FAILED
        assert stored.retry_count == 3
        assert stored.processed_at is not None

        # A failed job is never claimed again
        assert JobClaimer(session).claim(5) == []

    def test_failure_on_non_processing_job_is_ignored(self, session: Session) -> None:
        """Test a pending job's retry count is left alone."""
        ids = _add_jobs(session, 1)

        assert RetryManager(session).handle_failure(ids[0], "late failure") is None
        assert QueueJobRepository(session).get_by_id(ids[0]).retry_count == 0
