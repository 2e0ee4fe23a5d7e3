"""Tests for the extraction worker and batch processing."""

import asyncio
import json
import tempfile
from pathlib import Path

import pytest
from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from vinho.config import ExtractionConfig, PipelineConfig, QueueConfig
from vinho.core.enums import JobStatus
from vinho.core.schema import ExtractedWineData
from vinho.db.engine import create_db_engine
from vinho.db.models import Base, ScanDB, TastingDB
from vinho.db.models_catalog import ProducerDB, VintageDB
from vinho.db.repositories import QueueJobRepository, ScanRepository
from vinho.pipeline.claimer import JobClaimer
from vinho.pipeline.jobs import run_queue_batch
from vinho.pipeline.worker import ExtractionWorker, build_tasting_notes, compute_content_key
from vinho.services.ai.client import AIClient, AIProvider
from vinho.services.ai.prompts import ENRICHMENT_SYSTEM_PROMPT


class FakeAIClient(AIClient):
    """AI client returning canned responses per model."""

    provider = AIProvider.OPENAI

    def __init__(self, responses: dict[str, str | Exception], enrichment: str = "{}"):
        self.model = "gpt-4o-mini"
        self.responses = responses
        self.enrichment = enrichment
        self.calls: list[tuple[str, str | None]] = []

    def complete_json(self, system_prompt, user_prompt, image_url=None, model=None):
        model = model or self.model
        if system_prompt == ENRICHMENT_SYSTEM_PROMPT:
            self.calls.append(("enrich", model))
            return self.enrichment
        self.calls.append(("extract", model))
        response = self.responses[model]
        if isinstance(response, Exception):
            raise response
        return response


def _label(**overrides) -> str:
    data = {
        "producer": "Chateau Test",
        "wine_name": "Grand Vin",
        "year": 2015,
        "region": "Pauillac",
        "country": "France",
        "varietals": ["Cabernet Sauvignon", "Merlot"],
        "confidence": 0.9,
    }
    data.update(overrides)
    return json.dumps(data)


@pytest.fixture
def temp_db_path():
    """Create a temporary database file."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir) / "test_worker.db"


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
def config():
    """Pipeline config independent of the environment."""
    return PipelineConfig(
        queue=QueueConfig(max_retries=3),
        extraction=ExtractionConfig(
            provider="openai",
            model="gpt-4o-mini",
            escalation_model="gpt-4o",
            enrichment_model="gpt-4o-mini",
            escalation_threshold=0.6,
            enrichment_enabled=True,
        ),
    )


def _submit_and_claim(
    session_factory, user_id: str = "user-1", image_url: str = "https://example.com/label.jpg"
):
    """Create a scan and job, then claim the job."""
    with session_factory() as session:
        scan = ScanRepository(session).create(
            user_id=user_id,
            image_path=f"{user_id}/label.jpg",
            image_url=image_url,
        )
        QueueJobRepository(session).create(
            user_id=user_id,
            image_url=image_url,
            scan_id=scan.id,
        )
        session.commit()
    with session_factory() as session:
        return JobClaimer(session).claim(1)[0]


def _job(session_factory, job_id):
    with session_factory() as session:
        return QueueJobRepository(session).get_by_id(job_id)


class TestExtractionWorker:
    """Tests for ExtractionWorker.process_job."""

    def test_successful_job(self, session_factory, config) -> None:
        """Test a confident extraction completes the job and links the scan."""
        client = FakeAIClient({"gpt-4o-mini": _label()})
        worker = ExtractionWorker(session_factory, client, config)
        job = _submit_and_claim(session_factory)

        outcome = worker.process_job(job)

        assert outcome.succeeded
        assert outcome.escalated is False
        assert outcome.model == "gpt-4o-mini"
        stored = _job(session_factory, job.id)
        assert stored.status == JobStatus.COMPLETED
        assert stored.processed_data["producer"] == "Chateau Test"
        assert stored.processed_data["resolved"]["vintage_id"] == outcome.vintage_id
        with session_factory() as session:
            scan = session.get(ScanDB, job.scan_id)
            assert scan.matched_vintage_id == outcome.vintage_id
            assert scan.confidence == 0.9
            assert session.get(VintageDB, outcome.vintage_id).year == 2015

    def test_identical_scan_reuses_completed_result(self, session_factory, config) -> None:
        """Test a job matching a completed job's content key skips the model."""
        client = FakeAIClient({"gpt-4o-mini": _label()})
        worker = ExtractionWorker(session_factory, client, config)
        first = worker.process_job(_submit_and_claim(session_factory))
        client.calls.clear()

        job = _submit_and_claim(session_factory, user_id="user-2")
        outcome = worker.process_job(job)

        assert outcome.succeeded
        assert outcome.reused is True
        assert outcome.vintage_id == first.vintage_id
        assert client.calls == []
        stored = _job(session_factory, job.id)
        assert stored.processed_data == _job(session_factory, first.job_id).processed_data
        assert stored.content_key == compute_content_key("https://example.com/label.jpg", None)
        with session_factory() as session:
            assert session.get(ScanDB, job.scan_id).matched_vintage_id == first.vintage_id
            tastings = session.execute(
                select(TastingDB).where(TastingDB.user_id == "user-2")
            ).scalars().all()
            assert [t.id for t in tastings] == [outcome.tasting_id]
            assert tastings[0].vintage_id == first.vintage_id

    def test_failed_job_result_is_not_reused(self, session_factory, config) -> None:
        """Test only completed jobs are reused."""
        one_attempt = PipelineConfig(queue=QueueConfig(max_retries=1), extraction=config.extraction)
        failing = ExtractionWorker(session_factory, FakeAIClient({"gpt-4o-mini": ""}), one_attempt)
        failed = failing.process_job(_submit_and_claim(session_factory))
        assert failed.status == JobStatus.FAILED

        client = FakeAIClient({"gpt-4o-mini": _label()})
        outcome = ExtractionWorker(session_factory, client, config).process_job(
            _submit_and_claim(session_factory, user_id="user-2")
        )

        assert outcome.succeeded
        assert outcome.reused is False
        assert ("extract", "gpt-4o-mini") in client.calls

    def test_records_tasting_once_per_day(self, session_factory, config) -> None:
        """Test scanning the same wine twice in a day records one tasting."""
        client = FakeAIClient({"gpt-4o-mini": _label()})
        worker = ExtractionWorker(session_factory, client, config)

        first = worker.process_job(_submit_and_claim(session_factory))
        second = worker.process_job(
            _submit_and_claim(session_factory, image_url="https://example.com/label-2.jpg")
        )

        assert first.tasting_id is not None
        assert second.tasting_id == first.tasting_id
        with session_factory() as session:
            tastings = session.execute(select(TastingDB)).scalars().all()
            assert len(tastings) == 1
            assert tastings[0].rating is None
            assert tastings[0].image_url == "https://example.com/label.jpg"
            assert "Varietals: Cabernet Sauvignon, Merlot." in tastings[0].notes

    def test_low_confidence_escalates(self, session_factory, config) -> None:
        """Test confidence below the threshold re-runs with the stronger model."""
        client = FakeAIClient({
            "gpt-4o-mini": _label(confidence=0.4, wine_name="Grnd Vn"),
            "gpt-4o": _label(confidence=0.85),
        })
        worker = ExtractionWorker(session_factory, client, config)
        job = _submit_and_claim(session_factory)

        outcome = worker.process_job(job)

        assert outcome.succeeded
        assert outcome.escalated is True
        assert outcome.model == "gpt-4o"
        assert ("extract", "gpt-4o") in client.calls
        assert _job(session_factory, job.id).processed_data["wine_name"] == "Grand Vin"

    def test_failed_escalation_keeps_first_result(self, session_factory, config) -> None:
        """Test an escalation error does not fail the job."""
        client = FakeAIClient({
            "gpt-4o-mini": _label(confidence=0.5),
            "gpt-4o": RuntimeError("rate limited"),
        })
        worker = ExtractionWorker(session_factory, client, config)
        job = _submit_and_claim(session_factory)

        outcome = worker.process_job(job)

        assert outcome.succeeded
        assert outcome.escalated is False
        assert outcome.model == "gpt-4o-mini"

    def test_confidence_at_threshold_does_not_escalate(self, session_factory, config) -> None:
        """Test escalation only happens strictly below the threshold."""
        client = FakeAIClient({"gpt-4o-mini": _label(confidence=0.6)})
        worker = ExtractionWorker(session_factory, client, config)

        outcome = worker.process_job(_submit_and_claim(session_factory))

        assert outcome.succeeded
        assert [call for call in client.calls if call[0] == "extract"] == [("extract", "gpt-4o-mini")]

    def test_enrichment_fills_missing_details(self, session_factory, config) -> None:
        """Test missing year and varietals are filled from enrichment."""
        client = FakeAIClient(
            {"gpt-4o-mini": _label(year=None, varietals=[], region=None, country=None)},
            enrichment=json.dumps({
                "year": 2018,
                "varietals": ["Syrah"],
                "region": "Barossa Valley",
                "country": "Australia",
            }),
        )
        worker = ExtractionWorker(session_factory, client, config)
        job = _submit_and_claim(session_factory)

        outcome = worker.process_job(job)

        assert outcome.succeeded
        assert outcome.enriched is True
        data = _job(session_factory, job.id).processed_data
        assert data["year"] == 2018
        assert data["varietals"] == ["Syrah"]
        assert data["region"] == "Barossa Valley"

    def test_enrichment_never_overwrites(self, session_factory, config) -> None:
        """Test fields read from the label win over enrichment."""
        client = FakeAIClient(
            {"gpt-4o-mini": _label(varietals=[])},
            enrichment=json.dumps({"year": 1999, "varietals": ["Merlot"], "region": "Elsewhere"}),
        )
        worker = ExtractionWorker(session_factory, client, config)
        job = _submit_and_claim(session_factory)

        worker.process_job(job)

        data = _job(session_factory, job.id).processed_data
        assert data["year"] == 2015
        assert data["region"] == "Pauillac"
        assert data["varietals"] == ["Merlot"]

    def test_enrichment_fills_producer_location(self, session_factory, config) -> None:
        """Test website, address and coordinates from enrichment reach the producer."""
        client = FakeAIClient(
            {"gpt-4o-mini": _label()},
            enrichment=json.dumps({
                "country": "Italy",
                "abv_percent": 13.5,
                "producer_website": "https://chateau-test.example",
                "producer_address": "1 Route des Vignes",
                "producer_city": "Pauillac",
                "producer_postal_code": 33250,
                "latitude": 45.2,
                "longitude": 200.0,
            }),
        )
        worker = ExtractionWorker(session_factory, client, config)
        job = _submit_and_claim(session_factory)

        outcome = worker.process_job(job)

        assert outcome.enriched is True
        data = _job(session_factory, job.id).processed_data
        assert data["country"] == "France"
        assert data["abv_percent"] == 13.5
        assert data["producer_postal_code"] == "33250"
        assert data["longitude"] is None
        with session_factory() as session:
            producer = session.get(ProducerDB, data["resolved"]["producer_id"])
            assert producer.website == "https://chateau-test.example"
            assert producer.address == "1 Route des Vignes"
            assert producer.city == "Pauillac"
            assert producer.latitude == 45.2
            assert session.get(VintageDB, outcome.vintage_id).abv == 13.5

    def test_complete_label_skips_enrichment(self, session_factory, config) -> None:
        """Test enrichment is not called when nothing is missing."""
        client = FakeAIClient({
            "gpt-4o-mini": _label(
                producer_website="https://chateau-test.example",
                producer_address="1 Route des Vignes",
            )
        })
        worker = ExtractionWorker(session_factory, client, config)

        outcome = worker.process_job(_submit_and_claim(session_factory))

        assert outcome.succeeded
        assert ("enrich", "gpt-4o-mini") not in client.calls

    def test_enrichment_failure_is_ignored(self, session_factory, config) -> None:
        """Test unparseable enrichment leaves the extraction as is."""
        client = FakeAIClient({"gpt-4o-mini": _label(year=None)}, enrichment="not json")
        worker = ExtractionWorker(session_factory, client, config)

        outcome = worker.process_job(_submit_and_claim(session_factory))

        assert outcome.succeeded
        assert outcome.enriched is False

    def test_parse_error_requeues_job(self, session_factory, config) -> None:
        """Test invalid JSON counts as a failed attempt."""
        client = FakeAIClient({"gpt-4o-mini": "I cannot read this label"})
        worker = ExtractionWorker(session_factory, client, config)
        job = _submit_and_claim(session_factory)

        outcome = worker.process_job(job)

        assert outcome.status == JobStatus.PENDING
        stored = _job(session_factory, job.id)
        assert stored.status == JobStatus.PENDING
        assert stored.retry_count == 1
        assert "parse_error" in stored.error_message

    def test_api_error_recorded(self, session_factory, config) -> None:
        """Test a provider exception is recorded as an api_error."""
        client = FakeAIClient({"gpt-4o-mini": ConnectionError("connection reset")})
        worker = ExtractionWorker(session_factory, client, config)
        job = _submit_and_claim(session_factory)

        outcome = worker.process_job(job)

        assert outcome.succeeded is False
        assert "api_error" in _job(session_factory, job.id).error_message

    def test_missing_required_fields_fail(self, session_factory, config) -> None:
        """Test a response without a producer fails validation."""
        client = FakeAIClient({"gpt-4o-mini": json.dumps({"wine_name": "X", "confidence": 0.9})})
        worker = ExtractionWorker(session_factory, client, config)
        job = _submit_and_claim(session_factory)

        worker.process_job(job)

        assert "parse_error" in _job(session_factory, job.id).error_message

    def test_job_fails_after_three_attempts(self, session_factory, config) -> None:
        """Test the third failure is terminal."""
        client = FakeAIClient({"gpt-4o-mini": ""})
        worker = ExtractionWorker(session_factory, client, config)
        job = _submit_and_claim(session_factory)

        statuses = [worker.process_job(job).status]
        for _ in range(2):
            with session_factory() as session:
                job = JobClaimer(session).claim(1)[0]
            statuses.append(worker.process_job(job).status)

        assert statuses == [JobStatus.PENDING, JobStatus.PENDING, JobStatus.FAILED]
        stored = _job(session_factory, job.id)
        assert stored.retry_count == 3
        assert "no_response" in stored.error_message


class TestBuildTastingNotes:
    """Tests for default tasting notes."""

    def test_notes_include_details(self) -> None:
        data = ExtractedWineData(
            producer="P", wine_name="W", confidence=0.9,
            varietals=["Riesling"], region="Mosel", country="Germany",
        )
        notes = build_tasting_notes(data, "2025-03-01")
        assert notes == "Scanned on 2025-03-01. Varietals: Riesling. Region: Mosel, Germany."

    def test_notes_minimal(self) -> None:
        data = ExtractedWineData(producer="P", wine_name="W", confidence=0.9)
        assert build_tasting_notes(data, "2025-03-01") == "Scanned on 2025-03-01."


class TestRunQueueBatch:
    """Tests for claim-and-process batches."""

    def test_batch_counts(self, session_factory, config) -> None:
        """Test a batch reports completed and failed jobs separately."""
        client = FakeAIClient({"gpt-4o-mini": _label()})
        worker = ExtractionWorker(session_factory, client, config)
        with session_factory() as session:
            repo = QueueJobRepository(session)
            repo.create(user_id="user-1", image_url="https://example.com/a.jpg")
            repo.create(user_id="user-2", image_url="https://example.com/b.jpg")
            session.commit()

        result = asyncio.run(run_queue_batch(limit=10, worker=worker))

        assert result.to_dict() == {"processed": 2, "failed": 0, "total": 2}
        with session_factory() as session:
            counts = QueueJobRepository(session).count_by_status()
        assert counts["completed"] == 2

    def test_empty_batch(self, session_factory, config) -> None:
        """Test an empty queue processes nothing."""
        worker = ExtractionWorker(session_factory, FakeAIClient({}), config)

        result = asyncio.run(run_queue_batch(worker=worker))

        assert result.to_dict() == {"processed": 0, "failed": 0, "total": 0}

    def test_one_failure_does_not_affect_others(self, session_factory, config) -> None:
        """Test a failing job is isolated from the rest of the batch."""
        client = FakeAIClient({"gpt-4o-mini": _label()})
        worker = ExtractionWorker(session_factory, client, config)
        with session_factory() as session:
            repo = QueueJobRepository(session)
            repo.create(user_id="user-1", image_url="https://example.com/a.jpg")
            repo.create(user_id="user-1", image_url="https://example.com/b.jpg")
            session.commit()

        original = worker._extract

        def flaky_extract(job, outcome):
            if job.image_url.endswith("b.jpg"):
                raise ValueError("boom")
            return original(job, outcome)

        worker._extract = flaky_extract
        result = asyncio.run(run_queue_batch(worker=worker))

        assert result.processed == 1
        assert result.failed == 1
