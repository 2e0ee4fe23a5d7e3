"""
Extraction Worker
=================

Processes one claimed label-scan job end to end:

0. Reuse the result of an identical completed job (same content key)
1. Extract wine data from the label with the primary model
2. Re-run with the escalation model when confidence is low
3. Enrich missing details and producer location, best effort
4. Resolve the data to catalog entities
5. Link the scan to the vintage and record the user's tasting
6. Mark the job completed

Any failure hands the job to the RetryManager. Each job uses its own
session, so jobs in a batch can run in parallel threads.
"""

from __future__ import annotations

import base64
import hashlib
import logging
import mimetypes
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from vinho.config import PipelineConfig, get_default_config
from vinho.core.enums import ExtractionFailure, JobStatus
from vinho.core.errors import ExtractionError
from vinho.core.schema import ExtractedWineData, QueueJob
from vinho.db.repositories import QueueJobRepository, ScanRepository, TastingRepository
from vinho.pipeline.resolver import EntityResolver
from vinho.pipeline.retry import RetryManager
from vinho.pipeline.storage import ImageStorage
from vinho.services.ai.client import AIClient

logger = logging.getLogger(__name__)

# Extraction fields enrichment may fill; label values always win
_ENRICHABLE_FIELDS = (
    "year",
    "varietals",
    "region",
    "country",
    "abv_percent",
    "producer_website",
    "producer_address",
    "producer_city",
    "producer_postal_code",
    "latitude",
    "longitude",
)


@dataclass
class JobOutcome:
    """Result of processing one job."""

    job_id: str
    status: JobStatus | None
    vintage_id: str | None = None
    tasting_id: str | None = None
    model: str | None = None
    escalated: bool = False
    reused: bool = False
    enriched: bool = False
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == JobStatus.COMPLETED

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "job_id": self.job_id,
            "status": self.status.value if self.status else None,
            "vintage_id": self.vintage_id,
            "tasting_id": self.tasting_id,
            "model": self.model,
            "escalated": self.escalated,
            "reused": self.reused,
            "enriched": self.enriched,
            "error": self.error,
        }


def compute_content_key(image_url: str, ocr_text: str | None) -> str:
    """SHA-256 hex digest of "image_url|ocr_text"."""
    return hashlib.sha256(f"{image_url}|{ocr_text or ''}".encode()).hexdigest()


def build_tasting_notes(data: ExtractedWineData, scanned_on: str) -> str:
    """Default notes for a tasting recorded from a scan."""
    parts = [f"Scanned on {scanned_on}."]
    if data.varietals:
        parts.append(f"Varietals: {', '.join(data.varietals)}.")
    if data.region:
        region = f"{data.region}, {data.country}" if data.country else data.region
        parts.append(f"Region: {region}.")
    return " ".join(parts)


class ExtractionWorker:
    """Runs AI extraction and catalog resolution for queue jobs."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        ai_client: AIClient,
        config: PipelineConfig | None = None,
        storage: ImageStorage | None = None,
    ) -> None:
        """
        Initialize the worker.

        Args:
            session_factory: Creates a new session per job
            ai_client: Provider used for extraction and enrichment
            config: Pipeline settings (defaults to the global config)
            storage: Image storage, used to inline images that are not
                     reachable over http(s)
        """
        self.session_factory = session_factory
        self.ai_client = ai_client
        self.config = config or get_default_config()
        self.storage = storage

    def process_job(self, job: QueueJob) -> JobOutcome:
        """
        Process a claimed job. Never raises; failures are recorded on the job.

        Args:
            job: A job in processing state

        Returns:
            JobOutcome describing what happened
        """
        logger.info(f"Processing job {job.id} (attempt {job.retry_count + 1})")
        outcome = JobOutcome(job_id=job.id, status=None)

        try:
            if self._reuse_completed(job, outcome):
                logger.info(f"Job {job.id} completed from an identical earlier scan")
                return outcome
            data = self._extract(job, outcome)
            data = self._enrich(data, outcome)
            self._persist(job, data, outcome)
        except Exception as e:
            error_message = str(e) or e.__class__.__name__
            if isinstance(e, ExtractionError):
                logger.warning(f"Extraction failed for job {job.id}: {error_message}")
            else:
                logger.exception(f"Job {job.id} failed")
            outcome.error = error_message
            outcome.status = self._record_failure(job.id, error_message)
            return outcome

        logger.info(f"Job {job.id} completed: vintage {outcome.vintage_id}")
        return outcome

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _reuse_completed(self, job: QueueJob, outcome: JobOutcome) -> bool:
        """
        Complete the job with the result of an identical completed job.

        The content key is derived and stored on first processing. When
        another completed job shares it, its processed data is copied and
        the scan is linked to the same vintage without calling the model.
        The user's tasting is still recorded.

        Returns:
            True if the job was completed from an earlier result
        """
        content_key = job.content_key or compute_content_key(job.image_url, job.ocr_text)

        with self.session_factory() as session:
            jobs = QueueJobRepository(session)
            if job.content_key is None:
                jobs.set_content_key(job.id, content_key)
                job.content_key = content_key

            processed_data = jobs.find_completed_result(content_key, job.id)
            if processed_data is None:
                session.commit()
                return False

            vintage_id = (processed_data.get("resolved") or {}).get("vintage_id")
            if vintage_id:
                if job.scan_id:
                    ScanRepository(session).link_vintage(
                        job.scan_id, vintage_id, processed_data.get("confidence")
                    )
                data = ExtractedWineData.model_validate(processed_data)
                outcome.tasting_id = self._record_tasting(session, job, data, vintage_id)
            if not jobs.mark_completed(job.id, processed_data):
                session.rollback()
                raise RuntimeError(f"Job {job.id} is no longer processing")
            session.commit()

        outcome.vintage_id = vintage_id
        outcome.model = processed_data.get("model")
        outcome.reused = True
        outcome.status = JobStatus.COMPLETED
        return True

    def _extract(self, job: QueueJob, outcome: JobOutcome) -> ExtractedWineData:
        """Run extraction, escalating to the stronger model on low confidence."""
        settings = self.config.extraction
        image_url = self._model_image_url(job)

        result = self.ai_client.extract_label(image_url, job.ocr_text, model=settings.model)
        if not result.success or result.data is None:
            raise ExtractionError(
                result.failure or ExtractionFailure.PARSE_ERROR,
                result.error_message or "Extraction failed",
            )
        outcome.model = result.model

        if (
            result.data.confidence < settings.escalation_threshold
            and settings.escalation_model
            and settings.escalation_model != result.model
        ):
            logger.info(
                f"Job {job.id}: confidence {result.data.confidence:.2f} below "
                f"{settings.escalation_threshold}, escalating to {settings.escalation_model}"
            )
            escalated = self.ai_client.extract_label(
                image_url, job.ocr_text, model=settings.escalation_model
            )
            if escalated.success and escalated.data is not None:
                outcome.model = escalated.model
                outcome.escalated = True
                return escalated.data
            logger.warning(
                f"Job {job.id}: escalation failed ({escalated.error_message}), keeping first result"
            )

        return result.data

    def _enrich(self, data: ExtractedWineData, outcome: JobOutcome) -> ExtractedWineData:
        """Fill empty details and producer location fields from the enrichment model."""
        settings = self.config.extraction
        if not settings.enrichment_enabled or not data.missing_details:
            return data

        details = self.ai_client.enrich_details(data, model=settings.enrichment_model)
        if details is None:
            return data

        updates: dict[str, Any] = {}
        for name in _ENRICHABLE_FIELDS:
            current = getattr(data, name)
            value = getattr(details, name)
            if (current is None or current == []) and value not in (None, []):
                updates[name] = value

        if not updates:
            return data
        outcome.enriched = True
        logger.info(f"Enriched '{data.producer} / {data.wine_name}' with {', '.join(updates)}")
        return data.model_copy(update=updates)

    def _persist(self, job: QueueJob, data: ExtractedWineData, outcome: JobOutcome) -> None:
        """Resolve entities, link the scan, record the tasting and complete the job."""
        with self.session_factory() as session:
            resolved = EntityResolver(session).resolve(data)
            outcome.vintage_id = resolved.vintage_id

            if job.scan_id:
                ScanRepository(session).link_vintage(job.scan_id, resolved.vintage_id, data.confidence)

            outcome.tasting_id = self._record_tasting(session, job, data, resolved.vintage_id)

            processed_data = {
                **data.model_dump(),
                "model": outcome.model,
                "escalated": outcome.escalated,
                "enriched": outcome.enriched,
                "resolved": resolved.to_dict(),
            }
            if not QueueJobRepository(session).mark_completed(job.id, processed_data):
                session.rollback()
                raise RuntimeError(f"Job {job.id} is no longer processing")
            session.commit()

        outcome.status = JobStatus.COMPLETED

    def _record_tasting(
        self,
        session: Session,
        job: QueueJob,
        data: ExtractedWineData,
        vintage_id: str,
    ) -> str | None:
        """Record today's tasting of the scanned vintage. Failure is logged, not raised."""
        today = datetime.now(UTC).date()
        try:
            with session.begin_nested():
                tasting, created = TastingRepository(session).create_if_absent(
                    user_id=job.user_id,
                    vintage_id=vintage_id,
                    tasted_at=today,
                    notes=build_tasting_notes(data, today.isoformat()),
                    image_url=job.image_url,
                )
        except SQLAlchemyError as e:
            logger.warning(f"Job {job.id}: could not record tasting: {e}")
            return None

        if not created:
            logger.debug(f"Job {job.id}: tasting for today already exists ({tasting.id})")
        return tasting.id

    def _record_failure(self, job_id: str, error_message: str) -> JobStatus | None:
        """Hand a failed job to the retry manager."""
        try:
            with self.session_factory() as session:
                return RetryManager(session, self.config.queue.max_retries).handle_failure(
                    job_id, error_message
                )
        except SQLAlchemyError:
            logger.exception(f"Could not record failure for job {job_id}")
            return None

    def _model_image_url(self, job: QueueJob) -> str:
        """
        URL the model can read the label from.

        Images served from a relative path are inlined as a data: URL.
        """
        if job.image_url.startswith(("http://", "https://", "data:")):
            return job.image_url
        if self.storage is None or not job.scan_id:
            return job.image_url

        with self.session_factory() as session:
            scan = ScanRepository(session).get_by_id(job.scan_id)
        if scan is None:
            return job.image_url
        content = self.storage.get_image(scan.image_path)
        if content is None:
            return job.image_url

        media_type = mimetypes.guess_type(scan.image_path)[0] or "image/jpeg"
        return f"data:{media_type};base64,{base64.b64encode(content).decode('ascii')}"
