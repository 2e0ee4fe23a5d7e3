"""
Job Submission
==============

Ingestion entrypoint: stores an uploaded label image and creates the
scan and queue job rows in one transaction.
"""

from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from vinho.core.enums import JobStatus
from vinho.core.errors import DuplicateSubmissionError, InvalidImageError
from vinho.db.repositories import QueueJobRepository, ScanRepository
from vinho.pipeline.storage import ImageStorage

logger = logging.getLogger(__name__)


@dataclass
class ScanSubmission:
    """Identifiers returned to the client after a successful submission."""

    job_id: str
    scan_id: str
    image_url: str
    status: JobStatus = JobStatus.PENDING

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "job_id": self.job_id,
            "scan_id": self.scan_id,
            "image_url": self.image_url,
            "status": self.status.value,
        }


def decode_base64_image(payload: str) -> tuple[bytes, str]:
    """
    Decode a base64 image, optionally given as a data: URL.

    Args:
        payload: Base64 text or "data:image/png;base64,..." URL

    Returns:
        Tuple of (image bytes, content type)

    Raises:
        InvalidImageError: If the payload is empty or not valid base64
    """
    content_type = "image/jpeg"
    payload = payload.strip()
    if payload.startswith("data:"):
        header, _, payload = payload.partition(",")
        content_type = header[len("data:"):].split(";")[0] or content_type

    if not payload:
        raise InvalidImageError("Image payload is empty")

    try:
        content = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidImageError(f"Image is not valid base64: {e}") from e

    if not content:
        raise InvalidImageError("Image payload is empty")
    return content, content_type


def submit_scan(
    session: Session,
    storage: ImageStorage,
    user_id: str,
    image: bytes,
    content_type: str = "image/jpeg",
    ocr_text: str | None = None,
    idempotency_key: str | None = None,
) -> ScanSubmission:
    """
    Accept a label scan for asynchronous processing.

    The image is stored first, then the scan and pending job are
    inserted and committed together. Triggering a worker is left to the
    caller so that a trigger failure can never fail the submission.

    Args:
        session: Database session (committed on success)
        storage: Image storage backend
        user_id: Submitting user
        image: Raw image bytes
        content_type: MIME type of the image
        ocr_text: Optional text recognized on the device
        idempotency_key: Optional client key; a reused key is rejected

    Returns:
        ScanSubmission with the new job and scan ids

    Raises:
        InvalidImageError: If the image is empty
        DuplicateSubmissionError: If the idempotency key was already used
    """
    if not image:
        raise InvalidImageError("Image payload is empty")

    stored = storage.save_image(image, user_id, content_type)

    try:
        scan = ScanRepository(session).create(
            user_id=user_id,
            image_path=stored.path,
            image_url=stored.url,
            ocr_text=ocr_text,
        )
        job = QueueJobRepository(session).create(
            user_id=user_id,
            image_url=stored.url,
            scan_id=scan.id,
            ocr_text=ocr_text,
            idempotency_key=idempotency_key,
        )
        session.commit()
    except IntegrityError as e:
        session.rollback()
        storage.delete_image(stored.path)
        if idempotency_key:
            logger.info(f"Rejected duplicate submission for key {idempotency_key}")
            raise DuplicateSubmissionError(idempotency_key) from e
        raise
    except Exception:
        # The image must not outlive a submission that was never queued
        session.rollback()
        storage.delete_image(stored.path)
        logger.exception(f"Submission failed for user {user_id}; removed {stored.path}")
        raise

    logger.info(f"Queued job {job.id} for scan {scan.id} (user {user_id})")
    return ScanSubmission(job_id=job.id, scan_id=scan.id, image_url=stored.url)
