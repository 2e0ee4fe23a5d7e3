"""Label scan submission and job status routes."""

import logging

from fastapi import APIRouter, BackgroundTasks, File, Form, HTTPException, Query, UploadFile
from fastapi.responses import JSONResponse

from vinho.core.errors import DuplicateSubmissionError, InvalidImageError
from vinho.db.engine import get_session
from vinho.db.repositories import QueueJobRepository
from vinho.pipeline.jobs import trigger_processing
from vinho.pipeline.submission import decode_base64_image, submit_scan
from vinho.web.dependencies import CurrentUser, StorageDep

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/scans", tags=["scans"])


def _job_payload(job) -> dict:
    return {
        "job_id": job.id,
        "scan_id": job.scan_id,
        "status": job.status.value,
        "retry_count": job.retry_count,
        "error_message": job.error_message,
        "processed_data": job.processed_data,
        "created_at": job.created_at.isoformat(),
        "processed_at": job.processed_at.isoformat() if job.processed_at else None,
    }


@router.post("")
async def submit_label_scan(
    user_id: CurrentUser,
    storage: StorageDep,
    background_tasks: BackgroundTasks,
    image: UploadFile | None = File(None),
    image_base64: str | None = Form(None),
    ocr_text: str | None = Form(None),
    idempotency_key: str | None = Form(None),
) -> JSONResponse:
    """
    Submit a label photo for asynchronous extraction.

    Accepts either a multipart file or a base64 image. Returns 202 with
    the job id once the job is durably queued.
    """
    try:
        if image is not None:
            content = await image.read()
            content_type = image.content_type or "image/jpeg"
        elif image_base64:
            content, content_type = decode_base64_image(image_base64)
        else:
            raise InvalidImageError("An image file or image_base64 is required")

        with get_session() as session:
            submission = submit_scan(
                session,
                storage,
                user_id=user_id,
                image=content,
                content_type=content_type,
                ocr_text=ocr_text or None,
                idempotency_key=idempotency_key or None,
            )
    except InvalidImageError as e:
        raise HTTPException(
            status_code=400,
            detail={"error": "invalid_image", "message": str(e)},
        )
    except DuplicateSubmissionError as e:
        raise HTTPException(
            status_code=409,
            detail={"error": "duplicate_submission", "message": str(e)},
        )

    background_tasks.add_task(trigger_processing)

    return JSONResponse(submission.to_dict(), status_code=202)


@router.get("/jobs")
async def list_jobs(
    user_id: CurrentUser,
    limit: int = Query(20, ge=1, le=100),
) -> JSONResponse:
    """List the caller's most recent jobs, newest first."""
    with get_session() as session:
        jobs = QueueJobRepository(session).list_for_user(user_id, limit)

    return JSONResponse({"jobs": [_job_payload(job) for job in jobs], "count": len(jobs)})


@router.get("/jobs/{job_id}")
async def get_job_status(job_id: str, user_id: CurrentUser) -> JSONResponse:
    """Return the state of one of the caller's jobs."""
    with get_session() as session:
        job = QueueJobRepository(session).get_by_id(job_id)

    if job is None or job.user_id != user_id:
        raise HTTPException(status_code=404, detail="Job not found")

    return JSONResponse(_job_payload(job))
