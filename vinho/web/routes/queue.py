"""Internal queue processing route, called by schedulers or after submissions."""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from vinho.pipeline.jobs import run_queue_batch
from vinho.web.dependencies import require_service_key

router = APIRouter(prefix="/api/queue", tags=["queue"], dependencies=[Depends(require_service_key)])


class ProcessQueueRequest(BaseModel):
    """Optional batch size for a processing run."""

    limit: int | None = Field(default=None, ge=1)


@router.post("/process")
async def process_queue(body: ProcessQueueRequest | None = None) -> JSONResponse:
    """
    Claim and process one batch of pending jobs.

    Returns {processed, failed, total}.
    """
    limit = body.limit if body else None
    result = await run_queue_batch(limit)
    return JSONResponse(result.to_dict())
