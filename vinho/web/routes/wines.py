"""Wine recommendation routes."""

import logging

from fastapi import APIRouter, HTTPException
from fastapi.responses import JSONResponse

from vinho.core.errors import SimilarityServiceError
from vinho.db.engine import get_session
from vinho.services.similarity_service import SimilarityService
from vinho.web.dependencies import CurrentUser, IndexDep

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/wines", tags=["wines"])


@router.get("/similar-for-user")
async def similar_for_user(
    user_id: CurrentUser,
    index: IndexDep,
    limit: int | None = None,
    threshold: float | None = None,
) -> JSONResponse:
    """
    Wines that look like the ones the caller rated highly.

    limit is clamped to 1..20 and threshold to 0..1. Responds 503 when
    the vector index cannot be reached.
    """
    try:
        with get_session() as session:
            response = SimilarityService(session, index).similar_for_user(
                user_id, limit=limit, threshold=threshold
            )
    except SimilarityServiceError as e:
        logger.error(f"Similarity lookup failed for user {user_id}: {e}")
        raise HTTPException(
            status_code=503,
            detail={"error": "similarity_unavailable", "message": str(e)},
        )

    return JSONResponse(response.model_dump(mode="json"))
