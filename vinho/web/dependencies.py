"""FastAPI dependencies for identity, internal-call checks and shared services."""

import hmac
from typing import Annotated

from fastapi import Depends, HTTPException, Request

from vinho.config import get_service_key
from vinho.core.errors import AuthenticationError
from vinho.pipeline.storage import ImageStorage, get_default_storage
from vinho.services.vector_index import VectorIndex, get_vector_index
from vinho.web.auth import ACCESS_TOKEN_COOKIE, decode_access_token


def _bearer_token(request: Request) -> str | None:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() == "bearer" and token.strip():
        return token.strip()
    return None


def get_current_user_id(request: Request) -> str:
    """Dependency resolving the calling user from a bearer token or cookie.

    Raises:
        HTTPException: 401 if no valid token is present.
    """
    token = _bearer_token(request) or request.cookies.get(ACCESS_TOKEN_COOKIE)
    if not token:
        raise HTTPException(
            status_code=401,
            detail={"error": "unauthorized", "message": "Missing access token"},
        )
    try:
        return decode_access_token(token)
    except AuthenticationError as e:
        raise HTTPException(
            status_code=401,
            detail={"error": "unauthorized", "message": e.reason},
        )


def require_service_key(request: Request) -> None:
    """Dependency restricting internal endpoints to callers holding the service key.

    Raises:
        HTTPException: 401 if the key is missing or wrong.
    """
    expected = get_service_key()
    token = _bearer_token(request)
    if not expected or not token or not hmac.compare_digest(token, expected):
        raise HTTPException(
            status_code=401,
            detail={"error": "unauthorized", "message": "Service key required"},
        )


def get_storage() -> ImageStorage:
    """Dependency providing label image storage."""
    return get_default_storage()


def get_index() -> VectorIndex:
    """Dependency providing the vector similarity index."""
    return get_vector_index()


# Type aliases for dependency injection
CurrentUser = Annotated[str, Depends(get_current_user_id)]
StorageDep = Annotated[ImageStorage, Depends(get_storage)]
IndexDep = Annotated[VectorIndex, Depends(get_index)]
