"""Account management routes."""

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from vinho.db.engine import get_session
from vinho.services.account_service import AccountService
from vinho.web.dependencies import CurrentUser, StorageDep

router = APIRouter(prefix="/api/account", tags=["account"])


@router.delete("")
async def delete_account(user_id: CurrentUser, storage: StorageDep) -> JSONResponse:
    """Erase the caller's account and everything it owns."""
    with get_session() as session:
        result = AccountService(session, storage).erase_user(user_id)

    return JSONResponse({"success": True, **result.to_dict()})
