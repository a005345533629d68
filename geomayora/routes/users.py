# geomayora/routes/users.py
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from geomayora.errors import PermissionDenied, TransientBackendError
from geomayora.routes.auth import get_current_user
from geomayora.schemas import UserCreate, UserPublic
from geomayora.services.access import AccessContext, require_super_admin
from geomayora.services.users import UserService

router = APIRouter(tags=["users"])
logger = logging.getLogger(__name__)


def _users(request: Request) -> UserService:
    return request.app.state.users


def _admin_only(ctx: AccessContext = Depends(get_current_user)) -> AccessContext:
    try:
        return require_super_admin(ctx)
    except PermissionDenied:
        raise HTTPException(status_code=403, detail="Super admin access required")


@router.get("/users")
async def list_users(request: Request, ctx: AccessContext = Depends(_admin_only)):
    try:
        users = await _users(request).list_users()
    except TransientBackendError as e:
        logger.exception("list_users failed")
        raise HTTPException(status_code=503, detail=str(e))
    return [UserPublic.from_user(u).model_dump(by_alias=True) for u in users]


@router.post("/users")
async def create_user(payload: UserCreate, request: Request, ctx: AccessContext = Depends(_admin_only)):
    """Create or overwrite a staff account with the given permissions."""
    try:
        user = await _users(request).create_user(payload)
    except PermissionDenied as e:
        raise HTTPException(status_code=403, detail=str(e))
    except TransientBackendError as e:
        logger.exception("create_user failed for %s", payload.username)
        raise HTTPException(status_code=503, detail=str(e))
    return {"success": True, "user": UserPublic.from_user(user).model_dump(by_alias=True)}


@router.delete("/users/{username}")
async def delete_user(username: str, request: Request, ctx: AccessContext = Depends(_admin_only)):
    try:
        await _users(request).delete_user(username)
    except PermissionDenied as e:
        raise HTTPException(status_code=403, detail=str(e))
    except TransientBackendError as e:
        logger.exception("delete_user failed for %s", username)
        raise HTTPException(status_code=503, detail=str(e))
    return Response(status_code=204)
