# geomayora/routes/auth.py
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, HTTPException, Request
from jose import JWTError, jwt
from pydantic import BaseModel, constr

from geomayora.config import Settings
from geomayora.errors import TransientBackendError
from geomayora.schemas import UserPublic
from geomayora.services.access import AccessContext
from geomayora.services.users import UserService

router = APIRouter(tags=["auth"])
logger = logging.getLogger(__name__)

ALGORITHM = "HS256"


# -----------------------------
# Models
# -----------------------------
class LoginIn(BaseModel):
    # username or e-mail
    username: constr(min_length=1, max_length=256)
    password: constr(min_length=1, max_length=256)


# -----------------------------
# Token helpers
# -----------------------------
def create_access_token(settings: Settings, data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.jwt_secret, algorithm=ALGORITHM)


def _users(request: Request) -> UserService:
    return request.app.state.users


def _settings(request: Request) -> Settings:
    return request.app.state.settings


async def get_access_context(request: Request) -> Optional[AccessContext]:
    """
    Resolve the bearer token into a capability token. No header -> None
    (anonymous read access); a bad or stale token -> 401.
    """
    auth: str = request.headers.get("Authorization") or ""
    if not auth:
        return None
    if not auth.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Missing auth token")

    token = auth.split(" ", 1)[1]
    try:
        payload = jwt.decode(token, _settings(request).jwt_secret, algorithms=[ALGORITHM])
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token")
    username = payload.get("sub")
    if username is None:
        raise HTTPException(status_code=401, detail="Invalid token")

    user = await _users(request).get_user(username)
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    return AccessContext.for_user(user)


async def get_current_user(request: Request) -> AccessContext:
    ctx = await get_access_context(request)
    if ctx is None:
        raise HTTPException(status_code=401, detail="Missing auth token")
    return ctx


# -----------------------------
# Routes
# -----------------------------
@router.post("/login")
async def login(payload: LoginIn, request: Request):
    try:
        user = await _users(request).authenticate(payload.username, payload.password)
    except TransientBackendError as e:
        logger.exception("login lookup failed for %s", payload.username)
        raise HTTPException(status_code=503, detail=str(e))
    if not user:
        raise HTTPException(status_code=401, detail="Invalid username or password")

    settings = _settings(request)
    token = create_access_token(settings, {"sub": user.username, "super": user.is_super_admin})
    return {
        "access_token": token,
        "token_type": "bearer",
        "expires_in": settings.access_token_expire_minutes * 60,
        "user": UserPublic.from_user(user).model_dump(by_alias=True),
    }


@router.get("/me")
async def me(request: Request):
    """Returns the currently authenticated user (based on bearer token)."""
    ctx = await get_current_user(request)
    user = await _users(request).get_user(ctx.username)
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    return {"user": UserPublic.from_user(user).model_dump(by_alias=True)}
