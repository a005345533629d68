# geomayora/services/users.py
import logging
from typing import Callable, List, Optional

from passlib.context import CryptContext

from geomayora.db import RecordStore
from geomayora.errors import PermissionDenied
from geomayora.schemas import User, UserCreate, UserPermissions

logger = logging.getLogger(__name__)

# pbkdf2_sha256 is pure passlib and has no password length limit
pwd_ctx = CryptContext(schemes=["pbkdf2_sha256"], default="pbkdf2_sha256")


def hash_password(plain: str) -> str:
    return pwd_ctx.hash(plain)


def verify_password(plain: str, hashed: str) -> bool:
    if not hashed:
        return False
    try:
        return pwd_ctx.verify(plain, hashed)
    except (ValueError, TypeError):
        # unknown or malformed hash -> treat as invalid
        return False


class UserService:
    def __init__(
        self,
        store: RecordStore,
        superadmin_username: str,
        hasher: Callable[[str], str] = hash_password,
    ):
        self.store = store
        self.superadmin_username = superadmin_username
        self.hasher = hasher

    async def bootstrap_super_admin(self, email: str, password: str) -> bool:
        """Create the privileged account on first run. Returns True if created."""
        existing = await self.store.get_user(self.superadmin_username)
        if existing:
            return False

        logger.info("Initializing super admin %r", self.superadmin_username)
        await self.store.save_user(User(
            username=self.superadmin_username,
            email=email,
            hashed_password=self.hasher(password),
            is_super_admin=True,
            permissions=UserPermissions(can_add=True, can_edit=True, can_delete=True, can_export_import=True),
        ))
        return True

    async def create_user(self, payload: UserCreate) -> User:
        if payload.username == self.superadmin_username:
            raise PermissionDenied("super_admin", "cannot overwrite the super admin")
        user = User(
            username=payload.username,
            email=str(payload.email),
            hashed_password=self.hasher(payload.password),
            permissions=payload.permissions,
            is_super_admin=False,
        )
        await self.store.save_user(user)
        logger.info("User %r saved", user.username)
        return user

    async def list_users(self) -> List[User]:
        return await self.store.list_users()

    async def get_user(self, username: str) -> Optional[User]:
        return await self.store.get_user(username)

    async def delete_user(self, username: str) -> None:
        if username == self.superadmin_username:
            raise PermissionDenied("super_admin", "the super admin cannot be deleted")
        existing = await self.store.get_user(username)
        if existing and existing.is_super_admin:
            raise PermissionDenied("super_admin", "the super admin cannot be deleted")
        await self.store.delete_user(username)

    async def authenticate(self, username: str, password: str) -> Optional[User]:
        """Login by username or e-mail."""
        user = await self.store.get_user(username)
        if user is None and "@" in username:
            user = next((u for u in await self.store.list_users() if u.email == username), None)
        if user is None or not verify_password(password, user.hashed_password):
            return None
        return user
