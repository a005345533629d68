# geomayora/services/access.py
from dataclasses import dataclass, field
from typing import Optional

from geomayora.errors import PermissionDenied
from geomayora.schemas import User, UserPermissions

CAN_ADD = "can_add"
CAN_EDIT = "can_edit"
CAN_DELETE = "can_delete"
CAN_EXPORT_IMPORT = "can_export_import"

CAPABILITIES = (CAN_ADD, CAN_EDIT, CAN_DELETE, CAN_EXPORT_IMPORT)


@dataclass(frozen=True)
class AccessContext:
    """Capability token for one authenticated caller."""

    username: str
    permissions: UserPermissions = field(default_factory=UserPermissions)
    is_super_admin: bool = False

    @classmethod
    def for_user(cls, user: User) -> "AccessContext":
        return cls(username=user.username, permissions=user.permissions, is_super_admin=user.is_super_admin)

    def can(self, capability: str) -> bool:
        if capability not in CAPABILITIES:
            raise ValueError(f"unknown capability {capability!r}")
        return self.is_super_admin or bool(getattr(self.permissions, capability))


def require(ctx: Optional[AccessContext], capability: str) -> AccessContext:
    """Gate in front of the store: raises before any store call is made."""
    if ctx is None:
        raise PermissionDenied(capability, "login required")
    if not ctx.can(capability):
        raise PermissionDenied(capability)
    return ctx


def require_super_admin(ctx: Optional[AccessContext]) -> AccessContext:
    if ctx is None:
        raise PermissionDenied("super_admin", "login required")
    if not ctx.is_super_admin:
        raise PermissionDenied("super_admin", "super admin access required")
    return ctx
