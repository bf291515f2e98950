"""
Role-based access dependencies for FastAPI routes.
"""

from typing import Any

from fastapi import Depends, HTTPException, status

from .core import AdminRole, UserInfo, get_current_user

ANY_ADMIN_ROLES = (AdminRole.MODERATOR, AdminRole.ADMIN, AdminRole.SUPER_ADMIN)
ADMIN_OR_ABOVE_ROLES = (AdminRole.ADMIN, AdminRole.SUPER_ADMIN)


def require_roles(*roles: str | AdminRole) -> Any:
    """Require at least one of the given roles."""
    allowed = {role.value if isinstance(role, AdminRole) else role for role in roles}

    def check_roles(user: UserInfo = Depends(get_current_user)) -> UserInfo:
        if not allowed.intersection(user.roles):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient role permissions"
            )
        return user

    return check_roles


require_any_admin = require_roles(*ANY_ADMIN_ROLES)
require_admin_or_above = require_roles(*ADMIN_OR_ABOVE_ROLES)
require_super_admin = require_roles(AdminRole.SUPER_ADMIN)


__all__ = [
    "require_roles",
    "require_any_admin",
    "require_admin_or_above",
    "require_super_admin",
    "get_current_user",
    "UserInfo",
]
