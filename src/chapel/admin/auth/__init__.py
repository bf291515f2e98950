"""
Chapel admin auth: bearer-token verification and admin role checks.
"""

from .core import AdminRole, JWTService, UserInfo, get_current_user, jwt_service
from .dependencies import (
    require_admin_or_above,
    require_any_admin,
    require_roles,
    require_super_admin,
)

__all__ = [
    "AdminRole",
    "JWTService",
    "UserInfo",
    "get_current_user",
    "jwt_service",
    "require_roles",
    "require_any_admin",
    "require_admin_or_above",
    "require_super_admin",
]
