"""
Bearer-token authentication for the admin API.

JWT signing and verification use Authlib. Token issuance lives with the
identity service; this module only needs to verify tokens, and to mint them
for tooling and tests.
"""

import secrets
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

import structlog
from authlib.jose import JoseError, JWTClaims, jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, ConfigDict, EmailStr, Field

from ..settings import settings

logger = structlog.get_logger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


class AdminRole(str, Enum):
    """Administrative roles, lowest to highest privilege."""

    MODERATOR = "moderator"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"


class TokenType(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"


class UserInfo(BaseModel):
    """Authenticated caller as described by its access token."""

    model_config = ConfigDict(extra="forbid")

    user_id: str
    email: EmailStr | None = None
    username: str | None = None
    name: str | None = None
    roles: list[str] = Field(default_factory=list)
    permissions: list[str] = Field(default_factory=list)

    @property
    def primary_role(self) -> str | None:
        """Highest admin role held, else the first role listed."""
        for role in (AdminRole.SUPER_ADMIN, AdminRole.ADMIN, AdminRole.MODERATOR):
            if role.value in self.roles:
                return role.value
        return self.roles[0] if self.roles else None


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


class JWTService:
    """Signs and verifies admin access tokens with a shared HMAC secret."""

    def __init__(self, secret: str | None = None, algorithm: str | None = None):
        self.secret = secret or settings.jwt.secret_key
        self.algorithm = algorithm or settings.jwt.algorithm
        self.header = {"alg": self.algorithm}

    def create_access_token(
        self,
        subject: str,
        additional_claims: dict[str, Any] | None = None,
        expire_minutes: int | None = None,
    ) -> str:
        """Mint an access token for ``subject`` (admin id)."""
        lifetime = timedelta(minutes=expire_minutes or settings.jwt.access_token_expire_minutes)
        claims = {**(additional_claims or {}), "sub": subject, "type": TokenType.ACCESS.value}
        return self._create_token(claims, lifetime)

    def _create_token(self, data: dict, expires_delta: timedelta) -> str:
        issued_at = datetime.now(UTC)
        payload = {
            **data,
            "iat": int(issued_at.timestamp()),
            "exp": int((issued_at + expires_delta).timestamp()),
            "iss": settings.jwt.issuer,
            "jti": secrets.token_urlsafe(16),
        }
        token = jwt.encode(self.header, payload, self.secret)
        return token.decode("utf-8") if isinstance(token, bytes) else token

    def verify_token(self, token: str, expected_type: TokenType | None = None) -> dict[str, Any]:
        """Decode ``token`` and check signature, expiry and (optionally) its type.

        Raises:
            HTTPException: 401 if the token is invalid, expired or of the wrong type
        """
        try:
            decoded: JWTClaims = jwt.decode(token, self.secret)
            decoded.validate()
        except JoseError as e:
            logger.info("auth.token.rejected", reason=str(e))
            raise _unauthorized(f"Invalid token: {e}") from e

        claims = dict(decoded)
        if expected_type and claims.get("type") != expected_type.value:
            raise _unauthorized(
                f"Invalid token type. Expected {expected_type.value}, got {claims.get('type')}"
            )
        return claims


jwt_service = JWTService()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> UserInfo:
    """FastAPI dependency resolving the Bearer token to a ``UserInfo``."""
    if not credentials or not credentials.credentials:
        raise _unauthorized("Not authenticated")

    claims = jwt_service.verify_token(credentials.credentials, TokenType.ACCESS)
    return claims_to_user_info(claims)


def claims_to_user_info(claims: dict) -> UserInfo:
    return UserInfo(
        user_id=str(claims.get("sub", "")),
        email=claims.get("email"),
        username=claims.get("username"),
        name=claims.get("name"),
        roles=list(claims.get("roles") or []),
        permissions=list(claims.get("permissions") or []),
    )


def create_access_token(user_id: str, **kwargs: Any) -> str:
    """Shortcut for ``jwt_service.create_access_token``."""
    return jwt_service.create_access_token(user_id, **kwargs)


__all__ = [
    "AdminRole",
    "TokenType",
    "UserInfo",
    "JWTService",
    "jwt_service",
    "bearer_scheme",
    "get_current_user",
    "claims_to_user_info",
    "create_access_token",
]
