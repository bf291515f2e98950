"""
Tests for JWT handling and role dependencies.
"""

from datetime import timedelta

import pytest
from fastapi import HTTPException

from chapel.admin.auth.core import (
    JWTService,
    TokenType,
    UserInfo,
    claims_to_user_info,
)
from chapel.admin.auth.dependencies import require_roles


@pytest.fixture
def service():
    return JWTService(secret="unit-test-secret", algorithm="HS256")


class TestJWTService:
    def test_round_trip_claims(self, service):
        token = service.create_access_token(
            "admin-1", additional_claims={"roles": ["admin"], "email": "ada@chapel.org"}
        )

        claims = service.verify_token(token, TokenType.ACCESS)

        assert claims["sub"] == "admin-1"
        assert claims["type"] == "access"
        assert claims["roles"] == ["admin"]

    def test_wrong_secret_rejected(self, service):
        token = JWTService(secret="other-secret", algorithm="HS256").create_access_token("x")

        with pytest.raises(HTTPException) as exc_info:
            service.verify_token(token)
        assert exc_info.value.status_code == 401

    def test_wrong_token_type_rejected(self, service):
        token = service._create_token(
            {"sub": "admin-1", "type": TokenType.REFRESH.value},
            expires_delta=timedelta(minutes=5),
        )

        with pytest.raises(HTTPException):
            service.verify_token(token, TokenType.ACCESS)

    def test_expired_token_rejected(self, service):
        token = service.create_access_token("admin-1", expire_minutes=-1)

        with pytest.raises(HTTPException):
            service.verify_token(token)


class TestUserInfo:
    def test_claims_to_user_info(self):
        user = claims_to_user_info(
            {"sub": "mod-1", "roles": ["moderator"], "email": "mod@chapel.org", "name": "Mo"}
        )

        assert user.user_id == "mod-1"
        assert user.primary_role == "moderator"

    def test_primary_role_prefers_highest(self):
        user = UserInfo(user_id="u", roles=["moderator", "super_admin", "admin"])
        assert user.primary_role == "super_admin"

    def test_primary_role_falls_back(self):
        assert UserInfo(user_id="u", roles=["member"]).primary_role == "member"
        assert UserInfo(user_id="u").primary_role is None


class TestRequireRoles:
    def test_allows_matching_role(self):
        check = require_roles("admin", "super_admin")
        user = UserInfo(user_id="a", roles=["admin"])

        assert check(user) is user

    def test_rejects_missing_role(self):
        check = require_roles("super_admin")

        with pytest.raises(HTTPException) as exc_info:
            check(UserInfo(user_id="a", roles=["admin"]))
        assert exc_info.value.status_code == 403
