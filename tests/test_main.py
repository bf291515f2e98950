"""
Tests for the application factory and health endpoint.
"""

from unittest.mock import AsyncMock, patch

from chapel.admin import get_version
from chapel.admin.audit.alerts import AlertDispatcher
from chapel.admin.audit.identity import IdentityResolver
from chapel.admin.main import create_application
from chapel.admin.rate_limiting import SensitiveOperationLimiter
from chapel.admin.settings import Settings


def test_application_collaborators(test_app):
    assert isinstance(test_app.state.alert_dispatcher, AlertDispatcher)
    assert isinstance(test_app.state.identity_resolver, IdentityResolver)
    assert isinstance(test_app.state.sensitive_limiter, SensitiveOperationLimiter)

    assert test_app.url_path_for("health_check") == "/health"
    assert test_app.url_path_for("list_audit_logs") == "/api/v1/audit/logs"
    assert test_app.url_path_for("cleanup_audit_logs") == "/api/v1/audit/cleanup"


def test_docs_disabled_in_production():
    app = create_application(
        Settings(
            environment="production", jwt={"secret_key": "prod-secret"}, cors={"enabled": False}
        )
    )

    assert app.docs_url is None
    assert app.redoc_url is None


class TestHealth:
    async def test_healthy(self, client):
        with patch(
            "chapel.admin.main.check_database_health", AsyncMock(return_value=True)
        ):
            response = await client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["database"] == "ok"
        assert body["environment"] == "test"

    async def test_degraded(self, client):
        with patch(
            "chapel.admin.main.check_database_health", AsyncMock(return_value=False)
        ):
            response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "degraded"
        assert response.json()["database"] == "unavailable"


def test_package_version_matches_default_settings():
    assert get_version() == Settings().app_version
