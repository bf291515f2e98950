"""
Tests for settings loading and validation.
"""

import pytest
from pydantic import ValidationError

from chapel.admin.settings import Environment, Settings, get_settings, reset_settings


def test_nested_environment_variables(monkeypatch):
    monkeypatch.setenv("AUDIT__ALERT_TIMEOUT_SECONDS", "5")
    monkeypatch.setenv("AUDIT__LOG_SELF_ACCESS", "false")
    monkeypatch.setenv("RATE_LIMIT__SENSITIVE_OPERATIONS", "10/hour")

    loaded = Settings()

    assert loaded.audit.alert_timeout_seconds == 5.0
    assert loaded.audit.log_self_access is False
    assert loaded.rate_limit.sensitive_operations == "10/hour"


def test_environment_is_case_insensitive():
    assert Settings(environment="STAGING").environment == Environment.STAGING


def test_production_requires_jwt_secret(monkeypatch):
    monkeypatch.delenv("JWT__SECRET_KEY", raising=False)

    with pytest.raises(ValidationError, match="JWT__SECRET_KEY"):
        Settings(environment="production")

    assert Settings(environment="production", jwt={"secret_key": "s3cret"}).is_production


def test_cleanup_action_is_restricted():
    with pytest.raises(ValidationError):
        Settings(audit={"cleanup_action": "shred"})


def test_reset_settings_reloads():
    first = get_settings()
    reset_settings()
    try:
        assert get_settings() is not first
    finally:
        reset_settings()
