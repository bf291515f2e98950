"""
Tests for the sensitive-operation rate limiter.
"""

from chapel.admin.rate_limiting import SensitiveOperationLimiter
from chapel.admin.settings import Settings


def test_window_exhaustion_is_per_admin_and_path():
    limiter = SensitiveOperationLimiter(limit="2/minute")

    assert limiter.hit("admin-1", "/flag")
    assert limiter.hit("admin-1", "/flag")
    assert not limiter.hit("admin-1", "/flag")

    assert limiter.hit("admin-2", "/flag")
    assert limiter.hit("admin-1", "/review")
    assert 1 <= limiter.retry_after("admin-1", "/flag") <= 60


def test_disabled_limiter_always_allows():
    limiter = SensitiveOperationLimiter(limit="1/minute", enabled=False)

    assert all(limiter.hit("admin-1", "/flag") for _ in range(5))


def test_reset_clears_windows():
    limiter = SensitiveOperationLimiter(limit="1/minute")
    limiter.hit("admin-1", "/flag")

    limiter.reset()

    assert limiter.hit("admin-1", "/flag")


def test_from_settings():
    settings = Settings(rate_limit={"sensitive_operations": "3/hour", "enabled": False})

    limiter = SensitiveOperationLimiter.from_settings(settings)

    assert limiter.item.amount == 3
    assert limiter.enabled is False
