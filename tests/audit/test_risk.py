"""
Tests for action risk classification.
"""

import pytest

from chapel.admin.audit.models import ActionCategory, RetentionCategory, RiskLevel
from chapel.admin.audit.risk import (
    CRITICAL_ACTIONS,
    HIGH_RISK_ACTIONS,
    MEDIUM_RISK_ACTIONS,
    SENSITIVE_ACTIONS,
    classify,
    derive_retention,
)


class TestClassify:
    @pytest.mark.parametrize("action", sorted(CRITICAL_ACTIONS))
    def test_critical_actions(self, action):
        assessment = classify(action)
        assert assessment.risk_level == RiskLevel.CRITICAL
        assert assessment.retention_category == RetentionCategory.PERMANENT
        assert assessment.requires_alert

    def test_high_risk_sensitive_action(self):
        assessment = classify("reset_user_password")
        assert assessment.risk_level == RiskLevel.HIGH
        assert assessment.sensitive is True
        assert assessment.retention_category == RetentionCategory.EXTENDED

    def test_medium_sensitive_action_is_extended(self):
        assessment = classify("view_system_settings", ActionCategory.SYSTEM_SETTINGS)
        assert assessment.risk_level == RiskLevel.MEDIUM
        assert assessment.sensitive is True
        assert assessment.retention_category == RetentionCategory.EXTENDED
        assert assessment.requires_alert

    def test_medium_action_not_sensitive(self):
        assessment = classify("verify_user")
        assert assessment.risk_level == RiskLevel.MEDIUM
        assert assessment.sensitive is False
        assert assessment.retention_category == RetentionCategory.STANDARD
        assert not assessment.requires_alert

    def test_low_sensitive_action(self):
        assessment = classify("view_user_details")
        assert assessment.risk_level == RiskLevel.LOW
        assert assessment.sensitive is True
        assert assessment.retention_category == RetentionCategory.EXTENDED

    def test_unknown_action_defaults_low(self):
        assessment = classify("foo_bar", ActionCategory.DASHBOARD)
        assert assessment.risk_level == RiskLevel.LOW
        assert assessment.sensitive is False
        assert assessment.retention_category == RetentionCategory.STANDARD
        assert not assessment.requires_alert

    def test_match_is_exact(self):
        assert classify("Hard_Delete_User").risk_level == RiskLevel.LOW
        assert classify("hard_delete_user_v2").risk_level == RiskLevel.LOW

    def test_category_does_not_change_result(self):
        for category in ActionCategory:
            assert classify("delete_user", category).risk_level == RiskLevel.HIGH

    def test_tiers_are_disjoint(self):
        assert not CRITICAL_ACTIONS & HIGH_RISK_ACTIONS
        assert not CRITICAL_ACTIONS & MEDIUM_RISK_ACTIONS
        assert not HIGH_RISK_ACTIONS & MEDIUM_RISK_ACTIONS
        assert "delete_admin" in CRITICAL_ACTIONS & SENSITIVE_ACTIONS


def test_derive_retention_table():
    assert derive_retention(RiskLevel.CRITICAL, False) == RetentionCategory.PERMANENT
    assert derive_retention(RiskLevel.CRITICAL, True) == RetentionCategory.PERMANENT
    assert derive_retention(RiskLevel.HIGH, False) == RetentionCategory.EXTENDED
    assert derive_retention(RiskLevel.LOW, True) == RetentionCategory.EXTENDED
    assert derive_retention(RiskLevel.MEDIUM, False) == RetentionCategory.STANDARD
