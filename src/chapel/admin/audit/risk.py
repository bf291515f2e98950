"""
Risk classification for audited actions.

Risk level and sensitivity are pure functions of the action name. The
category argument is accepted but does not influence the result.
"""

from dataclasses import dataclass

from .models import ActionCategory, RetentionCategory, RiskLevel

CRITICAL_ACTIONS: frozenset[str] = frozenset(
    {
        "hard_delete_user",
        "reset_all_settings",
        "import_settings",
        "create_super_admin",
        "delete_admin",
        "system_shutdown",
    }
)

HIGH_RISK_ACTIONS: frozenset[str] = frozenset(
    {
        "update_user_status",
        "reset_user_password",
        "delete_user",
        "update_admin_role",
        "update_system_settings",
        "bulk_user_operation",
    }
)

MEDIUM_RISK_ACTIONS: frozenset[str] = frozenset(
    {
        "verify_user",
        "create_admin",
        "update_settings_category",
        "export_settings",
        "view_system_settings",
    }
)

SENSITIVE_ACTIONS: frozenset[str] = frozenset(
    {
        "reset_user_password",
        "view_user_details",
        "export_settings",
        "view_system_settings",
        "update_system_settings",
        "create_admin",
        "update_admin_role",
        "delete_admin",
        "bulk_user_operation",
    }
)


@dataclass(frozen=True)
class RiskAssessment:
    """Outcome of classifying one action."""

    risk_level: RiskLevel
    sensitive: bool

    @property
    def retention_category(self) -> RetentionCategory:
        return derive_retention(self.risk_level, self.sensitive)

    @property
    def requires_alert(self) -> bool:
        return requires_alert(self.risk_level, self.sensitive)


def classify(action: str, category: ActionCategory | str | None = None) -> RiskAssessment:
    """Classify an action by exact name; unknown actions are low and not sensitive."""
    if action in CRITICAL_ACTIONS:
        level = RiskLevel.CRITICAL
    elif action in HIGH_RISK_ACTIONS:
        level = RiskLevel.HIGH
    elif action in MEDIUM_RISK_ACTIONS:
        level = RiskLevel.MEDIUM
    else:
        level = RiskLevel.LOW
    return RiskAssessment(risk_level=level, sensitive=action in SENSITIVE_ACTIONS)


def derive_retention(risk_level: RiskLevel, sensitive: bool) -> RetentionCategory:
    """critical -> permanent, high or sensitive -> extended, otherwise standard."""
    if risk_level == RiskLevel.CRITICAL:
        return RetentionCategory.PERMANENT
    if risk_level == RiskLevel.HIGH or sensitive:
        return RetentionCategory.EXTENDED
    return RetentionCategory.STANDARD


def requires_alert(risk_level: RiskLevel, sensitive: bool) -> bool:
    return sensitive or risk_level in (RiskLevel.HIGH, RiskLevel.CRITICAL)


__all__ = [
    "CRITICAL_ACTIONS",
    "HIGH_RISK_ACTIONS",
    "MEDIUM_RISK_ACTIONS",
    "SENSITIVE_ACTIONS",
    "RiskAssessment",
    "classify",
    "derive_retention",
    "requires_alert",
]
