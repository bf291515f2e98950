"""
Construction of new audit log rows.

``build_audit_log`` is the only place an ``AuditLog`` is instantiated by the
application. It validates the caller payload, classifies the action and stamps
the derived fields; callers cannot supply those fields.
"""

from collections.abc import Mapping
from datetime import datetime
from typing import Any

from .models import AuditLog, AuditLogCreate
from .risk import RiskAssessment, classify


def coerce_payload(data: AuditLogCreate | Mapping[str, Any]) -> AuditLogCreate:
    """Validate a mapping into ``AuditLogCreate``; derived keys are discarded."""
    if isinstance(data, AuditLogCreate):
        return data
    return AuditLogCreate.model_validate(dict(data))


def build_audit_log(
    data: AuditLogCreate | Mapping[str, Any], *, timestamp: datetime
) -> tuple[AuditLog, RiskAssessment]:
    """Create an unsaved ``AuditLog`` with risk, sensitivity, retention and time filled in."""
    payload = coerce_payload(data)
    assessment = classify(payload.action, payload.action_category)
    actor = payload.actor
    target = payload.target

    row = AuditLog(
        action=payload.action,
        action_category=payload.action_category.value,
        description=payload.description,
        actor_type=actor.type.value,
        actor_id=actor.id,
        actor_email=actor.email,
        actor_name=actor.name,
        actor_role=actor.role,
        actor_ip=actor.ip,
        actor_user_agent=actor.user_agent,
        target_type=target.type.value if target else None,
        target_id=target.id if target else None,
        target_email=target.email if target else None,
        target_name=target.name if target else None,
        action_data=payload.action_data,
        old_values=payload.old_values,
        new_values=payload.new_values,
        changes=payload.changes,
        success=payload.success,
        error_message=payload.error_message,
        error_code=payload.error_code,
        session_id=payload.session_id,
        request_id=payload.request_id,
        correlation_id=payload.correlation_id,
        source=payload.source.value,
        compliance_flags=[flag.value for flag in payload.compliance_flags],
        timezone=payload.timezone,
        version=payload.version,
        geolocation=(
            payload.geolocation.model_dump(exclude_none=True) if payload.geolocation else None
        ),
        device_info=payload.device_info,
        browser_info=payload.browser_info,
        risk_level=assessment.risk_level.value,
        sensitive_action=assessment.sensitive,
        retention_category=assessment.retention_category.value,
        timestamp=timestamp,
        flagged=False,
        reviewed=False,
        archived=False,
    )
    return row, assessment
