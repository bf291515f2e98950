"""
Audit and compliance logging for the Chapel admin backend.

Every sensitive administrative action produces exactly one immutable audit
log. Risk level, sensitivity and retention category are derived from the
action name when the log is written; high-risk and sensitive actions are
passed to the security alert dispatcher.

Usage Examples:

    # Log an action from a collaborator
    from chapel.admin.audit import AuditService, ActionCategory

    service = AuditService(session)
    await service.log_action(
        {
            "action": "update_user_status",
            "action_category": ActionCategory.USER_MANAGEMENT,
            "description": "Suspended member account",
            "actor": {"type": "admin", "id": admin_id, "email": admin_email},
            "target": {"type": "user", "id": member_id},
            "old_values": {"status": "active"},
            "new_values": {"status": "suspended"},
        }
    )

    # Review workflow
    await service.flag_log(log_id, "Unexpected bulk change", reviewer_id=admin_id)
    await service.review_log(log_id, "Confirmed with unit leader", reviewer_id=admin_id)
"""

from .alerts import (
    AlertDispatcher,
    AlertHook,
    LoggingAlertHook,
    WebhookAlertHook,
    build_alert_dispatcher,
)
from .exceptions import (
    AuditError,
    AuditLogNotFoundError,
    AuditPersistenceError,
    AuditValidationError,
    ImmutableAuditFieldError,
)
from .identity import (
    HttpIdentityDirectory,
    IdentityDirectory,
    IdentityResolver,
    InMemoryIdentityDirectory,
    build_identity_resolver,
)
from .middleware import AuditContextMiddleware
from .models import (
    ActionCategory,
    ActorSnapshot,
    ActorType,
    AuditFilterParams,
    AuditLog,
    AuditLogCreate,
    AuditLogResponse,
    ComplianceFlag,
    EventSource,
    RetentionCategory,
    RiskLevel,
    TargetSnapshot,
    TargetType,
)
from .records import build_audit_log
from .reporting import AuditReportingService, ExportFormat, Granularity, compliance_score
from .retention import AuditRetentionService, CleanupAction, cleanup_audit_logs_task
from .risk import RiskAssessment, classify
from .router import router as audit_router
from .service import AuditService, log_system_action
from .store import AuditLogStore

__all__ = [
    # Models and enums
    "ActionCategory",
    "ActorSnapshot",
    "ActorType",
    "AuditFilterParams",
    "AuditLog",
    "AuditLogCreate",
    "AuditLogResponse",
    "ComplianceFlag",
    "EventSource",
    "RetentionCategory",
    "RiskLevel",
    "TargetSnapshot",
    "TargetType",
    # Classification and construction
    "RiskAssessment",
    "classify",
    "build_audit_log",
    # Persistence and services
    "AuditLogStore",
    "AuditService",
    "AuditReportingService",
    "AuditRetentionService",
    "CleanupAction",
    "ExportFormat",
    "Granularity",
    "compliance_score",
    "cleanup_audit_logs_task",
    "log_system_action",
    # Alerting
    "AlertHook",
    "AlertDispatcher",
    "LoggingAlertHook",
    "WebhookAlertHook",
    "build_alert_dispatcher",
    # Identity
    "IdentityDirectory",
    "InMemoryIdentityDirectory",
    "HttpIdentityDirectory",
    "IdentityResolver",
    "build_identity_resolver",
    # Errors
    "AuditError",
    "AuditValidationError",
    "AuditLogNotFoundError",
    "AuditPersistenceError",
    "ImmutableAuditFieldError",
    # Router and middleware
    "audit_router",
    "AuditContextMiddleware",
]
