"""
Audit and compliance logging models for the Chapel admin backend.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Literal
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator
from sqlalchemy import JSON, Boolean, Index, String, Text, event, inspect
from sqlalchemy.dialects.postgresql import UUID as PostgresUUID
from sqlalchemy.orm import Mapped, mapped_column

from ..db import Base, TimestampMixin, UTCDateTime
from .exceptions import ImmutableAuditFieldError

DEFAULT_TIMEZONE = "UTC"
AUDIT_SCHEMA_VERSION = "1.0"


class ActionCategory(str, Enum):
    """Functional area an audited action belongs to."""

    AUTHENTICATION = "authentication"
    USER_MANAGEMENT = "user_management"
    ADMIN_MANAGEMENT = "admin_management"
    SYSTEM_SETTINGS = "system_settings"
    DASHBOARD = "dashboard"
    BIOMETRIC = "biometric"
    SECURITY = "security"
    DATA_EXPORT = "data_export"
    DATA_IMPORT = "data_import"
    BACKUP = "backup"
    MAINTENANCE = "maintenance"


class ActorType(str, Enum):
    ADMIN = "admin"
    USER = "user"
    SYSTEM = "system"


class TargetType(str, Enum):
    USER = "user"
    ADMIN = "admin"
    SETTINGS = "settings"
    SYSTEM = "system"
    DATA = "data"
    SESSION = "session"


class RiskLevel(str, Enum):
    """Severity of an audited action."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RetentionCategory(str, Enum):
    """How long a record is kept."""

    STANDARD = "standard"
    EXTENDED = "extended"
    PERMANENT = "permanent"


class EventSource(str, Enum):
    """Channel the audited action came through."""

    WEB = "web"
    MOBILE = "mobile"
    API = "api"
    SYSTEM = "system"
    CLI = "cli"


class ComplianceFlag(str, Enum):
    GDPR = "gdpr"
    HIPAA = "hipaa"
    SOX = "sox"
    PCI = "pci"
    CUSTOM = "custom"


class AuditLog(Base, TimestampMixin):
    """Append-only audit log table.

    Only the review and archive columns change after insert; everything else
    is write-once and guarded by a ``before_update`` listener.
    """

    __tablename__ = "audit_logs"

    id: Mapped[UUID] = mapped_column(
        PostgresUUID(as_uuid=True), primary_key=True, default=uuid4, index=True
    )

    # What
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    action_category: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)

    # Who (snapshot at write time)
    actor_type: Mapped[str] = mapped_column(String(20), nullable=False)
    actor_id: Mapped[str] = mapped_column(String(255), nullable=False)
    actor_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    actor_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    actor_role: Mapped[str | None] = mapped_column(String(100), nullable=True)
    actor_ip: Mapped[str | None] = mapped_column(String(45), nullable=True)
    actor_user_agent: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Against what
    target_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    target_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    target_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    target_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Payload
    action_data: Mapped[Any | None] = mapped_column(JSON, nullable=True)
    old_values: Mapped[Any | None] = mapped_column(JSON, nullable=True)
    new_values: Mapped[Any | None] = mapped_column(JSON, nullable=True)
    changes: Mapped[Any | None] = mapped_column(JSON, nullable=True)

    # Outcome
    success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_code: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Correlation
    session_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    request_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    correlation_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    source: Mapped[str] = mapped_column(String(20), nullable=False, default=EventSource.WEB.value)
    compliance_flags: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default=DEFAULT_TIMEZONE)
    version: Mapped[str] = mapped_column(String(20), nullable=False, default=AUDIT_SCHEMA_VERSION)

    # Client context
    geolocation: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    device_info: Mapped[str | None] = mapped_column(String(500), nullable=True)
    browser_info: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Derived at creation
    risk_level: Mapped[str] = mapped_column(String(20), nullable=False)
    sensitive_action: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    retention_category: Mapped[str] = mapped_column(String(20), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    # Review workflow
    flagged: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    flag_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    reviewed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    review_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    reviewed_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    # Retention
    archived: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    archived_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    # Indexes for common queries
    __table_args__ = (
        Index("ix_audit_logs_timestamp", "timestamp"),
        Index("ix_audit_logs_actor_timestamp", "actor_id", "timestamp"),
        Index("ix_audit_logs_action_timestamp", "action", "timestamp"),
        Index("ix_audit_logs_category_timestamp", "action_category", "timestamp"),
        Index("ix_audit_logs_success_timestamp", "success", "timestamp"),
        Index("ix_audit_logs_risk_timestamp", "risk_level", "timestamp"),
        Index("ix_audit_logs_sensitive_timestamp", "sensitive_action", "timestamp"),
        Index("ix_audit_logs_flagged_timestamp", "flagged", "timestamp"),
        Index("ix_audit_logs_actor_ip_timestamp", "actor_ip", "timestamp"),
        Index("ix_audit_logs_target_timestamp", "target_type", "target_id", "timestamp"),
        Index(
            "ix_audit_logs_actor_category_timestamp", "actor_id", "action_category", "timestamp"
        ),
        Index(
            "ix_audit_logs_target_category_timestamp", "target_id", "action_category", "timestamp"
        ),
        Index(
            "ix_audit_logs_risk_sensitive_timestamp", "risk_level", "sensitive_action", "timestamp"
        ),
    )


REVIEW_FIELDS: frozenset[str] = frozenset(
    {"flagged", "flag_reason", "reviewed", "review_notes", "reviewed_by", "reviewed_at"}
)
ARCHIVE_FIELDS: frozenset[str] = frozenset({"archived", "archived_at"})
MUTABLE_FIELDS: frozenset[str] = REVIEW_FIELDS | ARCHIVE_FIELDS | {"updated_at"}


@event.listens_for(AuditLog, "before_update")
def _reject_write_once_changes(mapper: Any, connection: Any, target: AuditLog) -> None:
    state = inspect(target)
    changed = [
        attr.key
        for attr in state.attrs
        if attr.key not in MUTABLE_FIELDS and attr.history.has_changes()
    ]
    if changed:
        raise ImmutableAuditFieldError(changed)


# Pydantic models for API


class ActorSnapshot(BaseModel):
    """Who performed the action, as known at write time."""

    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)

    type: ActorType
    id: str = Field(min_length=1, max_length=255)
    email: str | None = None
    name: str | None = None
    role: str | None = None
    ip: str | None = Field(default=None, max_length=45)
    user_agent: str | None = Field(default=None, max_length=500)


class TargetSnapshot(BaseModel):
    """What the action was performed against."""

    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)

    type: TargetType
    id: str | None = None
    email: str | None = None
    name: str | None = None


class Coordinates(BaseModel):
    model_config = ConfigDict(frozen=True)

    latitude: float | None = Field(default=None, ge=-90, le=90)
    longitude: float | None = Field(default=None, ge=-180, le=180)


class Geolocation(BaseModel):
    """Where the request came from, as resolved by the caller."""

    model_config = ConfigDict(str_strip_whitespace=True, frozen=True)

    country: str | None = None
    region: str | None = None
    city: str | None = None
    coordinates: Coordinates | None = None


class AuditLogCreate(BaseModel):
    """Caller payload for ``log_action``.

    Derived keys (risk_level, sensitive_action, retention_category, timestamp)
    are not fields of this model and are dropped if present.
    """

    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    action: str = Field(min_length=1, max_length=100)
    action_category: ActionCategory
    description: str = Field(min_length=1)
    actor: ActorSnapshot
    target: TargetSnapshot | None = None
    action_data: Any = None
    old_values: Any = None
    new_values: Any = None
    changes: Any = None
    success: bool = True
    error_message: str | None = None
    error_code: str | None = None
    session_id: str | None = None
    request_id: str | None = None
    correlation_id: str | None = None
    source: EventSource = EventSource.WEB
    compliance_flags: list[ComplianceFlag] = Field(default_factory=list)
    timezone: str = Field(default=DEFAULT_TIMEZONE, min_length=1, max_length=64)
    version: str = Field(default=AUDIT_SCHEMA_VERSION, min_length=1, max_length=20)
    geolocation: Geolocation | None = None
    device_info: str | None = Field(default=None, max_length=500)
    browser_info: str | None = Field(default=None, max_length=500)


def _row_to_payload(row: AuditLog) -> dict[str, Any]:
    target = None
    if row.target_type is not None:
        target = {
            "type": row.target_type,
            "id": row.target_id,
            "email": row.target_email,
            "name": row.target_name,
        }
    return {
        "id": row.id,
        "action": row.action,
        "action_category": row.action_category,
        "description": row.description,
        "actor": {
            "type": row.actor_type,
            "id": row.actor_id,
            "email": row.actor_email,
            "name": row.actor_name,
            "role": row.actor_role,
            "ip": row.actor_ip,
            "user_agent": row.actor_user_agent,
        },
        "target": target,
        "action_data": row.action_data,
        "old_values": row.old_values,
        "new_values": row.new_values,
        "changes": row.changes,
        "success": row.success,
        "error_message": row.error_message,
        "error_code": row.error_code,
        "session_id": row.session_id,
        "request_id": row.request_id,
        "correlation_id": row.correlation_id,
        "source": row.source,
        "compliance_flags": row.compliance_flags or [],
        "timezone": row.timezone,
        "version": row.version,
        "geolocation": row.geolocation,
        "device_info": row.device_info,
        "browser_info": row.browser_info,
        "risk_level": row.risk_level,
        "sensitive_action": row.sensitive_action,
        "retention_category": row.retention_category,
        "timestamp": row.timestamp,
        "flagged": row.flagged,
        "flag_reason": row.flag_reason,
        "reviewed": row.reviewed,
        "review_notes": row.review_notes,
        "reviewed_by": row.reviewed_by,
        "reviewed_at": row.reviewed_at,
        "archived": row.archived,
        "archived_at": row.archived_at,
        "created_at": row.created_at,
        "updated_at": row.updated_at,
    }


class AuditLogResponse(BaseModel):
    """Read-only view of a persisted audit log."""

    model_config = ConfigDict(frozen=True)

    id: UUID
    action: str
    action_category: ActionCategory
    description: str
    actor: ActorSnapshot
    target: TargetSnapshot | None = None
    action_data: Any = None
    old_values: Any = None
    new_values: Any = None
    changes: Any = None
    success: bool
    error_message: str | None = None
    error_code: str | None = None
    session_id: str | None = None
    request_id: str | None = None
    correlation_id: str | None = None
    source: EventSource
    compliance_flags: list[ComplianceFlag] = Field(default_factory=list)
    timezone: str = DEFAULT_TIMEZONE
    version: str = AUDIT_SCHEMA_VERSION
    geolocation: Geolocation | None = None
    device_info: str | None = None
    browser_info: str | None = None
    risk_level: RiskLevel
    sensitive_action: bool
    retention_category: RetentionCategory
    timestamp: datetime
    flagged: bool = False
    flag_reason: str | None = None
    reviewed: bool = False
    review_notes: str | None = None
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None
    archived: bool = False
    archived_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @model_validator(mode="before")
    @classmethod
    def _from_row(cls, data: Any) -> Any:
        if isinstance(data, AuditLog):
            return _row_to_payload(data)
        return data


class Pagination(BaseModel):
    """Page metadata for list responses."""

    page: int
    per_page: int
    total: int
    pages: int
    has_next: bool
    has_prev: bool

    @classmethod
    def build(cls, page: int, per_page: int, total: int) -> "Pagination":
        pages = (total + per_page - 1) // per_page if per_page else 0
        return cls(
            page=page,
            per_page=per_page,
            total=total,
            pages=pages,
            has_next=page < pages,
            has_prev=page > 1,
        )


class AuditLogPage(BaseModel):
    """A page of audit logs."""

    logs: list[AuditLogResponse]
    pagination: Pagination


SortField = Literal[
    "timestamp", "action", "action_category", "risk_level", "actor_email", "success"
]


class AuditFilterParams(BaseModel):
    """Filters for audit log queries; all given conditions are ANDed."""

    model_config = ConfigDict(str_strip_whitespace=True, validate_assignment=True, extra="forbid")

    start_date: datetime | None = None
    end_date: datetime | None = None
    actor_id: str | None = None
    actor_type: ActorType | None = None
    target_id: str | None = None
    target_type: TargetType | None = None
    action: str | None = None
    action_category: ActionCategory | None = None
    risk_levels: list[RiskLevel] | None = None
    success: bool | None = None
    flagged: bool | None = None
    reviewed: bool | None = None
    sensitive_action: bool | None = None
    actor_ip: str | None = None
    archived: bool | None = None
    page: int = Field(default=1, ge=1)
    per_page: int = Field(default=50, ge=1, le=1000)
    sort_by: SortField = "timestamp"
    sort_order: Literal["asc", "desc"] = "desc"

    @model_validator(mode="after")
    def _check_date_range(self) -> "AuditFilterParams":
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must not be earlier than start_date")
        return self

    def active_filters(self) -> dict[str, Any]:
        """Filter values that were set, for echoing back in exports and reports."""
        return self.model_dump(
            mode="json",
            exclude_none=True,
            exclude={"page", "per_page", "sort_by", "sort_order"},
        )


class FlagRequest(BaseModel):
    """Body for flagging a log."""

    model_config = ConfigDict(str_strip_whitespace=True)

    reason: str | None = None


class ReviewRequest(BaseModel):
    """Body for reviewing a log."""

    model_config = ConfigDict(str_strip_whitespace=True)

    notes: str | None = None


class CleanupRequest(BaseModel):
    """Body for retention cleanup."""

    older_than_days: int = Field(default=365, ge=1)
    action: str = "archive"
    preserve_critical: bool = True
