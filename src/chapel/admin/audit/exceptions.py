"""
Audit subsystem exceptions.

Each error carries an HTTP status code, a machine-readable error code and
optional context so the API layer can render it without extra mapping.
"""

from typing import Any


class AuditError(Exception):
    """
    Base audit error with enhanced context.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code for API responses
        status_code: HTTP status code for this error type
        context: Additional context data about the error
        recovery_hint: Suggested action to resolve the error
    """

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        status_code: int = 400,
        context: dict[str, Any] | None = None,
        recovery_hint: str | None = None,
    ):
        self.message = message
        self.error_code = error_code or "AUDIT_ERROR"
        self.status_code = status_code
        self.context = context or {}
        self.recovery_hint = recovery_hint
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for API responses."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "status_code": self.status_code,
            "context": self.context,
            "recovery_hint": self.recovery_hint,
        }


class AuditValidationError(AuditError):
    """Malformed query parameters or missing required input."""

    def __init__(self, message: str, field: str | None = None, value: Any = None) -> None:
        context: dict[str, Any] = {}
        if field:
            context["field"] = field
        if value is not None:
            context["value"] = str(value)
        super().__init__(
            message,
            "AUDIT_VALIDATION_ERROR",
            status_code=400,
            context=context,
            recovery_hint="Correct the request parameters and try again",
        )


class AuditLogNotFoundError(AuditError):
    """Lookup by id yielded nothing."""

    def __init__(self, log_id: Any) -> None:
        super().__init__(
            "Audit log not found",
            "AUDIT_LOG_NOT_FOUND",
            status_code=404,
            context={"log_id": str(log_id)},
            recovery_hint="Verify the audit log ID",
        )


class AuditPersistenceError(AuditError):
    """The log store could not complete a read or write."""

    def __init__(self, message: str, operation: str | None = None) -> None:
        context = {"operation": operation} if operation else {}
        super().__init__(
            message,
            "AUDIT_PERSISTENCE_ERROR",
            status_code=500,
            context=context,
            recovery_hint="Check database connectivity and retry",
        )


class ImmutableAuditFieldError(AuditError):
    """Attempt to change a write-once field of a persisted audit log."""

    def __init__(self, fields: list[str]) -> None:
        super().__init__(
            f"Audit log fields are write-once: {', '.join(sorted(fields))}",
            "AUDIT_IMMUTABLE_FIELD",
            status_code=409,
            context={"fields": sorted(fields)},
            recovery_hint="Only review and archive fields may change after creation",
        )


__all__ = [
    "AuditError",
    "AuditValidationError",
    "AuditLogNotFoundError",
    "AuditPersistenceError",
    "ImmutableAuditFieldError",
]
