"""
Audit log retention: archiving or purging old records.

Cleanup is an explicit, admin-triggered batch operation. It is the only path
through which audit logs are archived or deleted.
"""

from collections.abc import Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import get_async_db, utc_now
from ..settings import settings
from .exceptions import AuditValidationError
from .models import ActionCategory, AuditLog, RiskLevel
from .service import AuditService, log_system_action
from .store import AuditLogStore

logger = structlog.get_logger(__name__)


class CleanupAction(str, Enum):
    ARCHIVE = "archive"
    DELETE = "delete"


def parse_cleanup_action(value: str | CleanupAction) -> CleanupAction:
    try:
        return CleanupAction(value)
    except ValueError as exc:
        raise AuditValidationError(
            'Invalid cleanup action. Must be "archive" or "delete"', field="action", value=value
        ) from exc


@dataclass
class AuditRetentionPolicy:
    """Defaults for cleanup runs that do not specify their own parameters."""

    older_than_days: int = 365
    action: CleanupAction = CleanupAction.ARCHIVE
    preserve_critical: bool = True

    @classmethod
    def from_settings(cls) -> "AuditRetentionPolicy":
        return cls(
            older_than_days=settings.audit.cleanup_older_than_days,
            action=parse_cleanup_action(settings.audit.cleanup_action),
            preserve_critical=settings.audit.cleanup_preserve_critical,
        )


class AuditRetentionService:
    """Service for archiving and purging audit logs."""

    def __init__(
        self,
        session: AsyncSession | None = None,
        *,
        policy: AuditRetentionPolicy | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._session = session
        self.policy = policy or AuditRetentionPolicy()
        self.clock = clock

    def _get_session(self):
        if self._session:

            @asynccontextmanager
            async def session_context():
                yield self._session

            return session_context()
        return get_async_db()

    async def cleanup(
        self,
        *,
        older_than_days: int | None = None,
        action: CleanupAction | str | None = None,
        preserve_critical: bool | None = None,
    ) -> dict[str, Any]:
        """
        Archive or delete logs older than the threshold.

        Args:
            older_than_days: Age threshold in days
            action: ``archive`` or ``delete``
            preserve_critical: Leave critical-risk logs untouched

        Returns:
            The action taken, the number of rows actually affected and the cutoff
        """
        if older_than_days is None:
            older_than_days = self.policy.older_than_days
        if older_than_days < 0:
            raise AuditValidationError(
                "older_than_days must not be negative",
                field="older_than_days",
                value=older_than_days,
            )
        cleanup_action = parse_cleanup_action(action or self.policy.action)
        if preserve_critical is None:
            preserve_critical = self.policy.preserve_critical

        now = self.clock()
        cutoff = now - timedelta(days=older_than_days)
        conditions = [AuditLog.timestamp < cutoff]
        if preserve_critical:
            conditions.append(AuditLog.risk_level != RiskLevel.CRITICAL.value)

        async with self._get_session() as session:
            store = AuditLogStore(session)
            if cleanup_action == CleanupAction.DELETE:
                affected = await store.delete_where(conditions)
            else:
                affected = await store.archive_where(conditions, archived_at=now)

        logger.info(
            "audit.retention.cleanup",
            action=cleanup_action.value,
            older_than_days=older_than_days,
            preserve_critical=preserve_critical,
            affected=affected,
        )
        return {
            "action": cleanup_action.value,
            "older_than_days": older_than_days,
            "preserve_critical": preserve_critical,
            "cleaned_up_count": affected,
            "cutoff_date": cutoff.isoformat(),
        }

    async def get_retention_statistics(self) -> dict[str, Any]:
        """Counts by retention category and risk level, archived count and date range."""
        async with self._get_session() as session:
            store = AuditLogStore(session)
            by_retention = await store.execute(
                select(AuditLog.retention_category, func.count()).group_by(
                    AuditLog.retention_category
                )
            )
            by_risk = await store.execute(
                select(AuditLog.risk_level, func.count()).group_by(AuditLog.risk_level)
            )
            oldest, newest = (
                await store.execute(
                    select(func.min(AuditLog.timestamp), func.max(AuditLog.timestamp))
                )
            )[0]
            return {
                "total_records": await store.count(),
                "archived_records": await store.count([AuditLog.archived.is_(True)]),
                "by_retention_category": {key: int(value) for key, value in by_retention},
                "by_risk_level": {key: int(value) for key, value in by_risk},
                "oldest_record": oldest.isoformat() if oldest else None,
                "newest_record": newest.isoformat() if newest else None,
            }


async def cleanup_audit_logs_task(
    retention_service: AuditRetentionService | None = None,
    audit_service: AuditService | None = None,
) -> dict[str, Any]:
    """
    Scheduled task to run audit log cleanup with the configured defaults.

    The run itself is recorded in the audit log with the system as actor.
    """
    service = retention_service or AuditRetentionService(
        policy=AuditRetentionPolicy.from_settings()
    )
    try:
        stats_before = await service.get_retention_statistics()
        logger.info("audit.retention.before_cleanup", stats=stats_before)
        results = await service.cleanup()
    except Exception as e:
        logger.error("audit.retention.cleanup_failed", error=str(e), exc_info=True)
        raise

    await log_system_action(
        "cleanup_audit_logs",
        ActionCategory.MAINTENANCE,
        f"Scheduled audit log cleanup ({results['action']}): {results['cleaned_up_count']} logs",
        service=audit_service,
        action_data=results,
    )
    return results


__all__ = [
    "CleanupAction",
    "AuditRetentionPolicy",
    "AuditRetentionService",
    "cleanup_audit_logs_task",
    "parse_cleanup_action",
]
