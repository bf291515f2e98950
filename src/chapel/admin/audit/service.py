"""
Audit service for recording administrative actions and querying their history.
"""

from collections.abc import Callable, Mapping, Sequence
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any
from uuid import UUID

import structlog
from fastapi import Request
from sqlalchemy import ColumnElement, and_, case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth.core import UserInfo
from ..db import get_async_db, utc_now
from .alerts import AlertDispatcher
from .exceptions import AuditLogNotFoundError, AuditValidationError
from .identity import IdentityResolver
from .models import (
    ActionCategory,
    ActorType,
    AuditFilterParams,
    AuditLog,
    AuditLogCreate,
    AuditLogPage,
    AuditLogResponse,
    EventSource,
    Pagination,
    RiskLevel,
    TargetType,
)
from .records import build_audit_log
from .store import AuditLogStore, build_conditions

logger = structlog.get_logger(__name__)

SECURITY_RISK_LEVELS = (RiskLevel.HIGH, RiskLevel.CRITICAL)


def count_where(condition: ColumnElement[bool]) -> Any:
    return func.coalesce(func.sum(case((condition, 1), else_=0)), 0)


async def summarize(
    store: AuditLogStore, conditions: Sequence[ColumnElement[bool]] = ()
) -> dict[str, int]:
    """Summary counts over the rows matching ``conditions``."""
    query = select(
        func.count(),
        count_where(AuditLog.risk_level == RiskLevel.CRITICAL.value),
        count_where(AuditLog.risk_level == RiskLevel.HIGH.value),
        count_where(AuditLog.flagged.is_(True)),
        count_where(AuditLog.sensitive_action.is_(True)),
    ).select_from(AuditLog)
    if conditions:
        query = query.where(and_(*conditions))
    rows = await store.execute(query)
    total, critical, high, flagged, sensitive = rows[0]
    return {
        "total_logs": int(total or 0),
        "critical_events": int(critical or 0),
        "high_risk_events": int(high or 0),
        "flagged_events": int(flagged or 0),
        "sensitive_actions": int(sensitive or 0),
    }


class AuditService:
    """Service for audit logging, history queries and the review workflow."""

    def __init__(
        self,
        session: AsyncSession | None = None,
        *,
        dispatcher: AlertDispatcher | None = None,
        identity_resolver: IdentityResolver | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._session = session
        self.dispatcher = dispatcher or AlertDispatcher()
        self.identity_resolver = identity_resolver or IdentityResolver()
        self.clock = clock

    def _get_session(self):
        """Get database session or session factory."""
        if self._session:

            @asynccontextmanager
            async def session_context():
                yield self._session

            return session_context()
        return get_async_db()

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    async def log_action(
        self, data: AuditLogCreate | Mapping[str, Any]
    ) -> AuditLogResponse | None:
        """Record one audited action.

        Risk level, sensitivity, retention category and timestamp are derived
        here; caller-supplied values for them are ignored. Returns ``None``
        instead of raising when the record cannot be validated or stored, so
        the audited operation always proceeds. High/critical or sensitive
        records are passed to the alert dispatcher once before returning.
        """
        action = data.action if isinstance(data, AuditLogCreate) else data.get("action")
        try:
            row, assessment = build_audit_log(data, timestamp=self.clock())
            async with self._get_session() as session:
                row = await AuditLogStore(session).append(row)
                record = AuditLogResponse.model_validate(row)
        except Exception as exc:
            logger.error(
                "audit.log_action.failed",
                action=action,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return None

        logger.info(
            "audit.log_action.recorded",
            log_id=str(record.id),
            action=record.action,
            risk_level=record.risk_level.value,
            sensitive_action=record.sensitive_action,
        )

        if assessment.requires_alert:
            await self.dispatcher.notify(record)
        return record

    async def log_request_action(
        self,
        request: Request,
        user: UserInfo,
        action: str,
        action_category: ActionCategory,
        description: str,
        **kwargs: Any,
    ) -> AuditLogResponse | None:
        """Log an action performed by an authenticated admin through the API."""
        actor = {
            "type": ActorType.ADMIN,
            "id": user.user_id,
            "email": user.email,
            "name": user.name,
            "role": user.primary_role,
            "ip": request.client.host if request.client else None,
            "user_agent": request.headers.get("user-agent"),
        }
        request_id = getattr(request.state, "request_id", None) or request.headers.get(
            "x-request-id"
        )
        payload = {
            "action": action,
            "action_category": action_category,
            "description": description,
            "actor": actor,
            "request_id": request_id,
            "source": EventSource.API,
            **kwargs,
        }
        return await self.log_action(payload)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_logs(self, filters: AuditFilterParams) -> dict[str, Any]:
        """Filtered, sorted page of logs plus summary counts under the same filter."""
        async with self._get_session() as session:
            store = AuditLogStore(session)
            rows, total = await store.find(filters)
            summary = await summarize(store, build_conditions(filters))
            return {
                "logs": [AuditLogResponse.model_validate(row) for row in rows],
                "pagination": Pagination.build(filters.page, filters.per_page, total),
                "summary": summary,
            }

    async def get_log(self, log_id: UUID) -> AuditLogResponse:
        async with self._get_session() as session:
            row = await AuditLogStore(session).get(log_id)
            if row is None:
                raise AuditLogNotFoundError(log_id)
            return AuditLogResponse.model_validate(row)

    async def _page(self, filters: AuditFilterParams) -> AuditLogPage:
        async with self._get_session() as session:
            rows, total = await AuditLogStore(session).find(filters)
            return AuditLogPage(
                logs=[AuditLogResponse.model_validate(row) for row in rows],
                pagination=Pagination.build(filters.page, filters.per_page, total),
            )

    async def get_actor_history(
        self,
        actor_id: str,
        *,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        action_category: ActionCategory | None = None,
        risk_level: RiskLevel | None = None,
        page: int = 1,
        per_page: int = 50,
    ) -> dict[str, Any]:
        """All logs for one actor, newest first, with the actor's resolved identity."""
        filters = AuditFilterParams(
            actor_id=actor_id,
            start_date=start_date,
            end_date=end_date,
            action_category=action_category,
            risk_levels=[risk_level] if risk_level else None,
            page=page,
            per_page=per_page,
        )
        result = await self._page(filters)
        actor = await self.identity_resolver.resolve_actor(actor_id)
        return {
            "actor": actor,
            "logs": result.logs,
            "total": result.pagination.total,
            "pagination": result.pagination,
        }

    async def get_target_history(
        self,
        target_type: TargetType,
        target_id: str,
        *,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        action_category: ActionCategory | None = None,
        page: int = 1,
        per_page: int = 50,
    ) -> dict[str, Any]:
        """All logs against one target, newest first, with the target's resolved identity."""
        filters = AuditFilterParams(
            target_type=target_type,
            target_id=target_id,
            start_date=start_date,
            end_date=end_date,
            action_category=action_category,
            page=page,
            per_page=per_page,
        )
        result = await self._page(filters)
        target = await self.identity_resolver.resolve_target(target_type.value, target_id)
        return {
            "target": target,
            "logs": result.logs,
            "total": result.pagination.total,
            "pagination": result.pagination,
        }

    async def get_security_events(
        self,
        *,
        risk_levels: Sequence[RiskLevel] | None = None,
        flagged: bool | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        page: int = 1,
        per_page: int = 50,
    ) -> dict[str, Any]:
        """Logs at the given risk levels (default high and critical), optionally flagged.

        Apart from the match total, the summary counts cover every log in the
        date range regardless of the risk level and flag filters.
        """
        filters = AuditFilterParams(
            risk_levels=list(risk_levels) if risk_levels else list(SECURITY_RISK_LEVELS),
            flagged=flagged,
            start_date=start_date,
            end_date=end_date,
            page=page,
            per_page=per_page,
        )
        async with self._get_session() as session:
            store = AuditLogStore(session)
            rows, total = await store.find(filters)

            window = build_conditions(AuditFilterParams(start_date=start_date, end_date=end_date))
            high_or_critical = AuditLog.risk_level.in_(
                [level.value for level in SECURITY_RISK_LEVELS]
            )
            query = select(
                count_where(AuditLog.risk_level == RiskLevel.CRITICAL.value),
                count_where(AuditLog.risk_level == RiskLevel.HIGH.value),
                count_where(AuditLog.flagged.is_(True)),
                count_where(and_(high_or_critical, AuditLog.reviewed.is_(False))),
            ).select_from(AuditLog)
            if window:
                query = query.where(and_(*window))
            counts = (await store.execute(query))[0]

            return {
                "logs": [AuditLogResponse.model_validate(row) for row in rows],
                "pagination": Pagination.build(filters.page, filters.per_page, total),
                "summary": {
                    "total_security_events": total,
                    "critical_events": int(counts[0]),
                    "high_risk_events": int(counts[1]),
                    "flagged_events": int(counts[2]),
                    "unreviewed_events": int(counts[3]),
                },
            }

    # ------------------------------------------------------------------
    # Review workflow
    # ------------------------------------------------------------------

    async def flag_log(
        self, log_id: UUID, reason: str | None, reviewer_id: str
    ) -> AuditLogResponse:
        """Flag a log for follow-up; repeat calls overwrite reason, reviewer and time."""
        if reason is None or not reason.strip():
            raise AuditValidationError("Flag reason is required", field="reason")
        async with self._get_session() as session:
            row = await AuditLogStore(session).update_review_fields(
                log_id,
                flagged=True,
                flag_reason=reason.strip(),
                reviewed_by=reviewer_id,
                reviewed_at=self.clock(),
            )
            if row is None:
                raise AuditLogNotFoundError(log_id)
            logger.info("audit.log.flagged", log_id=str(log_id), reviewed_by=reviewer_id)
            return AuditLogResponse.model_validate(row)

    async def review_log(
        self, log_id: UUID, notes: str | None, reviewer_id: str
    ) -> AuditLogResponse:
        """Mark a log as reviewed; a prior flag is not required."""
        async with self._get_session() as session:
            row = await AuditLogStore(session).update_review_fields(
                log_id,
                reviewed=True,
                review_notes=notes,
                reviewed_by=reviewer_id,
                reviewed_at=self.clock(),
            )
            if row is None:
                raise AuditLogNotFoundError(log_id)
            logger.info("audit.log.reviewed", log_id=str(log_id), reviewed_by=reviewer_id)
            return AuditLogResponse.model_validate(row)


# Helper functions for common audit scenarios


async def log_system_action(
    action: str,
    action_category: ActionCategory,
    description: str,
    *,
    service: AuditService | None = None,
    **kwargs: Any,
) -> AuditLogResponse | None:
    """Log an action performed by the system itself (scheduled jobs, CLI)."""
    service = service or AuditService()
    payload = {
        "action": action,
        "action_category": action_category,
        "description": description,
        "actor": {"type": ActorType.SYSTEM, "id": "system", "name": "system"},
        "source": EventSource.SYSTEM,
        **kwargs,
    }
    return await service.log_action(payload)
