"""
Append-only persistence for audit logs.

The store is the only component that talks SQL for the audit subsystem.
Database failures surface as ``AuditPersistenceError``.
"""

from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import ColumnElement, Select, and_, asc, delete, desc, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .exceptions import AuditPersistenceError, ImmutableAuditFieldError
from .models import REVIEW_FIELDS, AuditFilterParams, AuditLog

logger = structlog.get_logger(__name__)

SORTABLE_COLUMNS = {
    "timestamp": AuditLog.timestamp,
    "action": AuditLog.action,
    "action_category": AuditLog.action_category,
    "risk_level": AuditLog.risk_level,
    "actor_email": AuditLog.actor_email,
    "success": AuditLog.success,
}


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _value(item: Any) -> Any:
    return getattr(item, "value", item)


def build_conditions(filters: AuditFilterParams) -> list[ColumnElement[bool]]:
    """Translate filter parameters into SQL conditions."""
    conditions: list[ColumnElement[bool]] = []

    if filters.start_date:
        conditions.append(AuditLog.timestamp >= filters.start_date)
    if filters.end_date:
        conditions.append(AuditLog.timestamp <= filters.end_date)

    if filters.actor_id:
        conditions.append(AuditLog.actor_id == filters.actor_id)
    if filters.actor_type:
        conditions.append(AuditLog.actor_type == filters.actor_type.value)
    if filters.target_id:
        conditions.append(AuditLog.target_id == filters.target_id)
    if filters.target_type:
        conditions.append(AuditLog.target_type == filters.target_type.value)
    if filters.actor_ip:
        conditions.append(AuditLog.actor_ip == filters.actor_ip)

    if filters.action:
        conditions.append(
            AuditLog.action.ilike(f"%{_escape_like(filters.action)}%", escape="\\")
        )
    if filters.action_category:
        conditions.append(AuditLog.action_category == filters.action_category.value)
    if filters.risk_levels:
        conditions.append(AuditLog.risk_level.in_([_value(level) for level in filters.risk_levels]))

    for name in ("success", "flagged", "reviewed", "sensitive_action", "archived"):
        flag = getattr(filters, name)
        if flag is not None:
            conditions.append(getattr(AuditLog, name).is_(flag))

    return conditions


class AuditLogStore:
    """Persistence operations over the ``audit_logs`` table."""

    def __init__(self, session: AsyncSession):
        self.session = session

    @property
    def dialect_name(self) -> str:
        return self.session.get_bind().dialect.name

    async def _fail(self, operation: str, exc: Exception) -> AuditPersistenceError:
        logger.error("audit.store.failed", operation=operation, error=str(exc))
        try:
            await self.session.rollback()
        except SQLAlchemyError as rollback_exc:
            logger.error("audit.store.rollback_failed", error=str(rollback_exc))
        return AuditPersistenceError(f"Audit log {operation} failed", operation=operation)

    async def append(self, row: AuditLog) -> AuditLog:
        """Insert a new row and return it refreshed from the database."""
        try:
            self.session.add(row)
            await self.session.commit()
            await self.session.refresh(row)
        except SQLAlchemyError as exc:
            raise await self._fail("append", exc) from exc
        return row

    async def get(self, log_id: UUID) -> AuditLog | None:
        try:
            result = await self.session.execute(
                select(AuditLog)
                .where(AuditLog.id == log_id)
                .execution_options(populate_existing=True)
            )
        except SQLAlchemyError as exc:
            raise await self._fail("get", exc) from exc
        return result.scalar_one_or_none()

    async def search(
        self,
        conditions: Sequence[ColumnElement[bool]] = (),
        *,
        sort_by: str = "timestamp",
        sort_order: str = "desc",
        offset: int = 0,
        limit: int | None = None,
    ) -> tuple[list[AuditLog], int]:
        """Return one page of matching rows plus the total match count.

        Rows already in the session are refreshed, since review updates and
        archiving are bulk UPDATEs that bypass the identity map.
        """
        query = select(AuditLog).execution_options(populate_existing=True)
        if conditions:
            query = query.where(and_(*conditions))

        column = SORTABLE_COLUMNS.get(sort_by, AuditLog.timestamp)
        direction = asc if sort_order == "asc" else desc
        order = [direction(column)]
        if column is not AuditLog.timestamp:
            order.append(desc(AuditLog.timestamp))
        query = query.order_by(*order, AuditLog.id)

        try:
            total = await self.count(conditions)
            if offset:
                query = query.offset(offset)
            if limit is not None:
                query = query.limit(limit)
            result = await self.session.execute(query)
        except SQLAlchemyError as exc:
            raise await self._fail("list", exc) from exc
        return list(result.scalars().all()), total

    async def find(self, filters: AuditFilterParams) -> tuple[list[AuditLog], int]:
        """Apply ``AuditFilterParams`` including its sort and pagination."""
        return await self.search(
            build_conditions(filters),
            sort_by=filters.sort_by,
            sort_order=filters.sort_order,
            offset=(filters.page - 1) * filters.per_page,
            limit=filters.per_page,
        )

    async def count(self, conditions: Iterable[ColumnElement[bool]] = ()) -> int:
        conditions = list(conditions)
        query = select(func.count()).select_from(AuditLog)
        if conditions:
            query = query.where(and_(*conditions))
        try:
            result = await self.session.execute(query)
        except SQLAlchemyError as exc:
            raise await self._fail("count", exc) from exc
        return int(result.scalar() or 0)

    async def execute(self, query: Select) -> list[Any]:
        """Run an aggregate query and return all result rows."""
        try:
            result = await self.session.execute(query)
        except SQLAlchemyError as exc:
            raise await self._fail("query", exc) from exc
        return list(result.all())

    async def update_review_fields(self, log_id: UUID, **patch: Any) -> AuditLog | None:
        """Update review-workflow columns of one row with a single UPDATE.

        Returns the updated row or ``None`` if no row has that id.
        """
        illegal = set(patch) - REVIEW_FIELDS
        if illegal:
            raise ImmutableAuditFieldError(sorted(illegal))

        stmt = (
            update(AuditLog)
            .where(AuditLog.id == log_id)
            .values(**patch)
            .execution_options(synchronize_session=False)
        )
        try:
            result = await self.session.execute(stmt)
            await self.session.commit()
        except SQLAlchemyError as exc:
            raise await self._fail("update", exc) from exc

        if not result.rowcount:
            return None
        return await self.get(log_id)

    async def archive_where(
        self, conditions: Sequence[ColumnElement[bool]], *, archived_at: datetime
    ) -> int:
        """Mark matching, not yet archived rows as archived; returns rows affected."""
        stmt = (
            update(AuditLog)
            .where(and_(*conditions, AuditLog.archived.is_(False)))
            .values(archived=True, archived_at=archived_at)
            .execution_options(synchronize_session=False)
        )
        try:
            result = await self.session.execute(stmt)
            await self.session.commit()
        except SQLAlchemyError as exc:
            raise await self._fail("archive", exc) from exc
        return int(result.rowcount or 0)

    async def delete_where(self, conditions: Sequence[ColumnElement[bool]]) -> int:
        """Remove matching rows; returns rows affected."""
        stmt = (
            delete(AuditLog)
            .where(and_(*conditions))
            .execution_options(synchronize_session=False)
        )
        try:
            result = await self.session.execute(stmt)
            await self.session.commit()
        except SQLAlchemyError as exc:
            raise await self._fail("delete", exc) from exc
        return int(result.rowcount or 0)


__all__ = ["AuditLogStore", "build_conditions", "SORTABLE_COLUMNS"]
