"""
Aggregate reporting over audit logs: statistics, compliance scoring,
exports and the recent alerts feed.
"""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

import structlog
from sqlalchemy import and_, case, desc, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import utc_now
from .export import export_record, to_csv, to_json_envelope
from .models import AuditFilterParams, AuditLog, RiskLevel
from .service import SECURITY_RISK_LEVELS, count_where, summarize
from .store import AuditLogStore, build_conditions

logger = structlog.get_logger(__name__)

TOP_ACTORS_LIMIT = 10


class Granularity(str, Enum):
    """Time bucket size for statistics."""

    HOUR = "hour"
    DAY = "day"
    MONTH = "month"


class ExportFormat(str, Enum):
    JSON = "json"
    CSV = "csv"


_BUCKET_FORMATS = {
    Granularity.HOUR: "%Y-%m-%dT%H:00",
    Granularity.DAY: "%Y-%m-%d",
    Granularity.MONTH: "%Y-%m",
}


_PG_BUCKET_FORMATS = {
    Granularity.HOUR: 'YYYY-MM-DD"T"HH24:00',
    Granularity.DAY: "YYYY-MM-DD",
    Granularity.MONTH: "YYYY-MM",
}


def bucket_label(timestamp: datetime, granularity: Granularity) -> str:
    """Bucket key for a timestamp; keys sort chronologically as strings."""
    return timestamp.strftime(_BUCKET_FORMATS[granularity])


def bucket_expression(dialect_name: str, granularity: Granularity) -> Any | None:
    """SQL rendering of :func:`bucket_label` for ``dialect_name``.

    Returns ``None`` for dialects without a known date formatting function;
    those are bucketed in Python instead.
    """
    if dialect_name == "postgresql":
        return func.to_char(
            func.timezone("UTC", AuditLog.timestamp), _PG_BUCKET_FORMATS[granularity]
        )
    if dialect_name == "sqlite":
        # Stored in UTC already
        return func.strftime(_BUCKET_FORMATS[granularity], AuditLog.timestamp)
    return None


def _empty_bucket(label: str) -> dict[str, Any]:
    return {
        "bucket": label,
        "total_actions": 0,
        "successful_actions": 0,
        "failed_actions": 0,
        "sensitive_actions": 0,
    }


def compliance_score(critical_events: int, flagged_events: int) -> int:
    """Heuristic score: 100 minus 5 per critical event and 2 per flagged event, floored at 0."""
    return max(0, 100 - 5 * critical_events - 2 * flagged_events)


def compliance_recommendations(
    total_logs: int, critical_events: int, flagged_events: int, failed_actions: int
) -> list[str]:
    recommendations = []
    if critical_events > 0:
        recommendations.append("Review and investigate all critical security events")
    if flagged_events > 0:
        recommendations.append("Address all flagged activities")
    if failed_actions > total_logs * 0.1:
        recommendations.append("Investigate high failure rate")
    recommendations.append("Regular security training for administrators")
    recommendations.append("Implement additional monitoring for sensitive operations")
    return recommendations


class AuditReportingService:
    """Read-only aggregate views over the audit log."""

    def __init__(self, session: AsyncSession, *, clock: Callable[[], datetime] = utc_now):
        self.store = AuditLogStore(session)
        self.clock = clock

    @staticmethod
    def _window(start_date: datetime | None, end_date: datetime | None) -> list:
        return build_conditions(AuditFilterParams(start_date=start_date, end_date=end_date))

    async def _time_series(self, window: list, granularity: Granularity) -> list[dict[str, Any]]:
        bucket = bucket_expression(self.store.dialect_name, granularity)
        if bucket is None:
            return await self._time_series_in_python(window, granularity)

        rows = select(bucket.label("bucket"), AuditLog.success, AuditLog.sensitive_action)
        if window:
            rows = rows.where(and_(*window))
        rows = rows.subquery()
        query = (
            select(
                rows.c.bucket,
                func.count(),
                func.sum(case((rows.c.success.is_(True), 1), else_=0)),
                func.sum(case((rows.c.sensitive_action.is_(True), 1), else_=0)),
            )
            .group_by(rows.c.bucket)
            .order_by(rows.c.bucket)
        )
        time_series = []
        for label, total, successful, sensitive in await self.store.execute(query):
            entry = _empty_bucket(label)
            entry["total_actions"] = int(total)
            entry["successful_actions"] = int(successful or 0)
            entry["failed_actions"] = int(total) - int(successful or 0)
            entry["sensitive_actions"] = int(sensitive or 0)
            time_series.append(entry)
        return time_series

    async def _time_series_in_python(
        self, window: list, granularity: Granularity
    ) -> list[dict[str, Any]]:
        rows_query = select(AuditLog.timestamp, AuditLog.success, AuditLog.sensitive_action)
        if window:
            rows_query = rows_query.where(and_(*window))
        buckets: dict[str, dict[str, Any]] = {}
        for timestamp, success, sensitive in await self.store.execute(rows_query):
            label = bucket_label(timestamp, granularity)
            entry = buckets.setdefault(label, _empty_bucket(label))
            entry["total_actions"] += 1
            entry["successful_actions" if success else "failed_actions"] += 1
            if sensitive:
                entry["sensitive_actions"] += 1
        return [buckets[label] for label in sorted(buckets)]

    async def get_statistics(
        self,
        *,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        granularity: Granularity = Granularity.DAY,
    ) -> dict[str, Any]:
        """Time series, category/risk breakdowns, top actors and summary counts."""
        window = self._window(start_date, end_date)
        time_series = await self._time_series(window, granularity)

        # By category
        count = func.count().label("count")
        category_query = (
            select(
                AuditLog.action_category,
                count,
                func.avg(case((AuditLog.success.is_(True), 1.0), else_=0.0)),
            )
            .group_by(AuditLog.action_category)
            .order_by(desc("count"), AuditLog.action_category)
        )
        if window:
            category_query = category_query.where(and_(*window))
        category_stats = [
            {"action_category": category, "count": int(total), "success_rate": float(rate or 0.0)}
            for category, total, rate in await self.store.execute(category_query)
        ]

        # By risk level
        risk_query = (
            select(AuditLog.risk_level, count, count_where(AuditLog.flagged.is_(True)))
            .group_by(AuditLog.risk_level)
            .order_by(desc("count"), AuditLog.risk_level)
        )
        if window:
            risk_query = risk_query.where(and_(*window))
        risk_stats = [
            {"risk_level": level, "count": int(total), "flagged_count": int(flagged)}
            for level, total, flagged in await self.store.execute(risk_query)
        ]

        # Top actors
        action_count = func.count().label("action_count")
        actor_query = (
            select(
                AuditLog.actor_id,
                AuditLog.actor_email,
                AuditLog.actor_type,
                action_count,
                func.max(AuditLog.timestamp),
                count_where(
                    AuditLog.risk_level.in_([level.value for level in SECURITY_RISK_LEVELS])
                ),
            )
            .group_by(AuditLog.actor_id, AuditLog.actor_email, AuditLog.actor_type)
            .order_by(desc("action_count"), AuditLog.actor_id)
            .limit(TOP_ACTORS_LIMIT)
        )
        if window:
            actor_query = actor_query.where(and_(*window))
        top_actors = []
        for actor_id, email, actor_type, total, last_action, risky in await self.store.execute(
            actor_query
        ):
            top_actors.append(
                {
                    "actor_id": actor_id,
                    "actor_email": email,
                    "actor_type": actor_type,
                    "action_count": int(total),
                    "last_action": _as_utc_iso(last_action),
                    "risk_actions": int(risky),
                }
            )

        return {
            "granularity": granularity.value,
            "time_series": time_series,
            "category_stats": category_stats,
            "risk_level_stats": risk_stats,
            "top_actors": top_actors,
            "summary": await summarize(self.store, window),
        }

    async def compliance_report(
        self,
        *,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        report_type: str = "general",
        generated_by: str | None = None,
    ) -> dict[str, Any]:
        """Compliance summary with a heuristic score and fixed recommendations."""
        window = self._window(start_date, end_date)
        query = select(
            func.count(),
            count_where(AuditLog.risk_level == RiskLevel.CRITICAL.value),
            count_where(AuditLog.sensitive_action.is_(True)),
            count_where(AuditLog.success.is_(False)),
            count_where(AuditLog.flagged.is_(True)),
        ).select_from(AuditLog)
        if window:
            query = query.where(and_(*window))
        total, critical, sensitive, failed, flagged = (
            int(value or 0) for value in (await self.store.execute(query))[0]
        )

        score = compliance_score(critical, flagged)
        logger.info(
            "audit.compliance_report.generated",
            report_type=report_type,
            compliance_score=score,
            total_logs=total,
        )
        return {
            "report_type": report_type,
            "period": {
                "start_date": start_date.isoformat() if start_date else None,
                "end_date": end_date.isoformat() if end_date else None,
            },
            "generated_at": self.clock().isoformat(),
            "generated_by": generated_by,
            "summary": {
                "total_logs": total,
                "critical_events": critical,
                "sensitive_actions": sensitive,
                "failed_actions": failed,
                "flagged_events": flagged,
                "compliance_score": score,
            },
            "recommendations": compliance_recommendations(total, critical, flagged, failed),
        }

    async def export_logs(
        self,
        filters: AuditFilterParams,
        *,
        export_format: ExportFormat = ExportFormat.JSON,
        include_details: bool = True,
        exported_by: str | None = None,
    ) -> dict[str, Any] | str:
        """All logs matching ``filters`` (newest first, unpaginated) as a JSON envelope or CSV."""
        records = await self.export_records(filters, include_details=include_details)
        return self.render_export(
            records,
            filters,
            export_format=export_format,
            include_details=include_details,
            exported_by=exported_by,
        )

    async def export_records(
        self, filters: AuditFilterParams, *, include_details: bool = True
    ) -> list[dict[str, Any]]:
        """Flattened export records for every log matching ``filters``, newest first."""
        rows, _ = await self.store.search(
            build_conditions(filters), sort_by="timestamp", sort_order="desc"
        )
        return [export_record(row, include_details) for row in rows]

    def render_export(
        self,
        records: list[dict[str, Any]],
        filters: AuditFilterParams,
        *,
        export_format: ExportFormat = ExportFormat.JSON,
        include_details: bool = True,
        exported_by: str | None = None,
    ) -> dict[str, Any] | str:
        logger.info(
            "audit.export.generated",
            export_format=export_format.value,
            include_details=include_details,
            exported_count=len(records),
        )
        if export_format == ExportFormat.CSV:
            return to_csv(records)
        return to_json_envelope(
            records,
            exported_at=self.clock(),
            exported_by=exported_by,
            filters=filters.active_filters(),
        )

    async def recent_alerts(self, *, hours: int = 24, limit: int = 50) -> dict[str, Any]:
        """Critical, flagged or failed-sensitive logs from the last ``hours``, newest first."""
        since = self.clock() - timedelta(hours=hours)
        conditions = [
            AuditLog.timestamp >= since,
            or_(
                AuditLog.risk_level == RiskLevel.CRITICAL.value,
                AuditLog.flagged.is_(True),
                and_(AuditLog.sensitive_action.is_(True), AuditLog.success.is_(False)),
            ),
        ]
        rows, _ = await self.store.search(conditions, limit=limit)

        alerts = [
            dict(
                id=str(row.id),
                action=row.action,
                action_category=row.action_category,
                actor_email=row.actor_email,
                target_email=row.target_email,
                risk_level=row.risk_level,
                flagged=row.flagged,
                sensitive_action=row.sensitive_action,
                success=row.success,
                timestamp=row.timestamp.isoformat(),
            )
            for row in rows
        ]
        timeframe = f"Last {hours} hours"
        return {
            "alerts": alerts,
            "summary": {
                "total_alerts": len(alerts),
                "critical_alerts": sum(
                    1 for alert in alerts if alert["risk_level"] == RiskLevel.CRITICAL.value
                ),
                "flagged_alerts": sum(1 for alert in alerts if alert["flagged"]),
                "failed_sensitive_actions": sum(
                    1 for alert in alerts if alert["sensitive_action"] and not alert["success"]
                ),
                "timeframe": timeframe,
            },
            "timeframe": timeframe,
        }


def _as_utc_iso(value: Any) -> str | None:
    # Aggregates bypass the column type, so SQLite hands back naive datetimes or strings
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.isoformat()


__all__ = [
    "AuditReportingService",
    "ExportFormat",
    "Granularity",
    "bucket_expression",
    "bucket_label",
    "compliance_recommendations",
    "compliance_score",
]
