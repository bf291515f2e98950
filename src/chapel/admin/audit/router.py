"""
FastAPI router for audit log endpoints.

Every endpoint requires an authenticated admin; mutating and export endpoints
require elevated roles and are rate limited. Access to the audit API is
itself recorded in the audit log.
"""

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

import structlog
from fastapi import APIRouter, Body, Depends, Query, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth.core import UserInfo
from ..auth.dependencies import require_admin_or_above, require_any_admin, require_super_admin
from ..db import get_async_session
from ..rate_limiting import limit_sensitive_operation
from ..settings import settings
from .alerts import AlertDispatcher
from .exceptions import AuditPersistenceError, AuditValidationError
from .identity import IdentityResolver
from .models import (
    ActionCategory,
    ActorType,
    AuditFilterParams,
    CleanupRequest,
    FlagRequest,
    ReviewRequest,
    RiskLevel,
    SortField,
    TargetType,
)
from .reporting import AuditReportingService, ExportFormat, Granularity
from .retention import AuditRetentionService
from .service import AuditService

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["Audit"])


# ============================================
# Dependencies and helpers
# ============================================


def get_audit_service(
    request: Request, session: AsyncSession = Depends(get_async_session)
) -> AuditService:
    dispatcher: AlertDispatcher | None = getattr(request.app.state, "alert_dispatcher", None)
    resolver: IdentityResolver | None = getattr(request.app.state, "identity_resolver", None)
    return AuditService(session, dispatcher=dispatcher, identity_resolver=resolver)


def get_reporting_service(
    session: AsyncSession = Depends(get_async_session),
) -> AuditReportingService:
    return AuditReportingService(session)


def get_retention_service(
    session: AsyncSession = Depends(get_async_session),
) -> AuditRetentionService:
    return AuditRetentionService(session)


def _build_filters(**values: Any) -> AuditFilterParams:
    try:
        return AuditFilterParams(**values)
    except ValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "__root__")
        raise AuditValidationError(
            first.get("msg", "Invalid query parameters"), field=field or None
        ) from exc


def _ok(data: Any, message: str | None = None) -> dict[str, Any]:
    body: dict[str, Any] = {"success": True, "data": data}
    if message:
        body["message"] = message
    return body


def _query_failed(exc: AuditPersistenceError, empty: dict[str, Any]) -> JSONResponse:
    """Empty result set plus the error envelope; never a partial page."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, **exc.to_dict(), "data": empty},
    )


async def _record_access(
    request: Request,
    service: AuditService,
    user: UserInfo,
    action: str,
    description: str,
    **kwargs: Any,
) -> None:
    if not settings.audit.log_self_access:
        return
    await service.log_request_action(
        request, user, action, ActionCategory.SECURITY, description, **kwargs
    )


# ============================================
# Queries
# ============================================


@router.get("/logs")
async def list_audit_logs(
    request: Request,
    page: int = Query(1, ge=1, description="Page number"),
    per_page: int = Query(50, ge=1, le=1000, description="Items per page"),
    start_date: datetime | None = Query(None, description="Inclusive lower bound"),
    end_date: datetime | None = Query(None, description="Inclusive upper bound"),
    actor_id: str | None = Query(None),
    actor_type: ActorType | None = Query(None),
    target_id: str | None = Query(None),
    target_type: TargetType | None = Query(None),
    action: str | None = Query(None, description="Case-insensitive substring of the action"),
    action_category: ActionCategory | None = Query(None),
    risk_level: list[RiskLevel] | None = Query(None, description="One or more risk levels"),
    success: bool | None = Query(None),
    flagged: bool | None = Query(None),
    reviewed: bool | None = Query(None),
    sensitive_action: bool | None = Query(None),
    actor_ip: str | None = Query(None),
    archived: bool | None = Query(None),
    sort_by: SortField = Query("timestamp"),
    sort_order: Literal["asc", "desc"] = Query("desc"),
    service: AuditService = Depends(get_audit_service),
    current_user: UserInfo = Depends(require_any_admin),
) -> Any:
    """Filtered, paginated audit logs with summary counts."""
    filters = _build_filters(
        page=page,
        per_page=min(per_page, settings.audit.max_page_size),
        start_date=start_date,
        end_date=end_date,
        actor_id=actor_id,
        actor_type=actor_type,
        target_id=target_id,
        target_type=target_type,
        action=action,
        action_category=action_category,
        risk_levels=risk_level,
        success=success,
        flagged=flagged,
        reviewed=reviewed,
        sensitive_action=sensitive_action,
        actor_ip=actor_ip,
        archived=archived,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    try:
        result = await service.get_logs(filters)
    except AuditPersistenceError as exc:
        return _query_failed(exc, {"logs": [], "pagination": None, "summary": None})

    await _record_access(
        request,
        service,
        current_user,
        "view_audit_logs",
        "Viewed audit logs",
        action_data={
            "filters": filters.active_filters(),
            "pagination": {"page": filters.page, "per_page": filters.per_page},
            "results_count": len(result["logs"]),
        },
    )
    return _ok(result)


@router.get("/logs/{log_id}")
async def get_audit_log(
    log_id: UUID,
    request: Request,
    service: AuditService = Depends(get_audit_service),
    current_user: UserInfo = Depends(require_any_admin),
) -> Any:
    """Single audit log by id."""
    log = await service.get_log(log_id)
    await _record_access(
        request,
        service,
        current_user,
        "view_audit_log_details",
        f"Viewed audit log {log_id}",
        target={"type": TargetType.DATA, "id": str(log_id)},
        action_data={"audit_log_action": log.action},
    )
    return _ok({"log": log})


@router.get("/actor/{actor_id}")
async def get_actor_audit_logs(
    actor_id: str,
    request: Request,
    start_date: datetime | None = Query(None),
    end_date: datetime | None = Query(None),
    action_category: ActionCategory | None = Query(None),
    risk_level: RiskLevel | None = Query(None),
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=1000),
    service: AuditService = Depends(get_audit_service),
    current_user: UserInfo = Depends(require_any_admin),
) -> Any:
    """Logs for one actor with the actor's identity summary."""
    _build_filters(start_date=start_date, end_date=end_date)
    try:
        result = await service.get_actor_history(
            actor_id,
            start_date=start_date,
            end_date=end_date,
            action_category=action_category,
            risk_level=risk_level,
            page=page,
            per_page=per_page,
        )
    except AuditPersistenceError as exc:
        return _query_failed(exc, {"actor": None, "logs": [], "total": 0, "pagination": None})

    await _record_access(
        request,
        service,
        current_user,
        "view_actor_audit_logs",
        f"Viewed audit history of actor {actor_id}",
        action_data={
            "target_actor_id": actor_id,
            "actor_type": (result["actor"] or {}).get("type"),
            "results_count": len(result["logs"]),
        },
    )
    return _ok(result)


@router.get("/target/{target_type}/{target_id}")
async def get_target_audit_logs(
    target_type: TargetType,
    target_id: str,
    request: Request,
    start_date: datetime | None = Query(None),
    end_date: datetime | None = Query(None),
    action_category: ActionCategory | None = Query(None),
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=1000),
    service: AuditService = Depends(get_audit_service),
    current_user: UserInfo = Depends(require_any_admin),
) -> Any:
    """Logs against one target with the target's identity summary."""
    _build_filters(start_date=start_date, end_date=end_date)
    try:
        result = await service.get_target_history(
            target_type,
            target_id,
            start_date=start_date,
            end_date=end_date,
            action_category=action_category,
            page=page,
            per_page=per_page,
        )
    except AuditPersistenceError as exc:
        return _query_failed(
            exc,
            {
                "target": {"id": target_id, "type": target_type.value},
                "logs": [],
                "total": 0,
                "pagination": None,
            },
        )

    await _record_access(
        request,
        service,
        current_user,
        "view_target_audit_logs",
        f"Viewed audit history of {target_type.value} {target_id}",
        action_data={
            "target_id": target_id,
            "target_type": target_type.value,
            "results_count": len(result["logs"]),
        },
    )
    return _ok(result)


@router.get("/security-events")
async def get_security_events(
    request: Request,
    risk_level: list[RiskLevel] | None = Query(None, description="Defaults to high and critical"),
    flagged: bool | None = Query(None),
    start_date: datetime | None = Query(None),
    end_date: datetime | None = Query(None),
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=1000),
    service: AuditService = Depends(get_audit_service),
    current_user: UserInfo = Depends(require_any_admin),
) -> Any:
    """High-risk (and optionally flagged) logs with a security summary."""
    _build_filters(start_date=start_date, end_date=end_date)
    try:
        result = await service.get_security_events(
            risk_levels=risk_level,
            flagged=flagged,
            start_date=start_date,
            end_date=end_date,
            page=page,
            per_page=per_page,
        )
    except AuditPersistenceError as exc:
        return _query_failed(exc, {"logs": [], "pagination": None, "summary": None})

    await _record_access(
        request,
        service,
        current_user,
        "view_security_events",
        "Viewed security events",
        action_data={
            "risk_levels": [level.value for level in risk_level or []],
            "flagged": flagged,
            "results_count": len(result["logs"]),
        },
    )
    return _ok(result)


# ============================================
# Review workflow
# ============================================


@router.post(
    "/logs/{log_id}/flag",
    dependencies=[Depends(require_admin_or_above), Depends(limit_sensitive_operation)],
)
async def flag_audit_log(
    log_id: UUID,
    request: Request,
    payload: FlagRequest | None = Body(None),
    service: AuditService = Depends(get_audit_service),
    current_user: UserInfo = Depends(require_admin_or_above),
) -> Any:
    """Flag a log for review; a non-empty reason is required."""
    payload = payload or FlagRequest()
    log = await service.flag_log(log_id, payload.reason, current_user.user_id)
    await _record_access(
        request,
        service,
        current_user,
        "flag_audit_log",
        f"Flagged audit log {log_id}",
        target={"type": TargetType.DATA, "id": str(log_id)},
        action_data={"audit_log_action": log.action, "flag_reason": log.flag_reason},
    )
    return _ok({"log": log}, message="Audit log flagged successfully")


@router.post(
    "/logs/{log_id}/review",
    dependencies=[Depends(require_admin_or_above), Depends(limit_sensitive_operation)],
)
async def review_audit_log(
    log_id: UUID,
    request: Request,
    payload: ReviewRequest | None = Body(None),
    service: AuditService = Depends(get_audit_service),
    current_user: UserInfo = Depends(require_admin_or_above),
) -> Any:
    """Mark a log as reviewed with optional notes."""
    payload = payload or ReviewRequest()
    log = await service.review_log(log_id, payload.notes, current_user.user_id)
    await _record_access(
        request,
        service,
        current_user,
        "review_audit_log",
        f"Reviewed audit log {log_id}",
        target={"type": TargetType.DATA, "id": str(log_id)},
        action_data={"audit_log_action": log.action, "review_notes": log.review_notes},
    )
    return _ok({"log": log}, message="Audit log reviewed successfully")


# ============================================
# Reporting
# ============================================


@router.get("/stats")
async def get_audit_stats(
    request: Request,
    start_date: datetime | None = Query(None),
    end_date: datetime | None = Query(None),
    group_by: Granularity = Query(Granularity.DAY, description="hour, day or month"),
    reporting: AuditReportingService = Depends(get_reporting_service),
    service: AuditService = Depends(get_audit_service),
    current_user: UserInfo = Depends(require_any_admin),
) -> Any:
    """Time-bucketed statistics with category, risk and actor breakdowns."""
    _build_filters(start_date=start_date, end_date=end_date)
    try:
        stats = await reporting.get_statistics(
            start_date=start_date, end_date=end_date, granularity=group_by
        )
    except AuditPersistenceError as exc:
        return _query_failed(
            exc,
            {
                "time_series": [],
                "category_stats": [],
                "risk_level_stats": [],
                "top_actors": [],
                "summary": None,
            },
        )

    await _record_access(
        request,
        service,
        current_user,
        "view_audit_stats",
        "Viewed audit statistics",
        action_data={"group_by": group_by.value},
    )
    return _ok(stats)


@router.get(
    "/export",
    dependencies=[Depends(require_super_admin), Depends(limit_sensitive_operation)],
)
async def export_audit_logs(
    request: Request,
    export_format: ExportFormat = Query(
        ExportFormat.JSON, alias="format", description="json or csv"
    ),
    include_details: bool = Query(True, description="Include every field"),
    start_date: datetime | None = Query(None),
    end_date: datetime | None = Query(None),
    action_category: ActionCategory | None = Query(None),
    risk_level: list[RiskLevel] | None = Query(None),
    reporting: AuditReportingService = Depends(get_reporting_service),
    service: AuditService = Depends(get_audit_service),
    current_user: UserInfo = Depends(require_super_admin),
) -> Any:
    """Export matching logs as a JSON envelope or a CSV attachment."""
    filters = _build_filters(
        start_date=start_date,
        end_date=end_date,
        action_category=action_category,
        risk_levels=risk_level,
    )
    records = await reporting.export_records(filters, include_details=include_details)
    exported = reporting.render_export(
        records,
        filters,
        export_format=export_format,
        include_details=include_details,
        exported_by=current_user.email,
    )
    await _record_access(
        request,
        service,
        current_user,
        "export_audit_logs",
        f"Exported audit logs as {export_format.value}",
        action_data={
            "filters": filters.active_filters(),
            "format": export_format.value,
            "include_details": include_details,
            "exported_count": len(records),
        },
    )

    if export_format == ExportFormat.CSV:
        return Response(
            content=exported,
            media_type="text/csv",
            headers={"Content-Disposition": "attachment; filename=audit_logs.csv"},
        )
    return _ok(jsonable_encoder(exported))


@router.get("/compliance/report", dependencies=[Depends(require_super_admin)])
async def generate_compliance_report(
    request: Request,
    start_date: datetime | None = Query(None),
    end_date: datetime | None = Query(None),
    compliance_type: str = Query("general", description="Report type label"),
    reporting: AuditReportingService = Depends(get_reporting_service),
    service: AuditService = Depends(get_audit_service),
    current_user: UserInfo = Depends(require_super_admin),
) -> Any:
    """Compliance summary, heuristic score and recommendations for a period."""
    _build_filters(start_date=start_date, end_date=end_date)
    report = await reporting.compliance_report(
        start_date=start_date,
        end_date=end_date,
        report_type=compliance_type,
        generated_by=current_user.email,
    )
    await _record_access(
        request,
        service,
        current_user,
        "generate_compliance_report",
        f"Generated {compliance_type} compliance report",
        action_data={
            "report_type": compliance_type,
            "compliance_score": report["summary"]["compliance_score"],
        },
    )
    return _ok({"compliance_report": report})


@router.get("/alerts/recent")
async def get_recent_alerts(
    request: Request,
    hours: int = Query(24, ge=1, le=24 * 90, description="Look-back window in hours"),
    limit: int = Query(50, ge=1, le=1000, description="Maximum alerts returned"),
    reporting: AuditReportingService = Depends(get_reporting_service),
    service: AuditService = Depends(get_audit_service),
    current_user: UserInfo = Depends(require_any_admin),
) -> Any:
    """Critical, flagged and failed-sensitive logs from the last N hours."""
    try:
        result = await reporting.recent_alerts(hours=hours, limit=limit)
    except AuditPersistenceError as exc:
        return _query_failed(
            exc, {"alerts": [], "summary": None, "timeframe": f"Last {hours} hours"}
        )

    await _record_access(
        request,
        service,
        current_user,
        "view_security_alerts",
        "Viewed recent security alerts",
        action_data={"timeframe": f"{hours} hours", "alert_count": len(result["alerts"])},
    )
    return _ok(result)


# ============================================
# Retention
# ============================================


@router.post(
    "/cleanup",
    dependencies=[Depends(require_super_admin), Depends(limit_sensitive_operation)],
)
async def cleanup_audit_logs(
    request: Request,
    payload: CleanupRequest | None = Body(None),
    retention: AuditRetentionService = Depends(get_retention_service),
    service: AuditService = Depends(get_audit_service),
    current_user: UserInfo = Depends(require_super_admin),
) -> Any:
    """Archive or delete logs older than a threshold."""
    payload = payload or CleanupRequest()
    result = await retention.cleanup(
        older_than_days=payload.older_than_days,
        action=payload.action,
        preserve_critical=payload.preserve_critical,
    )
    await _record_access(
        request,
        service,
        current_user,
        "cleanup_audit_logs",
        f"Cleaned up audit logs ({result['action']})",
        action_data=result,
    )
    return _ok(
        result,
        message=f"Successfully {result['action']}d {result['cleaned_up_count']} audit logs",
    )
