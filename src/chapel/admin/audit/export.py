"""
Rendering audit logs for export as JSON envelopes or CSV text.
"""

import json
from collections.abc import Sequence
from datetime import datetime
from typing import Any
from uuid import UUID

from .models import AuditLog

SUMMARY_FIELDS = (
    "action",
    "action_category",
    "actor_email",
    "target_email",
    "success",
    "risk_level",
    "timestamp",
)

DETAIL_FIELDS = (
    "id",
    "action",
    "action_category",
    "description",
    "actor_type",
    "actor_id",
    "actor_email",
    "actor_name",
    "actor_role",
    "actor_ip",
    "actor_user_agent",
    "target_type",
    "target_id",
    "target_email",
    "target_name",
    "action_data",
    "old_values",
    "new_values",
    "changes",
    "success",
    "error_message",
    "error_code",
    "session_id",
    "request_id",
    "correlation_id",
    "source",
    "compliance_flags",
    "timezone",
    "version",
    "geolocation",
    "device_info",
    "browser_info",
    "risk_level",
    "sensitive_action",
    "retention_category",
    "timestamp",
    "flagged",
    "flag_reason",
    "reviewed",
    "review_notes",
    "reviewed_by",
    "reviewed_at",
    "archived",
    "archived_at",
)


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    return value


def export_record(row: AuditLog, include_details: bool = True) -> dict[str, Any]:
    """Flat, JSON-safe mapping of one log; summary fields only when details are excluded."""
    fields = DETAIL_FIELDS if include_details else SUMMARY_FIELDS
    return {name: _jsonable(getattr(row, name)) for name in fields}


def _csv_cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, (dict, list)):
        value = json.dumps(value, sort_keys=True, default=str)
    return '"' + str(value).replace('"', '""') + '"'


def to_csv(records: Sequence[dict[str, Any]]) -> str:
    """CSV text with a header taken from the first record's keys.

    String cells are quoted with embedded quotes doubled. Booleans, numbers
    and empty values are written bare. Rows are joined by ``\\n`` with no
    trailing newline; no records gives an empty string.
    """
    if not records:
        return ""

    headers = list(records[0].keys())
    lines = [",".join(headers)]
    lines.extend(",".join(_csv_cell(record.get(name)) for name in headers) for record in records)
    return "\n".join(lines)


def to_json_envelope(
    records: Sequence[dict[str, Any]],
    *,
    exported_at: datetime,
    exported_by: str | None,
    filters: dict[str, Any],
) -> dict[str, Any]:
    return {
        "exported_at": exported_at.isoformat(),
        "exported_by": exported_by,
        "filters": filters,
        "total_records": len(records),
        "data": list(records),
    }


__all__ = ["SUMMARY_FIELDS", "DETAIL_FIELDS", "export_record", "to_csv", "to_json_envelope"]
