#!/usr/bin/env python
"""
CLI management commands for the Chapel admin backend.
"""

import asyncio
import json
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol

import click

from chapel.admin.audit.exceptions import AuditError
from chapel.admin.audit.models import AuditFilterParams
from chapel.admin.audit.reporting import AuditReportingService, ExportFormat
from chapel.admin.audit.retention import (
    AuditRetentionPolicy,
    AuditRetentionService,
    cleanup_audit_logs_task,
    parse_cleanup_action,
)
from chapel.admin.audit.service import AuditService
from chapel.admin.db import create_all_tables_async, get_async_db
from chapel.admin.settings import settings


class AsyncSessionManager(Protocol):
    async def __aenter__(self) -> Any: ...  # pragma: no cover - protocol definition
    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> Any: ...  # pragma: no cover


@dataclass
class CLIDependencies:
    """Bundle of injectable dependencies used by CLI commands."""

    session_factory: Callable[[], AsyncSessionManager]
    create_tables: Callable[[], Awaitable[None]]
    path_factory: Callable[[str], Path]


def _get_cli_dependencies() -> CLIDependencies:
    """Return the default dependency bundle for CLI commands."""
    return CLIDependencies(
        session_factory=get_async_db,
        create_tables=create_all_tables_async,
        path_factory=Path,
    )


def _run(coro: Awaitable[Any]) -> Any:
    """Run a coroutine, reporting audit errors as CLI failures."""
    try:
        return asyncio.run(coro)  # type: ignore[arg-type]
    except AuditError as e:
        raise click.ClickException(e.message) from e


@click.group()
def cli() -> None:
    """Chapel admin backend CLI."""
    pass


@cli.command()
def init_database() -> None:
    """Create the audit tables if they do not exist."""
    deps = _get_cli_dependencies()
    click.echo("Initializing database...")
    _run(deps.create_tables())
    click.echo("Database initialized successfully!")


@cli.command()
@click.option(
    "--older-than-days",
    default=settings.audit.cleanup_older_than_days,
    show_default=True,
    type=click.IntRange(min=1),
    help="Age threshold in days",
)
@click.option(
    "--action",
    default=settings.audit.cleanup_action,
    show_default=True,
    type=click.Choice(["archive", "delete"]),
    help="Archive or permanently delete old logs",
)
@click.option(
    "--preserve-critical/--no-preserve-critical",
    default=settings.audit.cleanup_preserve_critical,
    show_default=True,
    help="Leave critical-risk logs untouched",
)
def cleanup_audit_logs(older_than_days: int, action: str, preserve_critical: bool) -> None:
    """Archive or delete audit logs older than a threshold."""
    deps = _get_cli_dependencies()
    policy = AuditRetentionPolicy(
        older_than_days=older_than_days,
        action=parse_cleanup_action(action),
        preserve_critical=preserve_critical,
    )

    async def _cleanup() -> dict[str, Any]:
        async with deps.session_factory() as session:
            return await cleanup_audit_logs_task(
                retention_service=AuditRetentionService(session, policy=policy),
                audit_service=AuditService(session),
            )

    results = _run(_cleanup())
    click.echo(
        f"Successfully {results['action']}d {results['cleaned_up_count']} audit logs "
        f"older than {results['cutoff_date']}"
    )


@cli.command()
@click.option(
    "--format",
    "export_format",
    default="json",
    type=click.Choice(["json", "csv"]),
    help="Export format (json/csv)",
)
@click.option("--output", default=None, help="Output file (defaults to audit_logs.<format>)")
@click.option(
    "--include-details/--summary-only",
    default=True,
    help="Export every field or only the summary columns",
)
@click.option("--start-date", type=click.DateTime(), default=None, help="Inclusive lower bound")
@click.option("--end-date", type=click.DateTime(), default=None, help="Inclusive upper bound")
def export_audit_logs(
    export_format: str,
    output: str | None,
    include_details: bool,
    start_date: datetime | None,
    end_date: datetime | None,
) -> None:
    """Export audit logs to a file."""
    deps = _get_cli_dependencies()
    fmt = ExportFormat(export_format)

    async def _export() -> tuple[list[dict[str, Any]], dict[str, Any] | str]:
        filters = AuditFilterParams(start_date=start_date, end_date=end_date)
        async with deps.session_factory() as session:
            reporting = AuditReportingService(session)
            records = await reporting.export_records(filters, include_details=include_details)
            return records, reporting.render_export(
                records,
                filters,
                export_format=fmt,
                include_details=include_details,
                exported_by="cli",
            )

    records, exported = _run(_export())
    path = deps.path_factory(output or f"audit_logs.{fmt.value}")
    if isinstance(exported, str):
        path.write_text(exported + "\n" if exported else "")
    else:
        path.write_text(json.dumps(exported, default=str, indent=2))
    click.echo(f"Exported {len(records)} logs to {path}")


@cli.command()
def retention_stats() -> None:
    """Show audit log counts by retention category and risk level."""
    deps = _get_cli_dependencies()

    async def _stats() -> dict[str, Any]:
        async with deps.session_factory() as session:
            return await AuditRetentionService(session).get_retention_statistics()

    stats = _run(_stats())
    click.echo(f"Total records:    {stats['total_records']}")
    click.echo(f"Archived records: {stats['archived_records']}")
    click.echo(f"Oldest record:    {stats['oldest_record'] or '-'}")
    click.echo(f"Newest record:    {stats['newest_record'] or '-'}")
    click.echo("By retention category:")
    for category, count in sorted(stats["by_retention_category"].items()):
        click.echo(f"  {category:15} {count}")
    click.echo("By risk level:")
    for level, count in sorted(stats["by_risk_level"].items()):
        click.echo(f"  {level:15} {count}")


if __name__ == "__main__":
    cli()
