"""
structlog configuration for the admin backend.

Every line carries the request context bound by ``AuditContextMiddleware``
(request id, path, caller) plus the service name and environment.
"""

import logging
from typing import Any

import structlog

from chapel.admin.settings import Settings, settings

SECURITY_CHANNEL = "chapel.security"

_QUIET_LOGGERS = ("httpx", "httpcore", "aiosqlite", "uvicorn.access")


def _service_context(app_settings: Settings) -> Any:
    def add_service_context(
        logger: Any, method_name: str, event_dict: dict[str, Any]
    ) -> dict[str, Any]:
        event_dict.setdefault("service", app_settings.app_name)
        event_dict.setdefault("environment", app_settings.environment.value)
        return event_dict

    return add_service_context


def setup_logging(app_settings: Settings | None = None) -> None:
    """Configure stdlib logging and structlog from the observability settings."""
    app_settings = app_settings or settings
    level = app_settings.observability.log_level.value

    logging.basicConfig(format="%(message)s", level=level)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    if not app_settings.database.echo:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        _service_context(app_settings),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if app_settings.observability.log_format == "json":
        processors.append(structlog.processors.JSONRenderer(default=str))
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_security_logger() -> structlog.BoundLogger:
    """
    Logger for security alerts raised by the audit trail.

    Operators route the ``chapel.security`` channel to paging or SIEM tooling.
    """
    return structlog.get_logger(SECURITY_CHANNEL)
