"""
Security alerting for high-risk and sensitive audit events.

The dispatcher runs after a successful audit write. Hooks are awaited in
order, each bounded by a timeout, and every failure is caught and logged so
alerting can never break the write path.
"""

import asyncio
from collections.abc import Sequence
from typing import Protocol, runtime_checkable

import httpx
import structlog

from ..logging import get_security_logger
from ..settings import Settings
from .models import AuditLogResponse

logger = structlog.get_logger(__name__)


@runtime_checkable
class AlertHook(Protocol):
    """Post-write observer for alert-worthy audit logs.

    ``notify`` returns nothing and must not be relied on to raise: the
    dispatcher discards any exception it does raise.
    """

    name: str

    async def notify(self, record: AuditLogResponse) -> None: ...


class LoggingAlertHook:
    """Emits a warning on the security log channel."""

    name = "log"

    async def notify(self, record: AuditLogResponse) -> None:
        get_security_logger().warning(
            "security.alert",
            log_id=str(record.id),
            action=record.action,
            action_category=record.action_category.value,
            risk_level=record.risk_level.value,
            sensitive_action=record.sensitive_action,
            success=record.success,
            actor_id=record.actor.id,
            actor_email=record.actor.email,
            actor_ip=record.actor.ip,
            timestamp=record.timestamp.isoformat(),
        )


class WebhookAlertHook:
    """POSTs the audit log as JSON to an external endpoint."""

    name = "webhook"

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 2.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.url = url
        self.timeout = timeout
        self._client = client

    async def notify(self, record: AuditLogResponse) -> None:
        payload = {"event": "audit.security_alert", "record": record.model_dump(mode="json")}
        if self._client is not None:
            response = await self._client.post(self.url, json=payload, timeout=self.timeout)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.url, json=payload)
        response.raise_for_status()


class AlertDispatcher:
    """Runs alert hooks with a per-hook timeout, swallowing every failure."""

    def __init__(self, hooks: Sequence[AlertHook] | None = None, timeout_seconds: float = 2.0):
        self.hooks: list[AlertHook] = list(hooks) if hooks is not None else [LoggingAlertHook()]
        self.timeout_seconds = timeout_seconds

    async def notify(self, record: AuditLogResponse) -> None:
        for hook in self.hooks:
            hook_name = getattr(hook, "name", type(hook).__name__)
            try:
                await asyncio.wait_for(hook.notify(record), timeout=self.timeout_seconds)
            except TimeoutError:
                logger.error(
                    "audit.alert.timeout",
                    hook=hook_name,
                    log_id=str(record.id),
                    timeout_seconds=self.timeout_seconds,
                )
            except Exception as exc:
                logger.error(
                    "audit.alert.failed",
                    hook=hook_name,
                    log_id=str(record.id),
                    error=str(exc),
                )


def build_alert_dispatcher(settings: Settings) -> AlertDispatcher:
    """Default hook chain: security log line first, then the webhook if configured."""
    hooks: list[AlertHook] = [LoggingAlertHook()]
    if settings.audit.alert_webhook_url:
        hooks.append(
            WebhookAlertHook(
                settings.audit.alert_webhook_url,
                timeout=settings.audit.alert_timeout_seconds,
            )
        )
    return AlertDispatcher(hooks, timeout_seconds=settings.audit.alert_timeout_seconds)


__all__ = [
    "AlertHook",
    "AlertDispatcher",
    "LoggingAlertHook",
    "WebhookAlertHook",
    "build_alert_dispatcher",
]
