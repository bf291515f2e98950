from collections.abc import Mapping
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from chapel.admin.audit.alerts import AlertDispatcher
from chapel.admin.audit.identity import IdentityResolver, InMemoryIdentityDirectory
from chapel.admin.audit.models import ActionCategory, ActorType, AuditLog
from chapel.admin.audit.records import build_audit_log
from chapel.admin.audit.service import AuditService
from chapel.admin.audit.store import AuditLogStore

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=UTC)


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: Any) -> None:
        self.now = self.now + timedelta(**kwargs)


class RecordingHook:
    name = "recording"

    def __init__(self) -> None:
        self.records: list = []

    async def notify(self, record) -> None:
        self.records.append(record)


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def recording_hook():
    return RecordingHook()


@pytest.fixture
def identity_resolver():
    admins = InMemoryIdentityDirectory(
        {"admin-1": {"name": "Ada Admin", "email": "ada@chapel.org", "role": "admin"}}
    )
    members = InMemoryIdentityDirectory(
        {"member-1": {"name": "Mel Member", "email": "mel@chapel.org", "status": "active"}}
    )
    return IdentityResolver(admins, members)


@pytest.fixture
def audit_service(async_db_session, recording_hook, identity_resolver, clock):
    return AuditService(
        async_db_session,
        dispatcher=AlertDispatcher([recording_hook], timeout_seconds=0.5),
        identity_resolver=identity_resolver,
        clock=clock,
    )


def log_payload(action: str = "view_dashboard", **overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "action": action,
        "action_category": ActionCategory.USER_MANAGEMENT,
        "description": f"{action} performed",
        "actor": {"type": ActorType.ADMIN, "id": "admin-1", "email": "ada@chapel.org"},
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def make_log(async_db_session):
    """Insert a log directly with an explicit timestamp, bypassing alerting."""

    async def _make(
        action: str = "view_dashboard",
        *,
        timestamp: datetime = NOW,
        flagged: bool = False,
        reviewed: bool = False,
        **overrides: Any,
    ) -> AuditLog:
        data: Mapping[str, Any] = log_payload(action, **overrides)
        row, _ = build_audit_log(data, timestamp=timestamp)
        row.flagged = flagged
        row.reviewed = reviewed
        return await AuditLogStore(async_db_session).append(row)

    return _make


@pytest.fixture
def payload_factory():
    return log_payload


@pytest.fixture
def now():
    return NOW
