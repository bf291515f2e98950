"""
Identity directories used to describe actors and targets in history views.

The audit subsystem does not own admin or member records; it only resolves
a lightweight summary by id from whichever directory knows it.
"""

from collections.abc import Mapping
from typing import Any, Protocol

import httpx
import structlog

from ..settings import Settings

logger = structlog.get_logger(__name__)


class IdentityDirectory(Protocol):
    """Looks up one identity by id; returns ``None`` when unknown."""

    async def lookup(self, identity_id: str) -> dict[str, Any] | None: ...


class InMemoryIdentityDirectory:
    """Directory backed by a dict, used in tests and single-process setups."""

    def __init__(self, entries: Mapping[str, Mapping[str, Any]] | None = None):
        self._entries: dict[str, dict[str, Any]] = {
            key: dict(value) for key, value in (entries or {}).items()
        }

    def add(self, identity_id: str, **fields: Any) -> None:
        self._entries[identity_id] = fields

    async def lookup(self, identity_id: str) -> dict[str, Any] | None:
        entry = self._entries.get(identity_id)
        return dict(entry) if entry is not None else None


class HttpIdentityDirectory:
    """Directory served by another service at ``GET {base_url}/{id}``."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 3.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client

    async def _get(self, url: str) -> httpx.Response:
        if self._client is not None:
            return await self._client.get(url, timeout=self.timeout)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.get(url)

    async def lookup(self, identity_id: str) -> dict[str, Any] | None:
        url = f"{self.base_url}/{identity_id}"
        try:
            response = await self._get(url)
            if response.status_code == 404:
                return None
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("audit.identity.lookup_failed", url=url, error=str(exc))
            return None
        return body if isinstance(body, dict) else None


class IdentityResolver:
    """Resolves actor and target summaries from the admin and member directories."""

    def __init__(
        self,
        admin_directory: IdentityDirectory | None = None,
        member_directory: IdentityDirectory | None = None,
    ):
        self.admin_directory = admin_directory or InMemoryIdentityDirectory()
        self.member_directory = member_directory or InMemoryIdentityDirectory()

    @staticmethod
    def _admin_summary(identity_id: str, entry: dict[str, Any]) -> dict[str, Any]:
        return {
            "id": identity_id,
            "type": "admin",
            "name": entry.get("name"),
            "email": entry.get("email"),
            "role": entry.get("role"),
        }

    @staticmethod
    def _member_summary(identity_id: str, entry: dict[str, Any]) -> dict[str, Any]:
        return {
            "id": identity_id,
            "type": "user",
            "name": entry.get("name"),
            "email": entry.get("email"),
            "status": entry.get("status"),
        }

    async def resolve_actor(self, actor_id: str) -> dict[str, Any] | None:
        """Admin directory first, then members."""
        admin = await self.admin_directory.lookup(actor_id)
        if admin is not None:
            return self._admin_summary(actor_id, admin)
        member = await self.member_directory.lookup(actor_id)
        if member is not None:
            return self._member_summary(actor_id, member)
        return None

    async def resolve_target(self, target_type: str, target_id: str) -> dict[str, Any]:
        """Summary for a target; types other than admin and user stay unresolved."""
        entry = None
        if target_type == "admin":
            entry = await self.admin_directory.lookup(target_id)
            if entry is not None:
                return self._admin_summary(target_id, entry)
        elif target_type == "user":
            entry = await self.member_directory.lookup(target_id)
            if entry is not None:
                return self._member_summary(target_id, entry)
        return {"id": target_id, "type": target_type}


def build_identity_resolver(settings: Settings) -> IdentityResolver:
    """HTTP directories where URLs are configured, empty in-memory ones otherwise."""
    timeout = settings.audit.directory_timeout_seconds
    admin: IdentityDirectory = (
        HttpIdentityDirectory(settings.audit.admin_directory_url, timeout=timeout)
        if settings.audit.admin_directory_url
        else InMemoryIdentityDirectory()
    )
    member: IdentityDirectory = (
        HttpIdentityDirectory(settings.audit.member_directory_url, timeout=timeout)
        if settings.audit.member_directory_url
        else InMemoryIdentityDirectory()
    )
    return IdentityResolver(admin, member)


__all__ = [
    "IdentityDirectory",
    "InMemoryIdentityDirectory",
    "HttpIdentityDirectory",
    "IdentityResolver",
    "build_identity_resolver",
]
