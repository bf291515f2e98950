"""
Tests for actor and target identity resolution.
"""

import httpx

from chapel.admin.audit.identity import (
    HttpIdentityDirectory,
    IdentityResolver,
    InMemoryIdentityDirectory,
    build_identity_resolver,
)
from chapel.admin.settings import Settings


class TestIdentityResolver:
    async def test_admin_takes_precedence(self):
        admins = InMemoryIdentityDirectory({"x-1": {"name": "Admin X", "role": "super_admin"}})
        members = InMemoryIdentityDirectory({"x-1": {"name": "Member X", "status": "active"}})

        actor = await IdentityResolver(admins, members).resolve_actor("x-1")

        assert actor == {
            "id": "x-1",
            "type": "admin",
            "name": "Admin X",
            "email": None,
            "role": "super_admin",
        }

    async def test_unknown_actor(self):
        assert await IdentityResolver().resolve_actor("nobody") is None

    async def test_target_of_other_type_is_unresolved(self, identity_resolver):
        target = await identity_resolver.resolve_target("data", "admin-1")
        assert target == {"id": "admin-1", "type": "data"}

    async def test_unknown_user_target(self, identity_resolver):
        assert await identity_resolver.resolve_target("user", "ghost") == {
            "id": "ghost",
            "type": "user",
        }

    async def test_added_entries(self):
        members = InMemoryIdentityDirectory()
        members.add("m-9", name="New Member", email="new@chapel.org", status="pending")

        target = await IdentityResolver(member_directory=members).resolve_target("user", "m-9")

        assert target["status"] == "pending"
        assert target["type"] == "user"


class TestHttpIdentityDirectory:
    async def test_lookup(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/admins/admin-1":
                return httpx.Response(200, json={"name": "Ada", "email": "ada@chapel.org"})
            return httpx.Response(404)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            directory = HttpIdentityDirectory("https://id.chapel.org/admins/", client=client)
            assert await directory.lookup("admin-1") == {
                "name": "Ada",
                "email": "ada@chapel.org",
            }
            assert await directory.lookup("admin-2") is None

    async def test_errors_resolve_to_none(self):
        async with httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(503))
        ) as client:
            directory = HttpIdentityDirectory("https://id.chapel.org/admins", client=client)
            assert await directory.lookup("admin-1") is None

    async def test_non_json_body_resolves_to_none(self):
        async with httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(200, text="<html>"))
        ) as client:
            directory = HttpIdentityDirectory("https://id.chapel.org/admins", client=client)
            assert await directory.lookup("admin-1") is None


def test_build_identity_resolver_uses_configured_urls():
    settings = Settings(audit={"admin_directory_url": "https://id.chapel.org/admins"})

    resolver = build_identity_resolver(settings)

    assert isinstance(resolver.admin_directory, HttpIdentityDirectory)
    assert isinstance(resolver.member_directory, InMemoryIdentityDirectory)
