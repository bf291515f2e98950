"""
Global pytest configuration and fixtures for the Chapel admin backend tests.
"""

import os

# Configure the environment before application modules read their settings
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE__URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT__SECRET_KEY", "test-secret-key-for-audit-tests")
os.environ.setdefault("RATE_LIMIT__STORAGE_URL", "memory://")
os.environ.setdefault("OBSERVABILITY__LOG_FORMAT", "text")

from collections.abc import AsyncIterator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from chapel.admin.auth.core import jwt_service
from chapel.admin.db import Base, get_async_session


@pytest_asyncio.fixture
async def async_db_engine(tmp_path):
    """Async SQLite engine with the audit schema, one database file per test."""
    from chapel.admin.audit import models  # noqa: F401

    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'audit.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def session_factory(async_db_engine):
    return async_sessionmaker(async_db_engine, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def async_db_session(session_factory) -> AsyncIterator[AsyncSession]:
    """Async database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def test_app(session_factory):
    """Application wired to the per-test database."""
    from chapel.admin.main import create_application

    app = create_application()

    async def override_async_session() -> AsyncIterator[AsyncSession]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_async_session] = override_async_session
    return app


@pytest_asyncio.fixture
async def client(test_app) -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as async_client:
        yield async_client


@pytest.fixture
def make_auth_headers():
    """Factory for Bearer headers carrying the given admin roles."""

    def _make(user_id: str, roles: list[str], email: str | None = None) -> dict[str, str]:
        claims = {"roles": roles, "email": email or f"{user_id}@chapel.org", "name": user_id}
        token = jwt_service.create_access_token(user_id, additional_claims=claims)
        return {"Authorization": f"Bearer {token}"}

    return _make


@pytest.fixture
def auth_headers(make_auth_headers):
    """Bearer headers for a super admin."""
    return make_auth_headers("super-1", ["super_admin"])


@pytest.fixture
def admin_headers(make_auth_headers):
    return make_auth_headers("admin-1", ["admin"])


@pytest.fixture
def moderator_headers(make_auth_headers):
    return make_auth_headers("mod-1", ["moderator"])