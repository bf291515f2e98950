"""Configuration for the Chapel admin backend.

Values come from environment variables (and an optional ``.env`` file).
Nested groups use a double underscore, e.g. ``AUDIT__ALERT_TIMEOUT_SECONDS=5``
or ``DATABASE__URL=postgresql://...``.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

INSECURE_JWT_SECRET = "change-me"


class Environment(str, Enum):
    """Where the service is deployed."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TEST = "test"


class LogLevel(str, Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class Settings(BaseSettings):
    """Admin backend settings, one nested model per concern."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = Field("chapel-admin", description="Service name used in logs")
    app_version: str = Field("1.0.0", description="Reported by /health and the OpenAPI schema")
    environment: Environment = Field(Environment.DEVELOPMENT, description="Deployment stage")

    # ============================================================
    # Persistence
    # ============================================================

    class DatabaseSettings(BaseModel):
        """Audit store connection.

        ``url`` wins when set; otherwise a PostgreSQL URL is assembled from the
        parts, or a local SQLite file is used in development.
        """

        url: str | None = Field(None, description="Complete database URL")
        host: str = Field("localhost", description="PostgreSQL host")
        port: int = Field(5432, description="PostgreSQL port")
        database: str = Field("chapel", description="PostgreSQL database")
        username: str = Field("chapel", description="PostgreSQL user")
        password: str = Field("", description="PostgreSQL password")

        # Ignored for SQLite
        pool_size: int = Field(10, description="Persistent connections kept open")
        max_overflow: int = Field(20, description="Extra connections under load")
        pool_timeout: int = Field(30, description="Seconds to wait for a free connection")
        pool_recycle: int = Field(3600, description="Seconds before a connection is replaced")
        pool_pre_ping: bool = Field(True, description="Ping connections on checkout")

        echo: bool = Field(False, description="Log every SQL statement")
        create_tables_on_startup: bool = Field(
            False, description="Create the audit tables when the API starts"
        )

    database: DatabaseSettings = DatabaseSettings()  # type: ignore[call-arg]

    # ============================================================
    # Admin authentication
    # ============================================================

    class JWTSettings(BaseModel):
        """Access tokens presented by admin dashboard callers."""

        secret_key: str = Field(INSECURE_JWT_SECRET, description="HMAC signing secret")
        algorithm: str = Field("HS256", description="Signing algorithm")
        access_token_expire_minutes: int = Field(30, description="Lifetime of issued tokens")
        issuer: str = Field("chapel-admin", description="Value of the iss claim")

    jwt: JWTSettings = JWTSettings()  # type: ignore[call-arg]

    class CORSSettings(BaseModel):
        enabled: bool = Field(True, description="Attach the CORS middleware")
        origins: list[str] = Field(
            default_factory=lambda: ["http://localhost:3000", "http://127.0.0.1:3000"],
            description="Admin dashboard origins",
        )
        methods: list[str] = Field(default_factory=lambda: ["*"])
        headers: list[str] = Field(default_factory=lambda: ["*"])
        credentials: bool = Field(True, description="Allow cookies and auth headers")

    cors: CORSSettings = CORSSettings()  # type: ignore[call-arg]

    # ============================================================
    # Logging
    # ============================================================

    class ObservabilitySettings(BaseModel):
        """structlog output and request correlation."""

        log_level: LogLevel = Field(LogLevel.INFO, description="Root log level")
        log_format: Literal["json", "text"] = Field(
            "json", description="JSON lines for shipping, text for terminals"
        )
        request_id_header: str = Field(
            "X-Request-ID", description="Header carrying the correlation id in and out"
        )

    observability: ObservabilitySettings = ObservabilitySettings()  # type: ignore[call-arg]

    class RateLimitSettings(BaseModel):
        """Throttling of sensitive audit operations (flag, review, cleanup)."""

        enabled: bool = Field(True, description="Enforce the sensitive-operation limit")
        storage_url: str = Field(
            "memory://", description="limits storage URI, e.g. redis://host:6379"
        )
        sensitive_operations: str = Field(
            "5/15 minutes", description="Allowance per admin and endpoint"
        )

    rate_limit: RateLimitSettings = RateLimitSettings()  # type: ignore[call-arg]

    # ============================================================
    # Audit trail
    # ============================================================

    class AuditSettings(BaseModel):
        """Alerting, identity lookups, query limits and retention defaults."""

        alert_timeout_seconds: float = Field(
            2.0, gt=0, description="Upper bound for each security alert hook"
        )
        alert_webhook_url: str | None = Field(
            None, description="Webhook receiving high-risk and sensitive audit events"
        )

        admin_directory_url: str | None = Field(
            None, description="Admin lookup endpoint, called as GET {url}/{id}"
        )
        member_directory_url: str | None = Field(
            None, description="Member lookup endpoint, called as GET {url}/{id}"
        )
        directory_timeout_seconds: float = Field(3.0, gt=0)

        default_page_size: int = Field(50, ge=1)
        max_page_size: int = Field(1000, ge=1)
        log_self_access: bool = Field(
            True, description="Record reads of the audit API in the audit log itself"
        )

        cleanup_older_than_days: int = Field(365, ge=1)
        cleanup_action: Literal["archive", "delete"] = Field("archive")
        cleanup_preserve_critical: bool = Field(
            True, description="Never clean up critical-risk events"
        )

    audit: AuditSettings = AuditSettings()  # type: ignore[call-arg]

    @field_validator("environment", mode="before")
    def normalize_environment(cls, v: Any) -> Any:
        return v.lower() if isinstance(v, str) else v

    @model_validator(mode="after")
    def require_real_secret_in_production(self) -> Settings:
        if self.is_production and self.jwt.secret_key == INSECURE_JWT_SECRET:
            raise ValueError("JWT__SECRET_KEY must be set in production")
        return self

    @property
    def is_production(self) -> bool:
        return self.environment == Environment.PRODUCTION

    @property
    def is_development(self) -> bool:
        return self.environment == Environment.DEVELOPMENT


_settings: Settings | None = None


def get_settings() -> Settings:
    """Process-wide settings, loaded on first use."""
    global _settings
    if _settings is None:
        _settings = Settings()  # type: ignore[call-arg]
    return _settings


def reset_settings() -> None:
    """Forget the cached settings so the next ``get_settings`` reloads them."""
    global _settings
    _settings = None


settings = get_settings()
