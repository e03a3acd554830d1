"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# Determine which environment to load (default: development)
APP_ENV = os.getenv("APP_ENV", "development")

# Project root (so .env resolution doesn't depend on current working directory)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

ENV_FILE_MAP = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}

_env_filename = ENV_FILE_MAP.get(APP_ENV, ".env.development")
_env_path = PROJECT_ROOT / _env_filename

# Only load from file if it exists (production might inject via env vars only)
_env_file = str(_env_path) if _env_path.is_file() else None


# Nested BaseSettings don't inherit env_file, so populate os.environ up front
if _env_file:
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


def parse_csv(value: str | None) -> list[str]:
    """Split a comma-separated setting into trimmed, non-empty items.

    Examples:
        >>> parse_csv("/api, /auth ,")
        ['/api', '/auth']
        >>> parse_csv(None)
        []
    """
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    name: str = Field(
        "referral-gate",
        description="Service name reported by the health endpoint and OpenAPI",
    )
    debug: bool = Field(
        False,
        description="Enable debug mode with verbose logging",
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )


class RateLimitSettings(BaseSettings):
    """Sliding-window rate limit policy for the request filter."""

    enabled: bool = Field(
        True,
        description="Enable per-client, per-route rate limiting",
    )
    limit: int = Field(
        60,
        description="Maximum number of requests allowed per window and key",
        ge=1,
    )
    window_ms: int = Field(
        60_000,
        description="Window length in milliseconds",
        ge=1,
    )
    sweep_interval_ms: int | None = Field(
        None,
        description="Minimum delay between expired-entry sweeps (defaults to window_ms)",
        ge=1,
    )
    path_prefixes: str = Field(
        "/api",
        description="Comma-separated path prefixes subject to rate limiting",
    )
    exempt_prefixes: str = Field(
        "/_next,/static,/favicon.ico",
        description="Comma-separated path prefixes that bypass the filter entirely",
    )
    trust_forwarded_for: bool = Field(
        False,
        description="Use the first X-Forwarded-For hop as the client address",
    )
    include_headers: bool = Field(
        True,
        description="Include X-RateLimit-* headers when throttling",
    )

    model_config = SettingsConfigDict(
        env_prefix="RATE_LIMIT_",
        case_sensitive=False,
    )

    @property
    def limited_paths(self) -> list[str]:
        return parse_csv(self.path_prefixes)

    @property
    def exempt_paths(self) -> list[str]:
        return parse_csv(self.exempt_prefixes)


class SecuritySettings(BaseSettings):
    """Response security header configuration.

    ``is_development`` switches the Content-Security-Policy between the
    permissive live-reload variant and the strict production variant. When
    unset it follows APP_ENV.
    """

    is_development: bool | None = Field(
        None,
        description="Force development CSP on/off (defaults to APP_ENV == development)",
    )
    script_sources: str = Field(
        "https://cdn.jsdelivr.net",
        description="Extra origins allowed in script-src",
    )
    style_sources: str = Field(
        "https://fonts.googleapis.com",
        description="Extra origins allowed in style-src",
    )
    font_sources: str = Field(
        "https://fonts.gstatic.com",
        description="Extra origins allowed in font-src",
    )
    image_sources: str = Field(
        "",
        description="Extra origins allowed in img-src (e.g. the storage bucket host)",
    )
    connect_sources: str = Field(
        "",
        description="Extra origins allowed in connect-src (e.g. the backend API host)",
    )

    model_config = SettingsConfigDict(
        env_prefix="SECURITY_",
        case_sensitive=False,
    )


class AuthSettings(BaseSettings):
    """Session and admin identity configuration."""

    session_cookie: str = Field(
        "session",
        description="Cookie carrying the auth provider session token",
    )
    admin_roles: str = Field(
        "admin",
        description="Comma-separated roles that grant admin access",
    )
    admin_emails: str | None = Field(
        None,
        description="Comma-separated emails always treated as admins",
    )

    model_config = SettingsConfigDict(
        env_prefix="AUTH_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field("INFO", description="Root log level")
    format: str = Field("json", description="Log format: json or plain")
    output: str = Field("stdout", description="Log destination: stdout or file")
    file_path: str | None = Field(None, description="Log file path when output=file")
    max_bytes: int = Field(10_485_760, description="Rotate log file after this many bytes (0 disables)")
    backup_count: int = Field(5, description="Rotated log files to keep")
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header used to read and propagate the request correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )

    @field_validator("format", "output")
    @classmethod
    def _lowercase(cls, value: str) -> str:
        return value.lower()


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if settings are malformed.
    """

    app_env: str = APP_ENV
    app: AppSettings = Field(default_factory=AppSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    auth: AuthSettings = Field(default_factory=AuthSettings)
    log: LogSettings = Field(default_factory=LogSettings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )

    @property
    def is_development(self) -> bool:
        if self.security.is_development is not None:
            return self.security.is_development
        return self.app_env.lower() == "development"


# Global settings instance; create_app() accepts an override for tests
settings = Settings()
