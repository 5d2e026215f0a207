"""Application configuration using Pydantic Settings.

Configuration is environment-aware:
- APP_ENV determines which .env file to load
- Supports: development, testing, staging, production
- Each environment has its own .env.{environment} file
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Determine which environment to load (default: development)
APP_ENV = os.getenv("APP_ENV", "development")

# Project root (so .env resolution doesn't depend on current working directory)
PROJECT_ROOT = Path(__file__).resolve().parents[2]

# Map environments to their respective .env files (relative to PROJECT_ROOT)
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


# Load .env file early to populate os.environ before creating nested settings
# This is necessary because Pydantic nested BaseSettings don't inherit env_file
if _env_file and not os.getenv("TESTING"):
    from dotenv import load_dotenv
    load_dotenv(_env_file, override=True)


def _build_state_store_settings() -> "StateStoreSettings":
    """Build shared store settings from environment.

    Pydantic Settings (v2) can populate values from environment variables.
    Static type checkers treat fields as constructor arguments, which is not
    how BaseSettings is intended to be used.
    """

    return StateStoreSettings()  # type: ignore[call-arg]


def _build_resilience_settings() -> "ResilienceSettings":
    return ResilienceSettings()  # type: ignore[call-arg]


def _build_app_settings() -> "AppSettings":
    return AppSettings()  # type: ignore[call-arg]


def _build_log_settings() -> "LogSettings":
    return LogSettings()  # type: ignore[call-arg]


def parse_csv(value: str | None) -> list[str]:
    """Split a comma-separated setting into trimmed, non-empty items.

    Examples:
        >>> parse_csv("payments, sms ,,email")
        ['payments', 'sms', 'email']
        >>> parse_csv(None)
        []
    """

    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


class StateStoreSettings(BaseSettings):
    """Shared key/value store (Upstash-compatible Redis REST) configuration.

    The URL and token are required together. When either is missing the
    state service runs in memory-only mode instead of failing.
    """

    rest_url: str | None = Field(
        None,
        description="REST endpoint of the shared store (UPSTASH_REDIS_REST_URL)",
    )
    rest_token: str | None = Field(
        None,
        description="Bearer token for the shared store (UPSTASH_REDIS_REST_TOKEN)",
    )
    timeout_seconds: float = Field(
        2.0,
        description="Upper bound for a single shared store call",
        gt=0,
    )
    recheck_interval_seconds: float = Field(
        30.0,
        description="How often a degraded facade retries the shared store",
        gt=0,
    )
    sweep_interval_seconds: float = Field(
        60.0,
        description="How often expired entries are purged from the local fallback store",
        gt=0,
    )

    model_config = SettingsConfigDict(
        env_prefix="UPSTASH_REDIS_",
        case_sensitive=False,
    )

    @property
    def is_configured(self) -> bool:
        return bool(self.rest_url) and bool(self.rest_token)


class ResilienceSettings(BaseSettings):
    """Circuit breaker and retry defaults for protected dependencies."""

    circuit_failure_threshold: int = Field(
        5,
        description="Consecutive failures before a circuit opens",
        ge=1,
    )
    circuit_reset_timeout_ms: int = Field(
        30000,
        description="Time an open circuit waits before allowing a trial request",
        ge=1,
    )
    circuit_state_ttl_seconds: int = Field(
        3600,
        description="Lifetime of a stored circuit record that is not touched again",
        ge=1,
    )
    monitored_services: str = Field(
        "payments,sms,email,database",
        description="Comma-separated list of protected service names reported by health endpoints",
    )
    retry_max_attempts: int = Field(
        3,
        description="Attempts made by with_retry before recording a failure",
        ge=1,
    )
    retry_base_delay_ms: int = Field(
        1000,
        description="First backoff delay; doubled on every further attempt",
        ge=0,
    )
    retry_max_delay_ms: int = Field(
        10000,
        description="Cap for a single backoff delay",
        ge=0,
    )
    retry_after_seconds: int = Field(
        30,
        description="Retry-After hint returned when a dependency is unavailable",
        ge=0,
    )

    model_config = SettingsConfigDict(
        env_prefix="RESILIENCE_",
        case_sensitive=False,
    )

    @property
    def monitored_service_names(self) -> list[str]:
        return parse_csv(self.monitored_services)


class AppSettings(BaseSettings):
    """Application-wide configuration."""

    debug: bool = Field(
        False,
        description="Enable debug mode with verbose logging",
    )
    api_key_required: bool = Field(
        True,
        description="Whether API key authentication is required for admin endpoints",
    )
    api_keys: str | None = Field(
        None,
        description="Comma-separated list of valid API keys for authentication",
    )

    rate_limit_enabled: bool = Field(
        True,
        description="Enable global rate limiting per API key",
    )
    rate_limit_requests: int = Field(
        60,
        description="Maximum number of requests allowed per window (per API key)",
        ge=1,
    )
    rate_limit_window_seconds: int = Field(
        60,
        description="Rate limit window size in seconds",
        ge=1,
    )
    rate_limit_include_headers: bool = Field(
        True,
        description="Include X-RateLimit-* and Retry-After headers when throttling",
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """Logging output configuration."""

    level: str = Field("INFO", description="Root log level")
    format: str = Field("json", description="Log format: json or plain")
    output: str = Field("stdout", description="Log destination: stdout or file")
    file_path: str | None = Field(None, description="Log file path when output=file")
    max_bytes: int = Field(
        0,
        description="Rotate the log file after this many bytes (0 disables rotation)",
        ge=0,
    )
    backup_count: int = Field(5, description="Rotated files to keep", ge=0)
    request_id_header: str = Field(
        "X-Request-ID",
        description="Header used to read and echo the request correlation id",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class Settings(BaseSettings):
    """Main application settings container.

    Automatically loads from the appropriate .env.{APP_ENV} file.
    Raises validation errors on startup if a setting has an invalid value.
    A missing shared store URL/token is not an error.
    """

    app_env: str = APP_ENV
    state_store: StateStoreSettings = Field(default_factory=_build_state_store_settings)
    resilience: ResilienceSettings = Field(default_factory=_build_resilience_settings)
    app: AppSettings = Field(default_factory=_build_app_settings)
    log: LogSettings = Field(default_factory=_build_log_settings)

    model_config = SettingsConfigDict(
        case_sensitive=False,
    )


# Global settings instance - composed from domain-specific settings
# Nested settings are created via default_factory so env loading works.
settings = Settings()
