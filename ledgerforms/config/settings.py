"""
Configuration Management for Ledgerforms

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see what external dependencies exist and
ensures all required configuration is validated at startup.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """PostgreSQL storage configuration."""

    model_config = SettingsConfigDict(
        env_prefix="DATABASE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    url: Optional[str] = Field(
        default=None,
        description="Full connection string; overrides the individual parts"
    )
    host: str = Field(default="localhost")
    port: int = Field(default=5432, ge=1, le=65535)
    name: str = Field(default="ledgerforms")
    user: str = Field(default="ledgerforms")
    password: str = Field(default="")

    min_connections: int = Field(
        default=1,
        ge=1,
        description="Connections kept open in the pool"
    )
    max_connections: int = Field(
        default=5,
        ge=1,
        le=100,
        description="Upper bound on pooled connections"
    )
    connect_timeout_seconds: int = Field(
        default=10,
        ge=1,
        le=120,
        description="Driver connection timeout"
    )

    @property
    def dsn(self) -> str:
        """libpq connection string."""
        if self.url:
            return self.url
        return (
            f"postgresql://{self.user}:{self.password}"
            f"@{self.host}:{self.port}/{self.name}"
        )


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Environment
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        description="Minimum level for local logs"
    )

    storage_backend: str = Field(
        default="memory",
        description="Where data lives: 'memory' or 'postgres'"
    )

    # Record composition
    default_expense_category: str = Field(
        default="Miscellaneous",
        min_length=1,
        max_length=100,
        description="Category used when an expense is submitted without one"
    )
    default_categories: str = Field(
        default="Miscellaneous,Food,Transport,Services,Entertainment",
        description="Comma-separated categories offered by select fields"
    )

    # Field catalog
    max_field_label_length: int = Field(
        default=100,
        ge=1,
        le=200,
        description="Longest accepted field label"
    )

    @field_validator('storage_backend')
    @classmethod
    def validate_storage_backend(cls, v: str) -> str:
        backend = v.strip().lower()
        if backend not in {"memory", "postgres"}:
            raise ValueError(f"Unknown storage backend: {v}")
        return backend

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level

    @property
    def categories_list(self) -> list[str]:
        """Get default categories as a list."""
        return [c.strip() for c in self.default_categories.split(",") if c.strip()]


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Loaded lazily so a missing database config only fails when used.

    @property
    def database(self) -> DatabaseSettings:
        return DatabaseSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}.
    Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    try:
        _ = settings.app
        results["app"] = True
    except Exception as e:
        results["app"] = False
        results["app_error"] = str(e)

    try:
        _ = settings.database
        results["database"] = True
    except Exception as e:
        results["database"] = False
        results["database_error"] = str(e)

    return results
