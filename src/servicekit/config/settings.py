"""Service configuration schema and validation."""

import logging
from typing import Any, Literal, Optional

from pydantic import Field, PostgresDsn, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from servicekit.errors import ConfigurationError

LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}


class AppConfig(BaseSettings):
    """Configuration snapshot resolved once from environment variables.

    The instance is frozen: every component reads the same values for the
    whole process lifetime.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    env: Literal["development", "production", "test"] = Field(
        default="development",
        description="Deployment environment",
    )
    host: str = Field(
        default="0.0.0.0",
        description="Interface the HTTP server binds to",
    )
    port: int = Field(
        default=3000,
        ge=0,
        le=65535,
        description="Port the HTTP server listens on (0 picks a free port)",
    )
    database_url: PostgresDsn = Field(
        ...,
        description="PostgreSQL connection string",
    )
    db_pool_min: int = Field(
        default=1,
        ge=0,
        description="Minimum database connection pool size",
    )
    db_pool_max: int = Field(
        default=10,
        ge=1,
        description="Maximum database connection pool size",
    )
    db_connect_timeout: float = Field(
        default=5.0,
        gt=0,
        description="Seconds to wait for the pool to open",
    )
    db_close_timeout: float = Field(
        default=5.0,
        gt=0,
        description="Seconds to wait for a graceful pool close before terminating",
    )
    log_level: Optional[str] = Field(
        default=None,
        description="Logging level (DEBUG outside production, INFO in production)",
    )
    log_format: Literal["text", "json"] = Field(
        default="text",
        description="Console log format",
    )
    buffer_logs: bool = Field(
        default=False,
        description="Hold log records in memory until startup completes",
    )
    shutdown_grace_seconds: float = Field(
        default=10.0,
        ge=0,
        description="Seconds to let in-flight requests finish during shutdown",
    )
    compression_min_size: int = Field(
        default=1024,
        ge=0,
        description="Smallest response body (bytes) that gets compressed",
    )

    @field_validator("db_pool_max")
    @classmethod
    def validate_pool_max(cls, v: int, info) -> int:
        """Ensure pool_max >= pool_min."""
        if "db_pool_min" in info.data and v < info.data["db_pool_min"]:
            raise ValueError("db_pool_max must be >= db_pool_min")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: Optional[str]) -> Optional[str]:
        """Normalize the level name and reject unknown ones."""
        if v is None or v == "":
            return None
        level = v.upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {sorted(LOG_LEVELS)}")
        return level

    @property
    def dsn(self) -> str:
        """Connection string in the form asyncpg expects."""
        return str(self.database_url)

    @property
    def effective_log_level(self) -> int:
        """Numeric logging level, defaulting by environment."""
        if self.log_level is not None:
            return logging.getLevelName(self.log_level)
        return logging.INFO if self.env == "production" else logging.DEBUG

    def resolve(self, key: str, default: Any = None) -> Any:
        """Look up a setting by name.

        Args:
            key: Setting name, case-insensitive (e.g. "PORT" or "port")
            default: Returned when the key is unknown or its value is unset

        Returns:
            The resolved value, or ``default``
        """
        name = key.lower()
        if name not in type(self).model_fields:
            return default
        value = getattr(self, name)
        return default if value is None else value


def load_config(**overrides: Any) -> AppConfig:
    """Build the configuration snapshot, failing fast on invalid settings.

    Args:
        **overrides: Explicit values that take precedence over the environment

    Returns:
        Validated, immutable AppConfig

    Raises:
        ConfigurationError: If a required setting is missing or malformed
    """
    try:
        return AppConfig(**overrides)
    except ValidationError as e:
        problems = []
        for error in e.errors():
            field = ".".join(str(part) for part in error["loc"]) or "config"
            problems.append(f"{field.upper()}: {error['msg']}")
        raise ConfigurationError(
            "Invalid configuration: " + "; ".join(problems)
        ) from e
