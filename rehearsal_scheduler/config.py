"""
Configuration management for Rehearsal Scheduler.

Uses Pydantic Settings for type-safe environment variable loading.
Configured via .env file in project root.

Scheduling defaults (quorum fraction, expansion cap, commit timeout) are read
here only at the application boundary and passed explicitly into the
scheduling service; the domain layer never imports this module.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be configured via .env file or environment variables.
    """

    # Python & Application
    python_env: Literal["development", "production"] = Field(
        default="development",
        description="Application environment"
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level"
    )

    # Database
    database_url: str = Field(
        default="sqlite:///./data/rehearsal_scheduler.db",
        description="Database connection URL"
    )

    # Timezone used to normalize human-entered local times
    timezone: str = Field(
        default="UTC",
        description="Default timezone for local-time input (IANA timezone name, e.g., Europe/Berlin)"
    )

    # Scheduling
    quorum_fraction: float = Field(
        default=2 / 3,
        gt=0,
        le=1,
        description="Fraction of invited members that must be available for quorum"
    )
    max_expansion: int = Field(
        default=500,
        ge=1,
        description="Hard cap on occurrences generated from one recurrence rule"
    )
    commit_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Deadline for a series commit before it is rolled back"
    )
    lock_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        description="How long to wait for a band/venue scheduling lock"
    )

    # Webhook notifications
    webhook_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="HTTP timeout for webhook deliveries"
    )
    webhook_max_retries: int = Field(
        default=3,
        ge=1,
        description="Delivery attempts per webhook before giving up"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        from dateutil import tz

        if tz.gettz(v) is None:
            raise ValueError(f"Unknown timezone: {v}")
        return v

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.python_env == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.python_env == "production"

    @property
    def uses_postgresql(self) -> bool:
        """Check if PostgreSQL is the configured database."""
        return "postgresql" in self.database_url.lower()

    def validate_production_config(self) -> None:
        """
        Validate configuration for production environment.

        Raises:
            ValueError: If required production settings are missing or invalid
        """
        if not self.is_production:
            return

        errors = []

        # Advisory locks and concurrent commits need a real server database
        if not self.uses_postgresql:
            errors.append(
                "Production requires PostgreSQL. "
                "Set DATABASE_URL to a PostgreSQL connection string."
            )

        if errors:
            raise ValueError("Production configuration errors:\n- " + "\n- ".join(errors))


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    This function is cached to ensure we only load settings once.
    Use this function throughout the application to access settings.

    Returns:
        Settings instance loaded from environment

    Example:
        >>> from rehearsal_scheduler.config import get_settings
        >>> settings = get_settings()
        >>> print(settings.quorum_fraction)
    """
    return Settings()
