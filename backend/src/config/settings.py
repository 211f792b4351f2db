"""
Application settings configuration for the recurring events backend.

Centralized settings loaded from environment variables.
"""

from functools import lru_cache
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class AppSettings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Environment Variables:
        ECOSERIES_DEFAULT_DURATION_MINUTES: Duration of a first instance when the
            series does not specify one (default: 120)
        ECOSERIES_MAX_RECURRENCE_INTERVAL: Largest accepted recurrence step
            (default: 52)
        ECOSERIES_CORS_ORIGINS: Comma-separated allowed CORS origins
            (default: "http://localhost:3000")
        ECOSERIES_RETRY_AFTER_SECONDS: Retry-After hint sent with
            concurrent modification conflicts (default: 1)

    Database URL and logging are read directly from the environment by
    db/database.py and utils/logging_config.py.
    """

    default_duration_minutes: int = Field(
        default=120,
        validation_alias="ECOSERIES_DEFAULT_DURATION_MINUTES",
        ge=1,
        le=24 * 60,
    )

    max_recurrence_interval: int = Field(
        default=52,
        validation_alias="ECOSERIES_MAX_RECURRENCE_INTERVAL",
        ge=1,
        description="Upper bound for the interval of any recurrence rule"
    )

    cors_origins: str = Field(
        default="http://localhost:3000",
        validation_alias="ECOSERIES_CORS_ORIGINS",
    )

    retry_after_seconds: int = Field(
        default=1,
        validation_alias="ECOSERIES_RETRY_AFTER_SECONDS",
        ge=0,
    )

    class Config:
        env_file = ".env"
        extra = "ignore"

    @field_validator("cors_origins")
    @classmethod
    def validate_cors_origins(cls, v: str) -> str:
        """Reject a wildcard origin; credentials are allowed on CORS requests."""
        if "*" in {o.strip() for o in v.split(",")}:
            raise ValueError("ECOSERIES_CORS_ORIGINS must list explicit origins, not '*'")
        return v

    @property
    def cors_origins_list(self) -> List[str]:
        """Allowed CORS origins as a list."""
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


@lru_cache()
def get_settings() -> AppSettings:
    """
    Get cached application settings instance.

    Returns:
        AppSettings: Configured application settings from environment
    """
    return AppSettings()
