"""
Application settings loaded from environment variables.

Uses pydantic-settings for validation and type safety.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    """
    Application settings.

    All values loaded from .env file or environment variables.
    Validation happens automatically on startup.
    """

    model_config = SettingsConfigDict(
        env_file=(".env", "../.env"),  # Check current dir, then parent
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"  # Ignore extra env vars
    )

    # ===================
    # SUPABASE
    # ===================
    supabase_url: str = Field(
        ...,
        description="Supabase project URL"
    )
    supabase_key: str = Field(
        ...,
        description="Supabase anon/public key"
    )

    # ===================
    # OUTBOUND WEBHOOK
    # ===================
    webhook_url: Optional[str] = Field(
        None,
        description="Endpoint notified after every entity write"
    )
    webhook_api_key: Optional[str] = Field(
        None,
        description="Value sent in the x-make-apikey header"
    )
    webhook_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        le=60,
        description="Timeout for a single webhook call"
    )
    webhook_log_enabled: bool = Field(
        default=True,
        description="Write an audit row to webhook_logs for every call"
    )

    # ===================
    # IMPORT PIPELINE
    # ===================
    import_batch_size: int = Field(
        default=100,
        ge=1,
        le=1000,
        description="Maximum rows claimed per processing pass"
    )
    import_poll_interval_seconds: float = Field(
        default=30.0,
        ge=1,
        le=3600,
        description="Seconds between scheduled processing passes"
    )
    import_scheduler_enabled: bool = Field(
        default=True,
        description="Start the background import scheduler with the API"
    )
    import_claim_timeout_minutes: int = Field(
        default=30,
        ge=1,
        le=1440,
        description="Rows stuck in processing longer than this are reclaimed"
    )
    import_unmatched_policy: str = Field(
        default="defer",
        pattern="^(defer|fail)$",
        description=(
            "Row outcome when no shipment allocation matches: "
            "defer = success + suspectedProducts, fail = failure with reason"
        )
    )

    # ===================
    # APP SETTINGS
    # ===================
    environment: str = Field(
        default="development",
        pattern="^(development|staging|production)$",
        description="Application environment"
    )
    debug: bool = Field(
        default=True,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="Logging level"
    )
    api_host: str = Field(
        default="0.0.0.0",
        description="API host"
    )
    api_port: int = Field(
        default=8000,
        ge=1000,
        le=65535,
        description="API port"
    )

    # ===================
    # COMPUTED PROPERTIES
    # ===================
    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment == "production"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload.

    Returns:
        Settings: Application settings

    Raises:
        ValidationError: If required env vars are missing or invalid
    """
    return Settings()


# For convenient imports: from config.settings import settings
settings = get_settings()
