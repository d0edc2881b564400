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
    supabase_url: Optional[str] = Field(
        None,
        description="Supabase project URL"
    )
    supabase_key: Optional[str] = Field(
        None,
        description="Supabase anon/public key"
    )

    # ===================
    # IMPORT PIPELINE
    # ===================
    import_max_file_mb: int = Field(
        default=10,
        ge=1,
        le=100,
        description="Maximum accepted upload size in MB"
    )
    import_sample_rows: int = Field(
        default=5,
        ge=0,
        le=50,
        description="Rows returned as preview after upload"
    )
    import_error_limit: int = Field(
        default=50,
        ge=1,
        le=1000,
        description="Maximum row errors kept in an import summary"
    )
    import_suggestion_threshold: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        description="Minimum similarity for a suggested column mapping"
    )
    import_session_backend: str = Field(
        default="memory",
        pattern="^(memory|supabase)$",
        description="Where import sessions are kept between requests"
    )
    import_session_ttl_minutes: int = Field(
        default=120,
        ge=5,
        le=10080,
        description="Minutes an idle in-memory import session is kept"
    )
    import_max_workers: int = Field(
        default=1,
        ge=1,
        le=16,
        description="Worker threads used to persist rows during execution"
    )
    import_row_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        le=600,
        description="Seconds a single row write may take before it is failed"
    )
    import_retain_manual_matches: bool = Field(
        default=False,
        description="Keep manual matches sent to /validate for the later execute call"
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

    @property
    def supabase_configured(self) -> bool:
        """Check if Supabase credentials are present."""
        return bool(self.supabase_url and self.supabase_key)

    @property
    def import_max_file_bytes(self) -> int:
        return self.import_max_file_mb * 1024 * 1024


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload.

    Returns:
        Settings: Application settings

    Raises:
        ValidationError: If env vars are invalid
    """
    return Settings()


# For convenient imports: from config.settings import settings
settings = get_settings()
