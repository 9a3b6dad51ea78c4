"""
Configuration settings for the claims review portal.
Loads settings from environment variables and provides typed configuration.
"""

from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = "InsureVis Claims Portal"
    app_version: str = "0.1.0"
    debug: bool = False
    environment: str = "production"

    # API
    api_prefix: str = "/api"
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Database (the hosted platform's Postgres)
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_db: str = "postgres"
    postgres_user: str = "postgres"
    postgres_password: str = "postgres"
    database_pool_size: int = 10
    database_max_overflow: int = 20

    @property
    def database_url(self) -> str:
        """Construct PostgreSQL database URL (used by the asyncpg change feed)."""
        return (
            f"postgresql://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def async_database_url(self) -> str:
        """Construct async PostgreSQL database URL."""
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    # Hosted platform (auth, storage, edge functions)
    backend_url: str = "http://localhost:54321"
    backend_anon_key: str = ""
    # When set, url and anon key are fetched from here once at startup
    backend_config_url: Optional[str] = None
    backend_timeout: int = 30  # seconds

    # Storage
    storage_bucket: str = "insurevis-documents"
    signed_url_expiry_seconds: int = 3600
    prefer_storage_download: bool = True

    # Notifications
    notification_function: str = "send-notification"
    notification_timeout: int = 15  # seconds

    @property
    def notification_url(self) -> str:
        """Edge function endpoint used to push notifications to claim owners."""
        return f"{self.backend_url.rstrip('/')}/functions/v1/{self.notification_function}"

    # Realtime / list synchronisation
    realtime_enabled: bool = True
    claims_channel: str = "claims_changes"
    documents_channel: str = "documents_changes"
    sync_debounce_seconds: float = 0.45
    sync_poll_interval_seconds: float = 5.0

    # Auth flow
    password_min_length: int = 8
    logout_flag_seconds: int = 1

    # CORS
    cors_origins: list[str] = ["*"]
    cors_allow_credentials: bool = True
    cors_allow_methods: list[str] = ["*"]
    cors_allow_headers: list[str] = ["*"]

    # Logging
    log_level: str = "INFO"
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


# Global settings instance
settings = Settings()
