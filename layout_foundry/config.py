"""
Configuration management for Layout Foundry.
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    # Application
    app_name: str = Field(default="Layout Foundry")
    debug: bool = Field(default=False)
    environment: str = Field(default="development")

    # API
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8000)

    # Database
    database_url: str = Field(default="sqlite:///./layout_foundry.db")

    # Blob storage
    blob_storage_uri: str = Field(
        default="file://./data/blobs",
        description="Base URI for stored blobs (file:// only in this release)",
    )

    # Signed access
    signing_secret: str = Field(default="change-me")
    signed_url_default_ttl_ms: int = Field(default=300_000, ge=0)
    signed_url_max_ttl_ms: int = Field(default=3_600_000, ge=0)
    allow_unsigned_downloads: bool = Field(
        default=False,
        description="Local diagnostics only. Ignored when environment is production.",
    )

    # Artifact data layer
    recent_splits_default_limit: int = Field(default=20, ge=1)
    recent_splits_cap: int = Field(default=100, ge=1)
    enforce_split_transitions: bool = Field(
        default=False,
        description="Reject backward split status moves such as completed -> processing.",
    )

    # Version store
    version_keep_count: int = Field(default=10, ge=0)

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


@lru_cache()
def get_settings() -> Settings:
    """Get application settings."""
    return Settings()
