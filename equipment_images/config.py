"""
Configuration management for the equipment image pipeline.

Uses pydantic-settings for type-safe configuration with environment variable support.
"""

from pathlib import Path
from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """Equipment registry connection settings."""

    model_config = SettingsConfigDict(
        env_prefix="POSTGRES_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    user: str = "broadcast_kb"
    password: str = ""  # Required: Set POSTGRES_PASSWORD in .env
    host: str = "localhost"
    port: int = 5432
    db: str = "broadcast_kb"

    # Full SQLAlchemy URL, takes precedence over the POSTGRES_* parts
    database_url: Optional[str] = Field(default=None, validation_alias="DATABASE_URL")

    @property
    def url(self) -> str:
        """Construct database URL."""
        if self.database_url:
            return self.database_url
        return f"postgresql://{self.user}:{self.password}@{self.host}:{self.port}/{self.db}"


class OracleSettings(BaseSettings):
    """Knowledge oracle (Anthropic Messages API) settings."""

    model_config = SettingsConfigDict(
        env_prefix="ORACLE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    anthropic_api_key: str = ""
    model: str = "claude-sonnet-4-20250514"
    max_tokens_image: int = 300
    max_tokens_page: int = 500
    timeout: float = 30.0  # seconds


class ImageSettings(BaseSettings):
    """Upload directory and direct download settings."""

    model_config = SettingsConfigDict(
        env_prefix="IMAGES_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Files live at upload_root / subdir / <token><ext>
    upload_root: Path = Field(default=Path("./uploads"))
    subdir: str = "equipment"

    # Direct download
    download_timeout: float = 15.0  # seconds
    max_redirects: int = 5
    min_download_bytes: int = 1000
    http_max_retries: int = 2
    http_retry_delay: float = 1.0  # seconds
    allow_private_hosts: bool = False

    # Manual uploads
    max_upload_bytes: int = 10 * 1024 * 1024

    @field_validator("subdir")
    @classmethod
    def plain_subdir(cls, v: str) -> str:
        """The subdir is a single path segment."""
        v = v.strip("/")
        if not v or "/" in v or "\\" in v or v in (".", ".."):
            raise ValueError("subdir must be a single directory name")
        return v

    @property
    def output_dir(self) -> Path:
        return self.upload_root / self.subdir


class BrowserSettings(BaseSettings):
    """Browser automation settings."""

    model_config = SettingsConfigDict(
        env_prefix="BROWSER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    headless: bool = True
    viewport_width: int = 1920
    viewport_height: int = 1080
    navigation_timeout_ms: int = 30000
    settle_ms: int = 2000  # wait for lazy images after navigation
    user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    )


class BulkSettings(BaseSettings):
    """Bulk scheduler settings."""

    model_config = SettingsConfigDict(
        env_prefix="BULK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    group_limit: int = 10
    delay_seconds: float = 1.0  # between groups, respects oracle/site rate limits


class Settings(BaseSettings):
    """Main settings class that combines all settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Sub-settings
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    oracle: OracleSettings = Field(default_factory=OracleSettings)
    images: ImageSettings = Field(default_factory=ImageSettings)
    browser: BrowserSettings = Field(default_factory=BrowserSettings)
    bulk: BulkSettings = Field(default_factory=BulkSettings)

    # Logging
    log_level: str = "INFO"
    log_file: Optional[Path] = None  # e.g. ./logs/equipment_images.log
    log_rotation: str = "10 MB"
    log_retention: str = "1 week"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()


# Convenience function for quick access
settings = get_settings()
