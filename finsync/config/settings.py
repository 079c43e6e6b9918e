"""Configuration management using Pydantic Settings."""

from pathlib import Path
from typing import Annotated, Literal, Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class AppConfig(BaseSettings):
    """Application configuration."""

    model_config = SettingsConfigDict(extra="ignore")

    env: Literal["development", "production", "testing"] = Field(default="development", alias="APP_ENV")
    debug: bool = Field(default=False, alias="APP_DEBUG")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", alias="LOG_LEVEL"
    )
    log_format: Literal["json", "console"] = Field(default="json", alias="LOG_FORMAT")


class GmailConfig(BaseSettings):
    """Gmail API configuration."""

    model_config = SettingsConfigDict(extra="ignore")

    credentials_path: Path = Field(alias="GMAIL_CREDENTIALS_PATH")
    token_path: Path = Field(alias="GMAIL_TOKEN_PATH")
    search_query: str = Field(
        default="category:primary has:attachment (invoice OR statement OR receipt OR tax OR payment)",
        alias="GMAIL_SEARCH_QUERY",
    )
    page_size: int = Field(default=100, ge=1, le=500, alias="GMAIL_PAGE_SIZE")
    max_pages: int = Field(default=10, ge=1, alias="GMAIL_MAX_PAGES")
    fetch_concurrency: int = Field(default=5, ge=1, alias="GMAIL_FETCH_CONCURRENCY")
    min_attachment_bytes: int = Field(default=10 * 1024, ge=0, alias="GMAIL_MIN_ATTACHMENT_BYTES")

    @field_validator("credentials_path", "token_path", mode="before")
    @classmethod
    def validate_path(cls, v: str | Path) -> Path:
        """Convert string to Path."""
        return Path(v) if isinstance(v, str) else v


class DriveConfig(BaseSettings):
    """Google Drive configuration."""

    model_config = SettingsConfigDict(extra="ignore")

    root_folder_id: str = Field(default="root", alias="DRIVE_ROOT_FOLDER_ID")
    root_folder_name: str = Field(default="Zano", alias="DRIVE_ROOT_FOLDER_NAME")
    default_mime_type: str = Field(default="application/pdf", alias="DRIVE_DEFAULT_MIME_TYPE")


class RetryConfig(BaseSettings):
    """Backoff policy shared by every remote call."""

    model_config = SettingsConfigDict(extra="ignore")

    max_attempts: int = Field(default=3, ge=1, alias="RETRY_MAX_ATTEMPTS")
    base_delay_seconds: float = Field(default=1.0, ge=0.0, alias="RETRY_BASE_DELAY")
    max_delay_seconds: float = Field(default=10.0, ge=0.0, alias="RETRY_MAX_DELAY")
    jitter_max_seconds: float = Field(default=1.0, ge=0.0, alias="RETRY_JITTER_MAX")
    retryable_statuses: Annotated[list[int], NoDecode] = Field(
        default=[408, 429, 500, 502, 503, 504], alias="RETRY_STATUSES"
    )

    @field_validator("retryable_statuses", mode="before")
    @classmethod
    def parse_statuses(cls, v: str | list[int]) -> list[int]:
        """Parse comma-separated string or list."""
        if isinstance(v, str):
            return [int(code.strip()) for code in v.split(",") if code.strip()]
        return v


class ClassifierConfig(BaseSettings):
    """AI document classifier configuration."""

    model_config = SettingsConfigDict(extra="ignore")

    mode: Literal["proxy", "direct"] = Field(default="proxy", alias="CLASSIFIER_MODE")
    proxy_url: str = Field(default="http://localhost:3000/api/classify", alias="CLASSIFIER_PROXY_URL")
    api_key: Optional[SecretStr] = Field(default=None, alias="GEMINI_API_KEY")
    model: str = Field(default="gemini-2.0-flash", alias="GEMINI_MODEL")
    api_base_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta", alias="GEMINI_API_BASE_URL"
    )
    timeout_seconds: float = Field(default=30.0, alias="CLASSIFIER_TIMEOUT")
    confidence_threshold: float = Field(
        default=85.0, ge=0.0, le=100.0, alias="CLASSIFIER_CONFIDENCE_THRESHOLD"
    )

    # The model call gets a slower backoff than the Google APIs
    max_attempts: int = Field(default=3, ge=1, alias="CLASSIFIER_MAX_RETRIES")
    base_delay_seconds: float = Field(default=2.0, alias="CLASSIFIER_BASE_DELAY")
    max_delay_seconds: float = Field(default=15.0, alias="CLASSIFIER_MAX_DELAY")


class RedisConfig(BaseSettings):
    """Redis configuration."""

    model_config = SettingsConfigDict(extra="ignore")

    url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")
    processed_key: str = Field(default="zano:processed_emails", alias="REDIS_PROCESSED_KEY")
    history_key: str = Field(default="zano:saved_emails", alias="REDIS_HISTORY_KEY")


class SyncConfig(BaseSettings):
    """Sync run configuration."""

    model_config = SettingsConfigDict(extra="ignore")

    concurrency: int = Field(default=5, ge=1, alias="SYNC_CONCURRENCY")
    max_items: int = Field(default=500, ge=1, alias="SYNC_MAX_ITEMS")
    timeout_seconds: float = Field(default=300.0, ge=0.0, alias="SYNC_TIMEOUT_SECONDS")  # 0 disables
    lookback_days: Optional[int] = Field(default=None, ge=1, alias="SYNC_LOOKBACK_DAYS")


class Settings(BaseSettings):
    """Master settings combining all configuration sections."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    app: AppConfig = Field(default_factory=AppConfig)
    gmail: GmailConfig = Field(default_factory=GmailConfig)
    drive: DriveConfig = Field(default_factory=DriveConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    classifier: ClassifierConfig = Field(default_factory=ClassifierConfig)
    redis: RedisConfig = Field(default_factory=RedisConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)


# Global settings instance
settings = Settings()
