"""Application settings loaded from environment."""

from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from motingest.errors import ConfigurationError


SQLITE_PREFIX = "sqlite:///"


class Settings(BaseSettings):
    """Strongly typed settings for the pipeline."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Database
    database_url: str = Field(default="sqlite:///db/motdata.db", alias="DATABASE_URL")

    # MOT trade API
    mot_api_base_url: str = Field(
        default="https://beta.check-mot.service.gov.uk",
        alias="MOT_API_BASE_URL",
    )
    mot_api_key: Optional[str] = Field(default=None, alias="MOT_API_KEY")
    mot_timeout_seconds: float = Field(default=30, alias="MOT_TIMEOUT_SECONDS")
    mot_max_attempts: int = Field(default=5, ge=1, alias="MOT_MAX_ATTEMPTS")
    mot_retry_backoff_seconds: float = Field(
        default=1.0, ge=0, alias="MOT_RETRY_BACKOFF_SECONDS"
    )
    mot_retry_backoff_max_seconds: float = Field(
        default=8.0, ge=0, alias="MOT_RETRY_BACKOFF_MAX_SECONDS"
    )

    # Ingestion
    ingest_page_delay_seconds: float = Field(
        default=1.0, ge=0, alias="INGEST_PAGE_DELAY_SECONDS"
    )
    ingest_empty_streak_limit: int = Field(default=5, ge=0, alias="INGEST_EMPTY_STREAK_LIMIT")
    ingest_date_max_pages: int = Field(default=1440, ge=1, alias="INGEST_DATE_MAX_PAGES")

    # Runtime
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    def require_api_key(self, override: Optional[str] = None) -> str:
        """Return the API key to use or raise."""
        api_key = override or self.mot_api_key
        if not api_key:
            raise ConfigurationError("an API key is required (--api-key or MOT_API_KEY)")
        return api_key

    def is_sqlite(self) -> bool:
        return self.database_url.startswith(SQLITE_PREFIX)

    def sqlite_path(self) -> Path:
        """Return the SQLite database path for sqlite:/// URLs."""
        if not self.is_sqlite():
            raise ConfigurationError(f"not a sqlite URL: {self.database_url}")
        return Path(self.database_url[len(SQLITE_PREFIX):])
