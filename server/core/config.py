"""Environment-driven configuration with Pydantic v2."""

from typing import List, Literal, Optional
from pathlib import Path
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings driven entirely by environment variables."""

    # Server Configuration
    host: str = Field(default="127.0.0.1", env="HOST")
    port: int = Field(default=8010, env="PORT", ge=1024, le=65535)
    debug: bool = Field(default=False, env="DEBUG")
    cors_origins: List[str] = Field(default_factory=list, env="CORS_ORIGINS")

    # Database Configuration
    database_url: str = Field(default="sqlite+aiosqlite:///./data/notes_cache.db", env="DATABASE_URL")
    database_echo: bool = Field(default=False, env="DATABASE_ECHO")
    database_pool_size: int = Field(default=20, env="DATABASE_POOL_SIZE", ge=5, le=100)
    database_max_overflow: int = Field(default=30, env="DATABASE_MAX_OVERFLOW", ge=10, le=100)

    # Cache Configuration
    cache_backend: Literal["sqlite", "memory"] = Field(default="sqlite", env="CACHE_BACKEND")
    cache_ttl: int = Field(default=43200, env="CACHE_TTL", ge=60)  # 12 hours
    enrichment_cache_ttl: int = Field(default=604800, env="ENRICHMENT_CACHE_TTL", ge=60)  # 7 days
    owner_directory_cache_ttl: int = Field(default=3600, env="OWNER_DIRECTORY_CACHE_TTL", ge=0)

    # Sync Engine
    sync_batch_size: int = Field(default=5, env="SYNC_BATCH_SIZE", ge=1, le=50)
    sync_batch_delay_seconds: float = Field(default=1.0, env="SYNC_BATCH_DELAY_SECONDS", ge=0.0, le=60.0)
    sync_freshness_hours: float = Field(default=6.0, env="SYNC_FRESHNESS_HOURS", gt=0)
    sync_stale_run_seconds: int = Field(default=3600, env="SYNC_STALE_RUN_SECONDS", ge=60)
    sync_cron: str = Field(default="0 */6 * * *", env="SYNC_CRON")
    sync_on_startup: bool = Field(default=False, env="SYNC_ON_STARTUP")

    # Cleanup
    cleanup_interval: int = Field(default=900, env="CLEANUP_INTERVAL", ge=10)
    cleanup_batch_limit: int = Field(default=100, env="CLEANUP_BATCH_LIMIT", ge=1, le=10000)

    # Google Drive (remote file repository)
    google_client_id: Optional[str] = Field(default=None, env="GOOGLE_CLIENT_ID")
    google_client_secret: Optional[str] = Field(default=None, env="GOOGLE_CLIENT_SECRET")
    google_refresh_token: Optional[str] = Field(default=None, env="GOOGLE_REFRESH_TOKEN")
    drive_root_folder_id: Optional[str] = Field(default=None, env="DRIVE_ROOT_FOLDER_ID")

    # Enrichment
    openai_api_key: Optional[str] = Field(default=None, env="OPENAI_API_KEY")
    openai_model: str = Field(default="gpt-3.5-turbo", env="OPENAI_MODEL")
    openai_base_url: str = Field(default="https://api.openai.com/v1", env="OPENAI_BASE_URL")
    enrichment_timeout: int = Field(default=30, env="ENRICHMENT_TIMEOUT", ge=5, le=300)
    enrichment_max_retries: int = Field(default=2, env="ENRICHMENT_MAX_RETRIES", ge=0, le=10)

    # Logging
    log_level: str = Field(default="INFO", env="LOG_LEVEL")
    log_format: str = Field(default="json", env="LOG_FORMAT")
    log_file: Optional[str] = Field(default=None, env="LOG_FILE")

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v):
        """Ensure database directory exists for SQLite."""
        if v and v.startswith("sqlite") and ":memory:" not in v:
            if ":///" in v:
                db_path = v.split("///")[1]
                Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        return v

    @property
    def drive_configured(self) -> bool:
        """Check if all Google Drive credentials are present."""
        return all([
            self.google_client_id,
            self.google_client_secret,
            self.google_refresh_token,
            self.drive_root_folder_id,
        ])

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
        "env_parse_none_str": "none",
        "env_nested_delimiter": "__",
    }
