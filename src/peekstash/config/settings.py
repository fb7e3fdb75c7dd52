"""Application settings loaded from environment variables.

Settings are grouped into nested sections. Environment variables use a double
underscore between the section and the field, e.g. ``DATABASE__URL`` or
``SYNC__PAGE_SIZE``. A ``.env`` file in the working directory is honoured.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseModel):
    """Database connection settings."""

    url: str = Field(
        default="sqlite+aiosqlite:///./data/peekstash.db",
        description="SQLAlchemy async database URL",
    )
    echo: bool = Field(default=False, description="Echo SQL statements")
    busy_timeout: int = Field(
        default=30, ge=1, description="Seconds SQLite waits on a locked database"
    )
    wal_mode: bool = Field(default=True, description="Use SQLite WAL journal mode")


class StashSettings(BaseModel):
    """Legacy single-instance configuration.

    Only read on first start to seed the instance table when it is empty.
    Once instances exist in the database these values are ignored.
    """

    url: str | None = Field(default=None, description="Stash GraphQL endpoint")
    api_key: str = Field(default="", description="Stash API key")
    timeout: float = Field(default=30.0, gt=0, description="HTTP timeout in seconds")

    @field_validator("url")
    @classmethod
    def _strip_url(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip()
        return value or None


class SyncConfig(BaseModel):
    """Sync engine tuning knobs."""

    page_size: int = Field(default=500, ge=1, le=5000)
    cleanup_page_size: int = Field(default=5000, ge=1)
    default_interval_minutes: int = Field(default=60, ge=1)
    startup_sync_enabled: bool = Field(default=True)
    startup_delay_seconds: float = Field(default=5.0, ge=0)
    # 0.0 disables the guard. 0.5 refuses a cleanup that would soft-delete
    # more than half of the live rows of a type in one pass.
    max_delete_ratio: float = Field(default=0.0, ge=0.0, le=1.0)


class ObservabilitySettings(BaseModel):
    """Logging settings."""

    log_json_format: bool = Field(default=False)


class ApiSettings(BaseModel):
    """HTTP API settings."""

    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8765, ge=1, le=65535)
    default_per_page: int = Field(default=40, ge=1)
    max_per_page: int = Field(default=500, ge=1)


class Settings(BaseSettings):
    """Root settings object."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    app_name: str = Field(default="peekstash")
    log_level: str = Field(default="INFO")

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    stash: StashSettings = Field(default_factory=StashSettings)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)
    api: ApiSettings = Field(default_factory=ApiSettings)

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid log level: {value}")
        return level

    def _get_sqlite_db_path(self) -> Path | None:
        """Return the SQLite file path, or None for other backends and :memory:."""
        url = self.database.url
        if not url.startswith("sqlite"):
            return None
        _, _, path = url.partition(":///")
        if not path or path.startswith(":memory:"):
            return None
        return Path(path)

    def ensure_directories(self) -> None:
        """Create the parent directory of the SQLite database if needed."""
        db_path = self._get_sqlite_db_path()
        if db_path is not None and str(db_path.parent) not in ("", "."):
            db_path.parent.mkdir(parents=True, exist_ok=True)


@lru_cache
def get_settings() -> Settings:
    """Return the cached settings instance."""
    return Settings()
