"""Application configuration using pydantic-settings."""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Attributes:
        app_name: Name of the application.
        debug: Enable debug mode (SQL echo, FastAPI debug).
        database_url: Async SQLAlchemy URL of the local store.
        download_dir: Last-resort target for backups when no folder is usable.
        auto_backup_check_minutes: Interval between auto-backup checks.
        backup_filename_label: Label used in generated backup file names.
    """

    model_config = SettingsConfigDict(
        env_prefix="LOGBOOK_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "Logbook"
    debug: bool = False

    # Database
    database_url: str = "sqlite+aiosqlite:///./logbook.db"

    # Backup
    download_dir: Path = Path.home() / "Downloads"
    auto_backup_check_minutes: int = 60
    backup_filename_label: str = "Logbook Backup"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        Settings: Application settings.
    """
    return Settings()
