"""Application configuration."""

import os
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

_ENVIRONMENT = os.getenv("ENVIRONMENT", "local")
_BUNDLED_CATALOG = Path(__file__).resolve().parent / "data" / "food_catalog.csv"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    data_dir: Path = Path.home() / ".bolus_tracker"
    catalog_path: Path | None = None
    timezone: str | None = None
    glucose_poll_interval_seconds: float = 60.0
    glucose_timeout_seconds: float = 15.0
    auto_backup_min_age_hours: float = 20.0
    auto_backup_keep: int = 7
    environment: str = _ENVIRONMENT

    model_config = SettingsConfigDict(
        env_file=(f".env.{_ENVIRONMENT}", ".env"),
        extra="ignore",
    )

    @property
    def store_path(self) -> Path:
        return self.data_dir / "data.json"

    @property
    def backup_dir(self) -> Path:
        return self.data_dir / "backups"

    @property
    def resolved_catalog_path(self) -> Path:
        return self.catalog_path or _BUNDLED_CATALOG
