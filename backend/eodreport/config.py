from __future__ import annotations

import os
from pathlib import Path
from typing import List

from pydantic import Field, computed_field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)
    """Application runtime configuration."""

    app_name: str = "EOD Report"
    environment: str = "development"
    host: str = os.getenv("EOD_HOST", "127.0.0.1")
    port: int = int(os.getenv("EOD_PORT", "8080"))
    cors_origins: List[str] = Field(
        default_factory=lambda: [
            origin.strip()
            for origin in os.getenv("EOD_CORS_ORIGINS", "http://127.0.0.1:3000,http://localhost:3000").split(",")
            if origin.strip()
        ]
    )

    # Remote report store, any SQLAlchemy URL (a Supabase Postgres DSN in production).
    database_url: str = os.getenv("EOD_DATABASE_URL", "sqlite:///./data/eod_reports.db")
    json_dir: Path = Path(os.getenv("EOD_JSON_DIR", "./data/state"))
    config_document: str = os.getenv("EOD_CONFIG_DOCUMENT", "eod-config.json")

    timezone: str = os.getenv("EOD_TIMEZONE", "America/New_York")
    log_level: str = os.getenv("EOD_LOG_LEVEL", "INFO")

    @field_validator("cors_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: str | List[str]) -> List[str]:
        if isinstance(value, list):
            return value
        if not value:
            return []
        return [origin.strip() for origin in value.split(",") if origin.strip()]

    @computed_field
    def config_path(self) -> Path:
        return self.json_dir / self.config_document


settings = Settings()

# Ensure essential directories exist
settings.json_dir.mkdir(parents=True, exist_ok=True)
