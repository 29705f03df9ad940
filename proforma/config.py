"""
Application configuration using Pydantic Settings.
"""

import os
from functools import lru_cache
from pydantic_settings import BaseSettings


def get_env_file() -> str:
    """Pick .env.<APP_ENV>, defaulting to development."""
    env = os.getenv("APP_ENV", "development")
    if env in ("production", "test"):
        return f".env.{env}"
    return ".env.development"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    database_url: str = "sqlite:///./dev.db"

    # App settings
    app_name: str = "Proforma Engine"
    debug: bool = False
    log_level: str = "INFO"
    app_env: str = "development"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # Projection
    horizon_months: int = 60
    default_vacancy_pct: float = 5.0
    percentage_tolerance: float = 0.01

    # Waterfall defaults for new projects
    preferred_return_rate: float = 0.08
    accrual_period: str = "monthly"

    class Config:
        env_file = get_env_file()
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
