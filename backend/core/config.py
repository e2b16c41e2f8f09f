"""
Centralized configuration for the Stockflow backend.

All environment variables and settings should be defined here
to avoid duplication across modules.
"""
import os
from functools import lru_cache


class Settings:
    """Application settings loaded from environment variables."""

    # CORS - comma-separated list of allowed origins
    ALLOWED_ORIGINS: list = os.environ.get(
        "ALLOWED_ORIGINS",
        "http://localhost:8090,http://localhost:5173,http://127.0.0.1:8090"
    ).split(",")

    # Database
    DB_PATH: str = os.environ.get("STOCKFLOW_DB_PATH", "data/stockflow.db")

    # Field config for reconciliation (empty = packaged reconcile_config.json)
    CONFIG_PATH: str = os.environ.get("STOCKFLOW_CONFIG_PATH", "")

    # API key for protecting collection writes (optional)
    API_KEY: str = os.environ.get("STOCKFLOW_API_KEY", "")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Singleton instance for easy import
settings = get_settings()
