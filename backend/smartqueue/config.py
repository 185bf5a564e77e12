"""
Application configuration using Pydantic Settings.
Loads from environment variables and .env file.
"""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Application
    app_name: str = "SmartQueue"
    app_env: str = "development"  # development, staging, production
    debug: bool = True
    log_level: str = "INFO"

    # Storage
    storage_backend: str = "memory"  # memory, sql
    database_url: str = "postgresql://localhost:5432/smartqueue"

    # Service-rate estimation
    ema_alpha: float = 0.3
    default_service_rate: float = 1.0  # customers per minute
    min_service_rate: float = 0.1
    default_p50_minutes: int = 5
    default_p90_minutes: int = 10
    fallback_minutes_per_position: int = 5
    measurement_window_seconds: float = 60.0
    ema_carry_forward: bool = False  # seed a new hour from the previous hour's EMA

    # Time-of-day categories are evaluated in this timezone
    timezone: str = "UTC"

    # Queues created lazily from stats updates get this capacity
    default_max_capacity: int = 100

    # Timeouts (seconds)
    lock_timeout_seconds: float = 2.0
    store_timeout_seconds: float = 5.0
    notify_timeout_seconds: float = 5.0

    # Notify tickets once they move within this many places of the front
    notify_ahead_positions: int = 3

    # Admin API
    admin_api_key: Optional[str] = None  # Set this to enable queue administration

    cors_origins: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",  # Vite dev server
    ]

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def async_database_url(self) -> str:
        """Database URL with an async driver selected."""
        url = self.database_url
        if url.startswith("postgresql://"):
            return url.replace("postgresql://", "postgresql+asyncpg://", 1)
        if url.startswith("sqlite://"):
            return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
        return url


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
