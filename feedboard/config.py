"""Configuration management for the application."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Database
    database_url: str = Field(default="sqlite:///./feedboard.db")

    # Redis (only used when sweeps run on Celery workers)
    redis_url: str = Field(default="redis://localhost:6379/0")

    # Push channel
    keepalive_interval_seconds: float = Field(default=30.0, gt=0)

    # Background jobs
    scheduler_backend: Literal["inprocess", "celery"] = Field(default="inprocess")
    override_sweep_interval_seconds: float = Field(default=60.0, gt=0)
    note_sweep_interval_seconds: float = Field(default=3600.0, gt=0)
    ranking_debounce_ms: int = Field(default=500, ge=0)

    # Time mode
    override_duration_minutes: int = Field(default=60, gt=0)

    # API
    environment: str = Field(default="development")
    log_level: str = Field(default="INFO")
    cors_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:3000", "http://localhost:5173"]
    )

    @model_validator(mode="after")
    def validate_production_settings(self) -> "Settings":
        """Validate that production has sane settings."""
        if self.environment == "production":
            if "localhost" in self.database_url or self.database_url.startswith("sqlite:///./"):
                raise ValueError("DATABASE_URL should point at a persistent database in production")
        return self

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == "development"

    @property
    def ranking_debounce_seconds(self) -> float:
        return self.ranking_debounce_ms / 1000


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
