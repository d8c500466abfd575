"""
Configuration module using Pydantic Settings.
Handles all environment variables and engine configuration.
"""

from typing import Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine settings from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # App settings
    app_name: str = Field(default="budget-insights", description="Application name")
    version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="production", description="Environment name")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_json: bool = Field(default=True, description="Render logs as JSON instead of console output")

    # Storage collaborators
    storage_backend: str = Field(default="memory", description="Ledger/store backend: memory or firestore")
    firestore_project_id: Optional[str] = Field(default=None, description="Firestore project ID")
    firestore_database: str = Field(default="(default)", description="Firestore database name")
    use_firestore_emulator: bool = Field(default=False, description="Use Firestore emulator")
    firestore_emulator_host: str = Field(default="localhost:8081", description="Firestore emulator host")

    # Redis/Caching settings
    redis_url: Optional[str] = Field(default=None, description="Redis connection URL")
    cache_default_ttl: int = Field(default=300, ge=1, description="Default cache TTL in seconds")
    cache_max_entries: int = Field(default=5000, ge=1, description="Max entries for the in-memory cache")
    trend_cache_ttl: int = Field(default=3600, ge=1, description="Trend analysis cache TTL in seconds")

    # Materialized views
    view_refresh_lock_ttl: int = Field(default=1800, ge=1, description="Refresh lease TTL in seconds")
    view_status_ttl: int = Field(default=3600, ge=1, description="Refresh status cache TTL in seconds")
    view_refresh_interval: int = Field(default=3600, ge=60, description="Seconds between scheduled refreshes")

    # Insights
    insight_validity_days: int = Field(default=30, ge=1, le=365, description="Days a generated insight stays valid")
    pattern_materiality_threshold_cents: int = Field(
        default=1_000_000,
        ge=0,
        description="Average amount above which a confident pattern is high priority"
    )
    anomaly_lookback_days: int = Field(default=180, ge=7, le=730, description="History window for anomaly detection")
    anomaly_recent_days: int = Field(default=30, ge=1, le=180, description="Recent window for merchant/category anomalies")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.upper()

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v):
        """Validate environment."""
        valid_envs = ["development", "testing", "staging", "production"]
        if v.lower() not in valid_envs:
            raise ValueError(f"Invalid environment. Must be one of: {valid_envs}")
        return v.lower()

    @field_validator("storage_backend")
    @classmethod
    def validate_storage_backend(cls, v):
        """Validate storage backend."""
        valid_backends = ["memory", "firestore"]
        if v.lower() not in valid_backends:
            raise ValueError(f"Invalid storage backend. Must be one of: {valid_backends}")
        return v.lower()

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == "development"

    @property
    def is_testing(self) -> bool:
        """Check if running in testing mode."""
        return self.environment == "testing"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == "production"

    @property
    def uses_redis(self) -> bool:
        """Check if a Redis cache is configured."""
        return bool(self.redis_url)


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get settings instance. Useful for dependency injection."""
    return settings
