"""
Application Configuration

Uses Pydantic Settings for type-safe configuration.
"""

from pathlib import Path
from typing import List, Optional
from pydantic_settings import BaseSettings
from pydantic import Field, field_validator, ConfigDict

# Project root: repository checkout
PROJECT_ROOT = Path(__file__).parent.parent.parent
# Local object store: <root>/data/objects
DATA_DIR = PROJECT_ROOT / "data"


class Settings(BaseSettings):
    """Application settings with validation."""

    # === Core ===
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Logging level")

    # === Database ===
    database_url: str = Field(
        default="sqlite:///./app.db",
        description="Database connection URL"
    )

    # === CORS ===
    cors_origins: List[str] = Field(
        default_factory=lambda: ["http://localhost:5173", "http://localhost:3000"],
        description="Allowed CORS origins"
    )

    # === Strava ===
    strava_client_id: Optional[str] = Field(default=None)
    strava_client_secret: Optional[str] = Field(
        default=None,
        validation_alias="strava_secret"  # Also accept STRAVA_SECRET
    )
    strava_api_url: str = Field(default="https://www.strava.com/api/v3")
    strava_request_timeout: float = Field(default=30.0)

    # === Object storage ===
    object_store_root: Path = Field(
        default=DATA_DIR / "objects",
        description="Root directory for stream payloads and re-hosted photos"
    )

    # === Migration queue ===
    migration_background_enabled: bool = Field(
        default=True,
        description="Run the tick loop inside the API process"
    )
    migration_tick_interval_seconds: int = Field(default=60)
    migration_tick_time_limit_seconds: int = Field(default=120)
    migration_tick_safety_buffer_seconds: int = Field(default=15)
    migration_job_max_retries: int = Field(default=5)
    migration_item_max_retries: int = Field(default=3)
    migration_dedup_window_minutes: int = Field(
        default=5,
        description="Provider activity starting this close to a native one is a duplicate"
    )

    # === Cross-service integration ===
    cross_service_api_key: Optional[str] = Field(
        default=None,
        description="Shared API key for internal endpoints (cron tick trigger)"
    )

    @field_validator('database_url')
    @classmethod
    def fix_postgres_url(cls, v: str) -> str:
        """Fix Render/Railway postgres:// URL to postgresql://"""
        if v.startswith("postgres://"):
            return v.replace("postgres://", "postgresql://", 1)
        return v

    @field_validator('cors_origins', mode='before')
    @classmethod
    def parse_cors_origins(cls, v):
        """Parse CORS origins from comma-separated string."""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(',')]
        return v

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )


# Global settings instance
settings = Settings()
