from pydantic_settings import BaseSettings
from pydantic import Field, field_validator
from functools import lru_cache
from typing import List


class Settings(BaseSettings):
    # Environment
    environment: str = Field(default="development", alias="ENVIRONMENT")

    # Database - PostgreSQL for production, SQLite for development
    database_url: str = Field(
        default="sqlite:///./toursync.db",
        alias="DATABASE_URL"
    )

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_json: bool = Field(default=False, alias="LOG_JSON")

    # CORS - Frontend URLs (comma-separated)
    allowed_origins: str = Field(
        default="http://localhost:3000,http://127.0.0.1:3000,http://localhost:5173",
        alias="ALLOWED_ORIGINS"
    )

    # ==============================================
    # Bokun Integration Settings (Server-Side Only!)
    # ==============================================
    bokun_base_url: str = Field(default="https://api.bokun.is", alias="BOKUN_BASE_URL")

    # Bokun allows 400 requests per minute per access key
    bokun_rate_limit: int = Field(default=400, alias="BOKUN_RATE_LIMIT")
    bokun_rate_window_seconds: int = Field(default=60, alias="BOKUN_RATE_WINDOW_SECONDS")

    # 429 handling: total attempts and fallback wait when no retryAfter is sent
    bokun_max_attempts: int = Field(default=3, alias="BOKUN_MAX_ATTEMPTS")
    bokun_default_retry_after: int = Field(default=60, alias="BOKUN_DEFAULT_RETRY_AFTER")

    # HTTP timeout for Bokun requests
    bokun_timeout_seconds: int = Field(default=30, alias="BOKUN_TIMEOUT_SECONDS")

    # booking-search pagination
    bokun_page_size: int = Field(default=200, alias="BOKUN_PAGE_SIZE")
    bokun_max_pages: int = Field(default=10, alias="BOKUN_MAX_PAGES")

    # Local timezone of the tours (upstream timestamps are UTC)
    tour_timezone: str = Field(default="Europe/Rome", alias="TOUR_TIMEZONE")

    # Sync windows (days)
    sync_window_days: int = Field(default=14, alias="SYNC_WINDOW_DAYS")
    full_sync_days: int = Field(default=365, alias="FULL_SYNC_DAYS")
    past_days_buffer: int = Field(default=7, alias="PAST_DAYS_BUFFER")

    # Periodic sync (runs inside the FastAPI process or worker.py)
    sync_interval_minutes: int = Field(default=15, alias="SYNC_INTERVAL_MINUTES")
    scheduler_enabled: bool = Field(default=True, alias="SCHEDULER_ENABLED")

    # Throttle for the manual sync endpoints
    sync_endpoint_rate_limit: str = Field(default="10/minute", alias="SYNC_ENDPOINT_RATE_LIMIT")
    rate_limit_enabled: bool = Field(default=True, alias="RATE_LIMIT_ENABLED")
    rate_limit_storage_uri: str = Field(default="memory://", alias="RATE_LIMIT_STORAGE_URI")

    # Fernet key (or any passphrase) used to encrypt stored credentials
    credentials_encryption_key: str = Field(
        default="dev-credentials-key-change-me-in-production",
        alias="CREDENTIALS_ENCRYPTION_KEY"
    )

    @field_validator('bokun_rate_limit', 'bokun_max_attempts')
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    @property
    def cors_origins(self) -> List[str]:
        """Parse allowed origins from comma-separated string."""
        origins = []
        for origin in self.allowed_origins.split(","):
            origin = origin.strip().rstrip("/")
            if origin and origin not in origins:
                origins.append(origin)
        return origins or ["http://localhost:5173"]

    class Config:
        env_file = ".env"
        extra = "ignore"
        populate_by_name = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


# Initialize settings on module load
settings = get_settings()
