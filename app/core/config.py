"""
Core application configuration using Pydantic Settings.

All environment variables are loaded here and validated.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True
    )

    # App Configuration
    APP_NAME: str = "Voice Agent Admin"
    APP_URL: str = "http://localhost:8000"
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    CORS_ORIGINS: List[str] = ["http://localhost:3000"]

    # Database
    DATABASE_URL: str

    # Security & Encryption
    SECRET_KEY: str  # For admin access token signing
    ENCRYPTION_KEY: str  # For Fernet webhook secret encryption (44-char base64)
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # Only trust X-Forwarded-For when running behind a known proxy
    TRUST_PROXY_HEADERS: bool = False

    # Redis
    REDIS_URL: str = "redis://localhost:6379/0"

    # Celery
    CELERY_BROKER_URL: Optional[str] = None
    CELERY_RESULT_BACKEND: Optional[str] = None

    # HTTP rate limiting storage (slowapi / limits URI)
    RATE_LIMIT_STORAGE_URL: Optional[str] = None

    # Sentry Monitoring
    SENTRY_DSN: Optional[str] = None

    # Webhook request logging
    WEBHOOK_LOG_BODY_LIMIT: int = 10000  # Bodies larger than this are stored as a truncation marker

    # Abuse detection thresholds
    FAILED_LOGIN_WINDOW_MINUTES: int = 15
    FAILED_LOGIN_THRESHOLD: int = 5
    WEBHOOK_FLOOD_WINDOW_MINUTES: int = 5
    WEBHOOK_FLOOD_THRESHOLD: int = 100
    CALL_SPIKE_WINDOW_HOURS: int = 1
    CALL_SPIKE_MULTIPLIER: float = 3.0
    CALL_SPIKE_DEFAULT_BASELINE: float = 10.0
    CALL_SPIKE_HISTORY_DAYS: int = 7
    ABUSE_SWEEP_INTERVAL_MINUTES: int = 5

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        # Set Celery URLs to Redis if not explicitly set
        if not self.CELERY_BROKER_URL:
            self.CELERY_BROKER_URL = self.REDIS_URL
        if not self.CELERY_RESULT_BACKEND:
            self.CELERY_RESULT_BACKEND = self.REDIS_URL
        if not self.RATE_LIMIT_STORAGE_URL:
            self.RATE_LIMIT_STORAGE_URL = self.REDIS_URL

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.ENVIRONMENT.lower() == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.ENVIRONMENT.lower() == "development"


# Global settings instance
settings = Settings()
