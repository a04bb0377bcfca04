"""
Centralized application settings using Pydantic.
All configuration is loaded from environment variables.
"""
from pydantic_settings import BaseSettings
from typing import Optional, List
from functools import lru_cache


class Settings(BaseSettings):
    # Application
    APP_NAME: str = "Square Merchant Sync"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"  # development, staging, production
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = "sqlite:///./data/square_sync.db"

    # Base URL for landing page redirects and the webhook notification URL
    APP_BASE_URL: str = "http://localhost:8000"

    # CORS - JSON list in the environment
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:8000", "http://127.0.0.1:8000"]

    # Square Integration
    SQUARE_APP_ID: Optional[str] = None
    SQUARE_APP_SECRET: Optional[str] = None
    SQUARE_ENVIRONMENT: str = "sandbox"
    SQUARE_API_VERSION: str = "2024-01-18"
    SQUARE_REDIRECT_URI: Optional[str] = None

    # Webhooks
    SQUARE_WEBHOOK_SIGNATURE_KEY: Optional[str] = None
    SQUARE_WEBHOOK_NOTIFICATION_URL: Optional[str] = None
    WEBHOOK_RETRY_INTERVAL_MINUTES: int = 5
    WEBHOOK_MAX_ATTEMPTS: int = 5

    # Token encryption. Rotating TOKEN_ENCRYPTION_SECRET requires listing the
    # old value in TOKEN_ENCRYPTION_PREVIOUS_SECRETS until tokens are re-saved.
    TOKEN_ENCRYPTION_SECRET: str = "local-dev-token-secret-change-in-production"
    TOKEN_ENCRYPTION_PREVIOUS_SECRETS: List[str] = []  # JSON list

    # OAuth state store (shared when REDIS_URL is set)
    REDIS_URL: Optional[str] = None
    OAUTH_STATE_TTL_SECONDS: int = 600

    # Outbound provider calls
    HTTP_TIMEOUT_SECONDS: float = 30.0
    HTTP_MAX_RETRIES: int = 2
    HTTP_RETRY_BACKOFF_SECONDS: float = 1.0

    # Sync
    INITIAL_SYNC_LOOKBACK_DAYS: int = 365
    SYNC_SCHEDULE_HOUR: int = 2  # 2 AM UTC nightly re-sync
    SYNC_ENABLED: bool = True
    TOKEN_REFRESH_WINDOW_DAYS: int = 7
    SYNC_STALE_PENDING_HOURS: int = 6  # nightly sync retries pending connections older than this

    # Sentry Error Monitoring
    SENTRY_DSN: Optional[str] = None

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True

    @property
    def square_base_url(self) -> str:
        if self.SQUARE_ENVIRONMENT == "production":
            return "https://connect.squareup.com"
        return "https://connect.squareupsandbox.com"

    @property
    def webhook_notification_url(self) -> str:
        """URL Square signs together with the request body"""
        if self.SQUARE_WEBHOOK_NOTIFICATION_URL:
            return self.SQUARE_WEBHOOK_NOTIFICATION_URL
        return f"{self.APP_BASE_URL}/integrations/square/webhooks"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
