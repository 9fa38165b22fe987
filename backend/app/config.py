"""Application configuration."""

from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API Settings
    APP_NAME: str = "FormFlow Automation Engine"
    APP_VERSION: str = "1.0.0"
    API_V1_PREFIX: str = "/api/v1"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"  # development, staging, production

    # Database Settings
    DATABASE_URL: str = "sqlite+aiosqlite:///./formflow.db"
    SQLALCHEMY_ECHO: bool = False
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_TIMEOUT: int = 30

    # Redis Settings (Celery broker, execution leases, rate limits)
    REDIS_URL: str = "redis://localhost:6379/0"

    # Engine Settings
    INLINE_DELAY_THRESHOLD_SECONDS: int = 30
    NODE_TIMEOUT_SECONDS: float = 300.0
    RETRY_MAX_ATTEMPTS: int = 3
    RETRY_BASE_DELAY_SECONDS: float = 60.0
    MAX_NODE_VISITS: int = 10000
    EXECUTION_LEASE_SECONDS: int = 900
    LEASE_BACKEND: str = "redis"  # redis, or memory for single-process runs
    RATE_LIMIT_BACKEND: str = "redis"  # redis or memory
    DEFAULT_MAX_EXECUTIONS_PER_HOUR: int = 1000

    # Scheduler Settings
    SCHEDULER_POLL_SECONDS: int = 15
    SCHEDULER_BATCH_SIZE: int = 100
    EXECUTION_RETENTION_DAYS: int = 30

    # SMTP Settings (send_email action)
    SMTP_HOST: str = "localhost"
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_FROM: str = "automation@localhost"
    SMTP_USE_TLS: bool = True

    # Google Sheets (service account key file for google_sheets_append)
    GOOGLE_SHEETS_CREDENTIALS: str = ""

    # CORS Settings
    ALLOWED_ORIGINS: str = "http://localhost:3000,http://localhost:8080"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"  # json or text

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.ENVIRONMENT == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.ENVIRONMENT == "production"

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse ALLOWED_ORIGINS string into a list."""
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",") if origin.strip()]

    class Config:
        """Pydantic config."""

        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings.

    Uses caching to ensure settings are loaded only once.

    Returns:
        Settings object with all configuration values
    """
    return Settings()
