from functools import lru_cache
from threading import Lock
from typing import Optional
import structlog
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import model_validator

# Environment Constants
ENV_PRODUCTION = "production"
ENV_STAGING = "staging"
ENV_DEVELOPMENT = "development"
ENV_LOCAL = "local"


@lru_cache
def get_settings() -> "Settings":
    """Returns a singleton instance of the application settings."""
    return Settings()


_settings_reload_lock = Lock()


def reload_settings_from_environment() -> "Settings":
    """
    Atomically rebuild and replace cached settings from environment values.

    This avoids mutating the cached singleton instance in-place.
    """
    logger = structlog.get_logger()
    with _settings_reload_lock:
        logger.info("settings_reload_started")
        get_settings.cache_clear()
        refreshed = get_settings()
        logger.info("settings_reload_completed")
        return refreshed


class Settings(BaseSettings):
    """
    Configuration for the environment deletion service.
    Uses Pydantic-Settings for environment variable parsing from .env.
    """

    APP_NAME: str = "Auditvault Deletion Service"
    VERSION: str = "0.1.0"
    DEBUG: bool = False
    # ENVIRONMENT options: local, development, staging, production
    ENVIRONMENT: str = ENV_DEVELOPMENT
    TESTING: bool = False

    # Database
    DATABASE_URL: Optional[str] = None
    DB_ECHO: bool = False
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 300
    DB_SLOW_QUERY_THRESHOLD_SECONDS: float = 0.2

    # Admin API authentication (HS256 JWT issued by the admin login flow)
    JWT_SECRET: Optional[str] = None
    JWT_AUDIENCE: str = "admin"
    ADMIN_SCOPE: str = "admin"

    # Deletion workflow
    DELETION_DEFAULT_BACKOFF_SECONDS: int = 86400
    DELETION_MIN_BACKOFF_SECONDS: int = 60
    DELETION_MAX_BACKOFF_SECONDS: int = 30 * 86400
    # Upper bound on a single store operation; on expiry callers see a
    # transient failure and may retry.
    DELETION_STORE_TIMEOUT_SECONDS: float = 10.0
    DELETION_EXECUTION_MAX_ATTEMPTS: int = 3
    DELETION_EXECUTION_RETRY_MIN_WAIT: float = 0.5
    DELETION_EXECUTION_RETRY_MAX_WAIT: float = 5.0
    DELETION_EXPIRY_SWEEP_LIMIT: int = 500

    # Approver notification webhook (the mailer behind it delivers the code).
    # Unset means no transport: every delivery is reported as failed.
    DELETION_NOTIFICATION_WEBHOOK_URL: Optional[str] = None
    DELETION_NOTIFICATION_WEBHOOK_TOKEN: Optional[str] = None
    DELETION_NOTIFICATION_TIMEOUT_SECONDS: float = 5.0

    @model_validator(mode="after")
    def validate_all_config(self) -> "Settings":
        """
        Centralized validation orchestrator.
        Groups validation by concern for clarity and specificity.
        """
        if self.TESTING and self.ENVIRONMENT in {ENV_PRODUCTION, ENV_STAGING}:
            raise ValueError(
                "TESTING must be false in staging/production runtime environments."
            )

        self._validate_deletion_workflow()
        self._validate_notification_config()
        if self.TESTING:
            return self

        self._validate_core_secrets()
        self._validate_database_config()
        return self

    def _validate_core_secrets(self) -> None:
        if not self.JWT_SECRET or len(self.JWT_SECRET) < 32:
            raise ValueError("JWT_SECRET must be set to a secure value (>= 32 chars).")

    def _validate_database_config(self) -> None:
        if not self.DATABASE_URL:
            raise ValueError("DATABASE_URL is required.")
        if self.DB_SLOW_QUERY_THRESHOLD_SECONDS <= 0:
            raise ValueError("DB_SLOW_QUERY_THRESHOLD_SECONDS must be > 0.")

    def _validate_deletion_workflow(self) -> None:
        """Backoff bounds and retry limits must be coherent."""
        if self.DELETION_MIN_BACKOFF_SECONDS <= 0:
            raise ValueError("DELETION_MIN_BACKOFF_SECONDS must be > 0.")
        if self.DELETION_MAX_BACKOFF_SECONDS < self.DELETION_MIN_BACKOFF_SECONDS:
            raise ValueError(
                "DELETION_MAX_BACKOFF_SECONDS must be >= DELETION_MIN_BACKOFF_SECONDS."
            )
        if not (
            self.DELETION_MIN_BACKOFF_SECONDS
            <= self.DELETION_DEFAULT_BACKOFF_SECONDS
            <= self.DELETION_MAX_BACKOFF_SECONDS
        ):
            raise ValueError(
                "DELETION_DEFAULT_BACKOFF_SECONDS must lie within the configured bounds."
            )
        if self.DELETION_STORE_TIMEOUT_SECONDS <= 0:
            raise ValueError("DELETION_STORE_TIMEOUT_SECONDS must be > 0.")
        if self.DELETION_EXECUTION_MAX_ATTEMPTS < 1:
            raise ValueError("DELETION_EXECUTION_MAX_ATTEMPTS must be >= 1.")
        if self.DELETION_EXPIRY_SWEEP_LIMIT < 1:
            raise ValueError("DELETION_EXPIRY_SWEEP_LIMIT must be >= 1.")

    def _validate_notification_config(self) -> None:
        if self.DELETION_NOTIFICATION_TIMEOUT_SECONDS <= 0:
            raise ValueError("DELETION_NOTIFICATION_TIMEOUT_SECONDS must be > 0.")
        url = self.DELETION_NOTIFICATION_WEBHOOK_URL
        if not url:
            return
        if not url.startswith(("https://", "http://")):
            raise ValueError("DELETION_NOTIFICATION_WEBHOOK_URL must be an http(s) URL.")
        if self.ENVIRONMENT in {ENV_PRODUCTION, ENV_STAGING} and not url.startswith("https://"):
            raise ValueError(
                "DELETION_NOTIFICATION_WEBHOOK_URL must use https in staging/production."
            )

    model_config = SettingsConfigDict(env_file=".env", env_ignore_empty=True)

    @property
    def is_production(self) -> bool:
        """
        True only when ENVIRONMENT is explicitly set to 'production'.
        Staging/Development use DEBUG=False but are NOT 'production'.
        """
        return self.ENVIRONMENT == ENV_PRODUCTION
