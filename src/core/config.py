"""Configuration management for treeadopt."""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    environment: str = Field(default="development", description="Deployment environment name")

    # SQLite Configuration
    sqlite_db_path: str = Field(default="./data/treeadopt.db", description="SQLite database file path")

    # Identity token signing
    secret_key: str = Field(
        default="dev-secret-key-change-me",  # noqa: S105
        description="Secret used to sign and verify caller identity tokens",
    )
    identity_token_max_age_seconds: int = Field(
        default=86400, description="Maximum age of an identity token before it is rejected"
    )

    # Blob Storage Configuration
    blob_storage_url: str = Field(default="http://blob-storage:9000", description="Blob storage service base URL")
    blob_storage_api_key: str | None = Field(default=None, description="Blob storage API key (optional)")
    blob_storage_folder: str = Field(default="treeadopt/trees", description="Folder that task images are stored in")

    # Pydantic Logfire Configuration (optional)
    logfire_token: str | None = Field(default=None, description="Pydantic Logfire token for observability")

    # Scheduler Configuration (hours are UTC)
    growth_reminder_hour: int = Field(default=2, description="Hour the growth-update due check runs")
    escalation_sweep_hour: int = Field(default=3, description="Hour the 90-day escalation sweep runs")
    assignment_retry_hour: int = Field(default=4, description="Hour unassigned paid orders are re-balanced")

    @property
    def is_production(self) -> bool:
        """Return True when running in production."""
        return self.environment.lower() == "production"

    def require_credential(self, field_name: str, service_name: str) -> str:
        """Validate that a required credential is set, raising a clear error if missing.

        Args:
            field_name: Name of the field to check
            service_name: Human-readable service name for error message

        Returns:
            The credential value

        Raises:
            ValueError: If the credential is None or empty
        """
        value = getattr(self, field_name)
        if not value:
            raise ValueError(
                f"{service_name} credential not configured. "
                f"Set {field_name.upper()} environment variable or add to .env file."
            )
        return value


# Application Constants
class Constants:
    """Application-wide constants."""

    # API Configuration
    API_TIMEOUT_SECONDS: int = 30

    # Growth-update cycle
    GROWTH_UPDATE_INTERVAL_DAYS: int = 30
    ESCALATION_AFTER_DAYS: int = 90

    # Checkout duplicate-submission window
    DUPLICATE_ORDER_WINDOW_MINUTES: int = 5

    # Image submissions
    MIN_IMAGES_PER_SUBMISSION: int = 1
    MAX_IMAGES_PER_SUBMISSION: int = 5
    MAX_IMAGE_SIZE_BYTES: int = 10 * 1024 * 1024  # 10MB

    # Free-text limits
    MAX_NOTES_LENGTH: int = 500
    MAX_GIFT_MESSAGE_LENGTH: int = 500
    MAX_ADMIN_NOTES_LENGTH: int = 1000

    # Task materialization
    DEFAULT_TASK_LOCATION: str = "To be determined"

    # Stats
    RECENT_ACTIVITY_LIMIT: int = 5

    # Pagination Defaults
    DEFAULT_TASK_PAGE_SIZE: int = 10
    DEFAULT_ORDER_PAGE_SIZE: int = 50
    MAX_PAGE_SIZE: int = 100

    # Job Tracker Configuration
    TRACKER_DEAD_LETTER_QUEUE_MAXLEN: int = 100

    # Paths
    PROJECT_ROOT: Path = Path(__file__).parent.parent.parent


def get_settings() -> Settings:
    """Get application settings (singleton pattern)."""
    return Settings()


# Global settings instance
settings = get_settings()
constants = Constants()
